# qrmenu_billing/__init__.py
import logging

from flask import Flask, jsonify
from flask_cors import CORS

from qrmenu_billing.config import Config
from qrmenu_billing.extension.extensions import db, migrate, jwt
from qrmenu_billing.services.errors import BillingError


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(level=app.config.get("LOG_LEVEL", "INFO"))
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Extensions
    CORS(app, expose_headers=["Content-Type"], allow_headers=[
        "Authorization", "Content-Type", "X-Razorpay-Signature", "X-Cron-Secret"
    ])
    db.init_app(app)
    jwt.init_app(app)

    # Import models before Migrate so autogenerate sees every table
    from qrmenu_billing import models  # noqa: F401
    migrate.init_app(app, db)

    _register_jwt_handlers()

    # Import blueprints AFTER extensions are inited to avoid premature current_app usage
    from qrmenu_billing.controllers.auth_controller import bp_auth
    from qrmenu_billing.controllers.plan_controller import bp_plans
    from qrmenu_billing.controllers.subscription_controller import bp_subs
    from qrmenu_billing.controllers.webhook_controller import bp_webhooks
    from qrmenu_billing.controllers.cron_controller import bp_cron
    from qrmenu_billing.controllers.registration_controller import bp_regs

    # Register blueprints
    app.register_blueprint(bp_auth)
    app.register_blueprint(bp_plans)
    app.register_blueprint(bp_subs)
    app.register_blueprint(bp_webhooks)
    app.register_blueprint(bp_cron)
    app.register_blueprint(bp_regs)

    @app.errorhandler(BillingError)
    def handle_billing_error(e):
        return jsonify(e.to_dict()), e.status_code

    from qrmenu_billing.commands import register_commands
    register_commands(app)

    return app


def _register_jwt_handlers():
    @jwt.unauthorized_loader
    def missing_token(reason):
        return jsonify({"error": "Unauthorized"}), 401

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return jsonify({"error": "Unauthorized"}), 401

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return jsonify({"error": "Session expired"}), 401
