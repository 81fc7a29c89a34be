from flask import Blueprint, jsonify, current_app
from qrmenu_billing.extension.extensions import db
from qrmenu_billing.middleware.auth import cron_or_admin_required
from qrmenu_billing.services.subscription_service import expire_subscriptions

bp_cron = Blueprint('cron', __name__, url_prefix='/api/cron')


@bp_cron.post('/check-subscriptions')
@cron_or_admin_required
def check_subscriptions():
    try:
        return jsonify(expire_subscriptions()), 200
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Check subscriptions error: {str(e)}")
        return jsonify({"error": "An unexpected error occurred"}), 500
