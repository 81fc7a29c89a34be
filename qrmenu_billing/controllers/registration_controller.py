from flask import Blueprint, request, jsonify, current_app
from qrmenu_billing.extension.extensions import db
from qrmenu_billing.services.audit_service import log_security_event
from qrmenu_billing.services.errors import BillingError
from qrmenu_billing.services.registration_service import (
    create_registration_subscription, verify_registration_payment
)

bp_regs = Blueprint('registrations', __name__, url_prefix='/api/registrations')


def _client_ip():
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or request.remote_addr or "unknown"


def _client_meta():
    return _client_ip(), request.headers.get("User-Agent", "unknown")


@bp_regs.post('')
def register():
    ip, user_agent = _client_meta()
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid request body"}), 400
    try:
        result = create_registration_subscription(data, ip=ip, user_agent=user_agent)
        return jsonify(result), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Registration error: {str(e)}")
        log_security_event("registration_error", ip=ip, error_message=str(e))
        return jsonify({"error": "An unexpected error occurred"}), 500


@bp_regs.post('/verify')
def verify():
    ip, user_agent = _client_meta()
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid request body"}), 400
    try:
        result = verify_registration_payment(data, ip=ip, user_agent=user_agent)
        return jsonify(result), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Registration verification error: {str(e)}")
        return jsonify({"error": "An unexpected error occurred"}), 500
