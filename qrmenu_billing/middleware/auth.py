from functools import wraps
from flask import request, jsonify, current_app
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request, get_jwt
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError
from qrmenu_billing.services.razorpay_service import digests_match


def current_user_id():
    return int(get_jwt_identity())


def _bearer_token():
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip()
    return None


def _matches(candidate, secret):
    return digests_match(secret, candidate)


def _is_admin_session():
    try:
        verify_jwt_in_request()
    except (JWTExtendedException, PyJWTError):
        return False
    return get_jwt().get("role") == "admin"


def cron_or_admin_required(f):
    """
    Gate for scheduled jobs. Accepts, in order:
      - Authorization: Bearer <SERVICE_ROLE_KEY>
      - Authorization: Bearer <CRON_SECRET> or X-Cron-Secret: <CRON_SECRET>
      - a JWT session whose role claim is "admin"
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        cron_secret = current_app.config.get("CRON_SECRET")

        if _matches(token, current_app.config.get("SERVICE_ROLE_KEY")):
            return f(*args, **kwargs)
        if _matches(token, cron_secret) or _matches(request.headers.get("X-Cron-Secret"), cron_secret):
            return f(*args, **kwargs)
        if token and _is_admin_session():
            return f(*args, **kwargs)

        current_app.logger.warning(f"Rejected unauthorized call to {request.path}")
        return jsonify({"error": "Unauthorized"}), 401

    return decorated_function
