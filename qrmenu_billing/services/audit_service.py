import hashlib
from flask import current_app
from qrmenu_billing.extension.extensions import db
from qrmenu_billing.models.audit import AdminActionLog, PaymentSecurityLog


def hash_for_log(value):
    """First 16 hex chars of SHA-256; enough to correlate, useless to read."""
    if not value:
        return None
    return hashlib.sha256(value.encode('utf-8')).hexdigest()[:16]


def log_admin_action(actor, action_type, restaurant_id=None, details=None):
    """Queue an audit row on the current session. Caller commits."""
    entry = AdminActionLog(
        admin_email=actor or 'user',
        action_type=action_type,
        restaurant_id=restaurant_id,
        details=details or {}
    )
    db.session.add(entry)
    return entry


def log_security_event(event_type, success=False, ip=None, email=None, user_agent=None,
                       error_message=None, metadata=None, commit=True):
    entry = PaymentSecurityLog(
        event_type=event_type,
        ip_hash=hash_for_log(ip),
        email_hash=hash_for_log(email),
        user_agent_hash=hash_for_log(user_agent),
        success=success,
        error_message=(error_message or '')[:500] or None,
        meta=metadata
    )
    db.session.add(entry)
    if commit:
        db.session.commit()
    if not success:
        current_app.logger.warning(f"Payment security event: {event_type} ({error_message})")
    return entry
