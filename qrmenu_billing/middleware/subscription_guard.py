from functools import wraps
from flask import jsonify, current_app
from qrmenu_billing.middleware.auth import current_user_id
from qrmenu_billing.services.subscription_service import is_subscription_active


def subscription_required(feature=None):
    """
    Decorator to protect routes that require an active subscription

    Usage:
        @bp.get('/orders')
        @jwt_required()
        @subscription_required("orders")
        def list_orders():
            ...

    Note: must sit below @jwt_required() so the identity is available
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user_id = current_user_id()
            is_active, subscription = is_subscription_active(user_id)

            if not is_active:
                current_app.logger.warning(f"User {user_id} attempted to access protected route without active subscription")
                return jsonify({
                    "error": "Subscription inactive",
                    "message": "Your subscription is not active. Please renew to continue using the dashboard.",
                    "locked": True,
                    "status": subscription.status.value if subscription else "none"
                }), 403

            if feature == "orders" and not subscription.plan.has_orders_feature:
                return jsonify({
                    "error": "Feature not available",
                    "message": "Your plan does not include online orders. Upgrade to unlock it.",
                    "locked": True,
                    "feature": feature
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
