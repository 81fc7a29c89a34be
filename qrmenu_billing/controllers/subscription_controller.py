from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required, get_jwt
from qrmenu_billing.extension.extensions import db
from qrmenu_billing.middleware.auth import current_user_id
from qrmenu_billing.middleware.subscription_guard import subscription_required
from qrmenu_billing.services.errors import BillingError, ValidationError
from qrmenu_billing.services.subscription_service import (
    get_user_subscription, create_subscription, verify_subscription_payment, cancel_subscription
)

bp_subs = Blueprint('subscriptions', __name__, url_prefix='/api/subscriptions')


@bp_subs.get('/me')
@jwt_required()
def get_subscription():
    sub = get_user_subscription(current_user_id())
    if not sub:
        return jsonify({"status": "none"}), 200
    return jsonify(sub.to_dict()), 200


@bp_subs.post('/create')
@jwt_required()
def create():
    try:
        data = request.get_json(silent=True) or {}
        if not data.get('planId') or not data.get('billingCycle'):
            raise ValidationError("planId and billingCycle are required")
        result = create_subscription(current_user_id(), data['planId'], data['billingCycle'])
        return jsonify(result), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"❌ Error creating subscription: {str(e)}")
        return jsonify({"error": "An unexpected error occurred"}), 500


@bp_subs.post('/verify')
@jwt_required()
def verify():
    try:
        data = request.get_json(silent=True) or {}
        payment_id = data.get('paymentId')
        subscription_id = data.get('subscriptionId')
        signature = data.get('signature')
        if not all([payment_id, subscription_id, signature]):
            raise ValidationError("Missing payment details")
        result = verify_subscription_payment(current_user_id(), payment_id, subscription_id, signature)
        return jsonify(result), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"❌ Error verifying subscription payment: {str(e)}")
        return jsonify({"error": "An unexpected error occurred"}), 500


@bp_subs.post('/cancel')
@jwt_required()
def cancel():
    try:
        actor = get_jwt().get("email") or "user"
        result = cancel_subscription(current_user_id(), actor=actor)
        return jsonify(result), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"❌ Cancel subscription error: {str(e)}")
        return jsonify({"error": "An unexpected error occurred"}), 500


@bp_subs.get('/features')
@jwt_required()
@subscription_required()
def get_features():
    sub = get_user_subscription(current_user_id())
    plan = sub.plan
    return jsonify({
        "plan": plan.slug,
        "has_orders_feature": plan.has_orders_feature,
        "limits": plan.to_dict()["limits"],
        "period_end": sub.to_dict()["current_period_end"]
    }), 200
