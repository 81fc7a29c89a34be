import re
from datetime import timedelta
from flask import current_app
from werkzeug.security import generate_password_hash

from qrmenu_billing.extension.extensions import db
from qrmenu_billing.models.user import User
from qrmenu_billing.models.restaurant import Restaurant
from qrmenu_billing.models.subscription import UserSubscription, SubscriptionStatus, utcnow, as_utc
from qrmenu_billing.models.payment import PaymentStatus
from qrmenu_billing.models.pending_registration import (
    PendingRegistration, RegistrationStatus, CLEARED, EXPIRED
)
from qrmenu_billing.services import razorpay_service
from qrmenu_billing.services.audit_service import log_security_event, hash_for_log
from qrmenu_billing.services.errors import (
    ValidationError, NotFound, InvalidSignature, PaymentNotSuccessful, ConfigurationError
)
from qrmenu_billing.services.plan_service import get_plan, get_plan_price, parse_billing_cycle
from qrmenu_billing.services.subscription_service import (
    calculate_period_end, record_payment, SUCCESSFUL_PAYMENT_STATUSES
)

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
CONTROL_CHARS_RE = re.compile(r"[\x00-\x1F\x7F]")
GATEWAY_ID_RE = re.compile(r"^[A-Za-z0-9]{6,32}$")
SIGNATURE_RE = re.compile(r"^[a-f0-9]{64}$")


def sanitize_input(value, max_length=500):
    if not value:
        return ""
    value = str(value).replace("<", "").replace(">", "")
    value = CONTROL_CHARS_RE.sub("", value)
    return value.strip()[:max_length]


def is_valid_email(email):
    return bool(EMAIL_RE.match(email)) and len(email) <= 254


def check_password(password):
    if len(password) < 8:
        return "Password must be at least 8 characters"
    if len(password) > 128:
        return "Password too long"
    return None


def is_valid_gateway_id(value, prefix):
    """Razorpay ids look like ``pay_29QQoUBi66xm2f`` / ``sub_00000000000001``."""
    if not isinstance(value, str) or not value.startswith(f"{prefix}_"):
        return False
    return bool(GATEWAY_ID_RE.match(value[len(prefix) + 1:]))


def is_valid_signature(value):
    return isinstance(value, str) and bool(SIGNATURE_RE.match(value))


def create_registration_subscription(data, ip=None, user_agent=None):
    """
    Start a paid signup. No account exists until the first payment verifies.

    Returns:
        dict: subscriptionId, planName, amount, razorpayKeyId
    """
    email = data.get('email')
    password = data.get('password')
    restaurant_name = data.get('restaurantName')
    plan_id = data.get('planId')
    billing_cycle = data.get('billingCycle')

    if not all([email, password, restaurant_name, plan_id, billing_cycle]):
        raise ValidationError("Missing required fields")

    clean_email = sanitize_input(email).lower()
    clean_name = sanitize_input(restaurant_name)
    clean_description = sanitize_input(data.get('restaurantDescription') or "")

    if not is_valid_email(clean_email):
        raise ValidationError("Invalid email format")
    password_error = check_password(password)
    if password_error:
        raise ValidationError(password_error)
    cycle = parse_billing_cycle(billing_cycle)
    if len(clean_name) < 2 or len(clean_name) > 100:
        raise ValidationError("Restaurant name must be 2-100 characters")

    if User.query.filter(User.email == clean_email).first():
        log_security_event("duplicate_email_attempt", ip=ip, email=clean_email,
                           error_message="Email already registered")
        raise ValidationError("Email already registered. Please sign in.")

    plan = get_plan(plan_id)
    price = get_plan_price(plan, cycle)

    if not razorpay_service.is_configured():
        current_app.logger.error("Razorpay credentials not configured")
        raise ConfigurationError("Payment gateway not configured")

    email_hash = hash_for_log(clean_email)
    gateway_plan_id = razorpay_service.get_or_create_plan(plan.slug, price, cycle.value)
    gateway_sub = razorpay_service.create_subscription(
        gateway_plan_id,
        cycle.value,
        notes={
            "email_hash": email_hash,   # never the address itself
            "plan_id": str(plan.id),
            "billing_cycle": cycle.value,
            "type": "registration",
        }
    )

    PendingRegistration.query.filter_by(email=clean_email).delete()
    ttl = current_app.config.get('REGISTRATION_TTL_MINUTES', 30)
    db.session.add(PendingRegistration(
        email=clean_email,
        password_hash=generate_password_hash(password),
        restaurant_name=clean_name,
        restaurant_description=clean_description or None,
        plan_id=plan.id,
        billing_cycle=cycle,
        razorpay_subscription_id=gateway_sub['id'],
        status=RegistrationStatus.pending,
        expires_at=utcnow() + timedelta(minutes=ttl)
    ))
    db.session.commit()
    log_security_event("registration_initiated", success=True, ip=ip, email=clean_email,
                       user_agent=user_agent,
                       metadata={"plan_name": plan.name, "billing_cycle": cycle.value})

    current_app.logger.info(f"Registration initiated for {email_hash} on plan {plan.slug}")
    return {
        "subscriptionId": gateway_sub['id'],
        "planName": plan.name,
        "amount": float(price),
        "razorpayKeyId": current_app.config['RAZORPAY_KEY_ID'],
    }


def verify_registration_payment(data, ip=None, user_agent=None):
    """
    Turn a paid pending registration into a user, restaurant and active
    subscription in one transaction.
    """
    payment_id = data.get('paymentId')
    subscription_id = data.get('subscriptionId')
    signature = data.get('signature')

    if not payment_id or not subscription_id or not signature:
        raise ValidationError("Missing payment details")
    if not is_valid_gateway_id(payment_id, "pay"):
        log_security_event("invalid_payment_id", ip=ip, error_message="Invalid payment ID format")
        raise ValidationError("Invalid payment ID")
    if not is_valid_gateway_id(subscription_id, "sub"):
        log_security_event("invalid_subscription_id", ip=ip, error_message="Invalid subscription ID format")
        raise ValidationError("Invalid subscription ID")
    if not is_valid_signature(signature):
        log_security_event("invalid_signature_format", ip=ip, error_message="Invalid signature format")
        raise ValidationError("Invalid signature format")

    if not razorpay_service.verify_subscription_signature(payment_id, subscription_id, signature):
        log_security_event("signature_mismatch", ip=ip,
                           error_message="Payment signature verification failed",
                           metadata={"subscription_id": subscription_id})
        raise InvalidSignature("Invalid payment signature")

    payment = razorpay_service.get_payment_details(payment_id)
    if payment.get('status') not in SUCCESSFUL_PAYMENT_STATUSES:
        log_security_event("payment_not_successful", ip=ip,
                           error_message=f"Payment status: {payment.get('status')}",
                           metadata={"payment_id": payment_id})
        raise PaymentNotSuccessful("Payment not successful")

    pending = PendingRegistration.query.filter_by(
        razorpay_subscription_id=subscription_id,
        status=RegistrationStatus.pending
    ).first()
    if not pending:
        log_security_event("pending_registration_not_found", ip=ip,
                           error_message="Registration not found or already processed",
                           metadata={"subscription_id": subscription_id})
        raise NotFound("Registration not found or expired")

    now = utcnow()
    if as_utc(pending.expires_at) < now:
        pending.status = RegistrationStatus.expired
        pending.password_hash = EXPIRED
        log_security_event("registration_expired", ip=ip, email=pending.email,
                           error_message="Registration expired")
        raise ValidationError("Registration expired. Please start over.")

    if pending.is_redeemed:
        raise ValidationError("Registration already processed")

    if User.query.filter(User.email == pending.email).first():
        log_security_event("auth_creation_failed", ip=ip, email=pending.email,
                           error_message="Email already registered")
        raise ValidationError("Email already registered. Please sign in.")

    try:
        user = User(email=pending.email, password_hash=pending.password_hash,
                    name=pending.restaurant_name, role='owner')
        db.session.add(user)
        db.session.flush()

        restaurant = Restaurant(
            user_id=user.id,
            name=pending.restaurant_name,
            email=pending.email,
            description=pending.restaurant_description,
            subscription_plan_id=pending.plan_id
        )
        db.session.add(restaurant)
        db.session.flush()

        sub = UserSubscription(
            user_id=user.id,
            restaurant_id=restaurant.id,
            plan_id=pending.plan_id,
            razorpay_subscription_id=subscription_id,
            billing_cycle=pending.billing_cycle,
            status=SubscriptionStatus.active,
            current_period_start=now,
            current_period_end=calculate_period_end(now, pending.billing_cycle)
        )
        db.session.add(sub)
        db.session.flush()

        record_payment(
            user_id=user.id,
            payment_id=payment_id,
            status=PaymentStatus.captured,
            amount_paise=payment.get('amount'),
            currency=payment.get('currency'),
            method=payment.get('method'),
            subscription_id=sub.id,
            razorpay_subscription_id=subscription_id,
            signature=signature,
            metadata={"type": "registration", "ip_hash": hash_for_log(ip)}
        )

        pending.password_hash = CLEARED
        pending.status = RegistrationStatus.completed
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Registration completion failed for {hash_for_log(pending.email)}: {e}")
        log_security_event("registration_completion_failed", ip=ip,
                           error_message=str(e))
        raise

    plan = sub.plan
    log_security_event("registration_completed", success=True, ip=ip, email=user.email,
                       user_agent=user_agent,
                       metadata={"plan_id": sub.plan_id, "billing_cycle": sub.billing_cycle.value})

    current_app.logger.info(f"✅ Registration completed: user {user.id}, restaurant {restaurant.id}")
    return {
        "success": True,
        "email": user.email,
        "hasOrdersFeature": bool(plan and plan.has_orders_feature),
    }
