import math
from datetime import timedelta
from dateutil.relativedelta import relativedelta
from flask import current_app
from sqlalchemy.exc import IntegrityError

from qrmenu_billing.extension.extensions import db
from qrmenu_billing.models.subscription import (
    UserSubscription, SubscriptionStatus, BillingCycle, utcnow, as_utc
)
from qrmenu_billing.models.payment import PaymentTransaction, PaymentStatus
from qrmenu_billing.models.restaurant import Restaurant
from qrmenu_billing.services import razorpay_service
from qrmenu_billing.services.audit_service import log_admin_action
from qrmenu_billing.services.errors import (
    NotFound, InvalidSignature, PaymentNotSuccessful, AlreadyCancelled, ConfigurationError
)
from qrmenu_billing.services.plan_service import get_plan, get_plan_price, parse_billing_cycle

SUCCESSFUL_PAYMENT_STATUSES = ("captured", "authorized")
CANCEL_MESSAGE = ("Subscription cancelled. Your service has been deactivated. "
                  "No refunds are provided for cancellations.")


def calculate_period_end(start, billing_cycle):
    """
    One billing period after ``start``.

    Calendar arithmetic via relativedelta: a month added to Jan 31 lands on
    the last day of February (2024-02-29), and a year added to Feb 29 lands
    on Feb 28.
    """
    if BillingCycle(billing_cycle) == BillingCycle.yearly:
        return start + relativedelta(years=1)
    return start + relativedelta(months=1)


def get_user_subscription(user_id):
    return UserSubscription.query.filter_by(user_id=user_id).first()


def get_subscription_by_gateway_id(razorpay_subscription_id):
    return UserSubscription.query.filter_by(razorpay_subscription_id=razorpay_subscription_id).first()


def get_subscription_by_pending_gateway_id(razorpay_subscription_id):
    return UserSubscription.query.filter_by(pending_razorpay_subscription_id=razorpay_subscription_id).first()


def is_subscription_active(user_id, ts=None):
    sub = get_user_subscription(user_id)
    if not sub:
        return False, None
    return sub.is_current(ts), sub


def find_payment(payment_id):
    return PaymentTransaction.query.filter_by(razorpay_payment_id=payment_id).first()


def record_payment(user_id, payment_id, status, amount_paise=0, currency='INR', method=None,
                   subscription_id=None, razorpay_subscription_id=None, signature=None, metadata=None):
    """Add a ledger row unless this payment id is already recorded. Caller commits.

    The insert runs in a savepoint: when a concurrent writer records the same
    payment id first, only the savepoint is rolled back and the caller's
    pending changes survive.
    """
    if payment_id:
        existing = find_payment(payment_id)
        if existing:
            current_app.logger.info(f"Payment {payment_id} already recorded, skipping")
            return existing

    txn = PaymentTransaction(
        user_id=user_id,
        subscription_id=subscription_id,
        razorpay_payment_id=payment_id,
        razorpay_subscription_id=razorpay_subscription_id,
        razorpay_signature=signature,
        amount=razorpay_service.from_paise(amount_paise),
        currency=currency or 'INR',
        status=PaymentStatus(status),
        payment_method=method,
        meta=metadata
    )
    try:
        with db.session.begin_nested():
            db.session.add(txn)
    except IntegrityError:
        current_app.logger.info(f"Payment {payment_id} recorded concurrently, reusing existing row")
        return find_payment(payment_id)
    return txn


def sync_restaurant_plan(sub):
    restaurant = sub.restaurant
    if restaurant is not None:
        restaurant.subscription_plan_id = sub.plan_id


def activate_staged_upgrade(sub, now):
    """Promote pending_* into the primary fields and start a fresh period.

    Returns the gateway id of the replaced subscription so the caller can
    release it once the new state is committed.
    """
    previous = sub.promote_pending()
    sub.activate(now, calculate_period_end(now, sub.billing_cycle))
    current_app.logger.info(
        f"Upgrade promoted for user {sub.user_id}: plan {sub.plan_id}, "
        f"gateway sub {sub.razorpay_subscription_id} replaces {previous}"
    )
    return previous


def release_replaced_subscription(previous_gateway_id):
    if not previous_gateway_id:
        return True, None
    ok, error = razorpay_service.cancel_subscription(previous_gateway_id)
    if not ok:
        current_app.logger.error(f"Failed to cancel old subscription {previous_gateway_id}: {error}")
    return ok, error


def create_subscription(user_id, plan_id, billing_cycle):
    """
    Provision a Razorpay subscription for ``user_id`` and stage it locally.

    An active subscription is never overwritten: the new one is parked in the
    pending_* fields until its first payment is verified.
    """
    plan = get_plan(plan_id)
    cycle = parse_billing_cycle(billing_cycle)
    price = get_plan_price(plan, cycle)

    if not razorpay_service.is_configured():
        raise ConfigurationError("Payment gateway not configured")

    gateway_plan_id = razorpay_service.get_or_create_plan(plan.slug, price, cycle.value)
    gateway_sub = razorpay_service.create_subscription(
        gateway_plan_id,
        cycle.value,
        notes={
            "user_id": str(user_id),
            "plan_id": str(plan.id),
            "billing_cycle": cycle.value,
        }
    )

    sub = get_user_subscription(user_id)
    if sub and sub.status == SubscriptionStatus.active:
        sub.stage_upgrade(plan.id, gateway_sub['id'], cycle)
        current_app.logger.info(f"Staged upgrade for user {user_id} to plan {plan.slug} ({cycle.value})")
    elif sub:
        sub.plan_id = plan.id
        sub.razorpay_subscription_id = gateway_sub['id']
        sub.billing_cycle = cycle
        sub.status = SubscriptionStatus.pending
        sub.clear_pending()
        current_app.logger.info(f"Re-provisioned inactive subscription {sub.id} for user {user_id}")
    else:
        restaurant = Restaurant.query.filter_by(user_id=user_id).first()
        sub = UserSubscription(
            user_id=user_id,
            restaurant_id=restaurant.id if restaurant else None,
            plan_id=plan.id,
            razorpay_subscription_id=gateway_sub['id'],
            billing_cycle=cycle,
            status=SubscriptionStatus.pending
        )
        db.session.add(sub)
        current_app.logger.info(f"Created pending subscription for user {user_id} on plan {plan.slug}")

    db.session.commit()

    return {
        "subscriptionId": gateway_sub['id'],
        "razorpayKeyId": current_app.config['RAZORPAY_KEY_ID'],
    }


def verify_subscription_payment(user_id, payment_id, subscription_id, signature):
    if not razorpay_service.verify_subscription_signature(payment_id, subscription_id, signature):
        current_app.logger.error(f"Signature mismatch for user {user_id}, subscription {subscription_id}")
        raise InvalidSignature("Invalid payment signature")

    payment = razorpay_service.get_payment_details(payment_id)
    if payment.get('status') not in SUCCESSFUL_PAYMENT_STATUSES:
        raise PaymentNotSuccessful("Payment not successful")

    sub = get_user_subscription(user_id)
    if not sub:
        raise NotFound("Subscription not found")

    now = utcnow()
    replaced = None
    if sub.has_pending_upgrade and sub.pending_razorpay_subscription_id == subscription_id:
        replaced = activate_staged_upgrade(sub, now)
    else:
        sub.activate(now, calculate_period_end(now, sub.billing_cycle))

    record_payment(
        user_id=user_id,
        payment_id=payment_id,
        status=PaymentStatus.captured,
        amount_paise=payment.get('amount'),
        currency=payment.get('currency'),
        method=payment.get('method'),
        subscription_id=sub.id,
        razorpay_subscription_id=subscription_id,
        signature=signature,
        metadata={
            "order_id": payment.get('order_id'),
            "email": payment.get('email'),
        }
    )
    sync_restaurant_plan(sub)
    db.session.commit()

    current_app.logger.info(f"✅ Subscription {sub.id} active until {sub.current_period_end}")

    release_replaced_subscription(replaced)
    return {"success": True}


def remaining_days(period_end, now):
    period_end = as_utc(period_end)
    if period_end is None:
        return 0
    return max(0, math.ceil((period_end - now) / timedelta(days=1)))


def cancel_subscription(user_id, actor=None):
    """Cancel immediately at the gateway and locally. No refund is issued."""
    sub = get_user_subscription(user_id)
    if not sub:
        raise NotFound("No subscription found")
    if sub.status == SubscriptionStatus.cancelled:
        raise AlreadyCancelled("Subscription already cancelled")

    gateway_ids = [sub.razorpay_subscription_id, sub.pending_razorpay_subscription_id]
    if razorpay_service.is_configured():
        for gateway_id in filter(None, gateway_ids):
            razorpay_service.cancel_subscription(gateway_id, at_cycle_end=False)
    elif any(gateway_ids):
        current_app.logger.warning(f"Razorpay not configured, skipping gateway cancel for user {user_id}")

    now = utcnow()
    days_left = remaining_days(sub.current_period_end, now)

    sub.status = SubscriptionStatus.cancelled
    sub.cancelled_at = now
    sub.clear_pending()

    restaurant = sub.restaurant or Restaurant.query.filter_by(user_id=user_id).first()
    log_admin_action(
        actor or 'user',
        'subscription_cancelled_by_user',
        restaurant_id=restaurant.id if restaurant else None,
        details={
            "subscription_id": sub.id,
            "razorpay_subscription_id": sub.razorpay_subscription_id,
            "remaining_days": days_left,
            "no_refund": True,
            "restaurant_name": restaurant.name if restaurant else None,
        }
    )
    db.session.commit()

    current_app.logger.info(f"❌ Subscription {sub.id} cancelled by user {user_id} ({days_left} day(s) unused)")
    return {"success": True, "message": CANCEL_MESSAGE}


def expire_subscriptions(now=None):
    """
    Mark active subscriptions whose period has elapsed as expired.

    One bad record never stops the sweep; its error is reported in the
    summary and the rest are still processed.
    """
    now = now or utcnow()
    due_ids = [
        row.id for row in (
            UserSubscription.query
            .filter(UserSubscription.status == SubscriptionStatus.active)
            .filter(UserSubscription.current_period_end.isnot(None))
            .filter(UserSubscription.current_period_end < now)
            .order_by(UserSubscription.current_period_end.asc())
            .all()
        )
    ]

    results = {
        "checked_at": now.isoformat(),
        "total_expired": len(due_ids),
        "updated": [],
        "errors": [],
    }
    actor = current_app.config.get('SYSTEM_ACTOR_EMAIL', 'system@addmenu.site')

    for sub_id in due_ids:
        try:
            sub = db.session.get(UserSubscription, sub_id)
            if sub is None or sub.is_current(now) or sub.status != SubscriptionStatus.active:
                # renewed or changed since the scan
                continue
            sub.status = SubscriptionStatus.expired
            restaurant = sub.restaurant
            log_admin_action(
                actor,
                'subscription_expired_auto',
                restaurant_id=sub.restaurant_id,
                details={
                    "subscription_id": sub.id,
                    "user_id": sub.user_id,
                    "expired_at": as_utc(sub.current_period_end).isoformat(),
                    "restaurant_name": restaurant.name if restaurant else None,
                    "checked_at": now.isoformat(),
                }
            )
            db.session.commit()
            results["updated"].append(sub_id)
        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"Failed to expire subscription {sub_id}: {e}")
            results["errors"].append(f"Error processing {sub_id}: {e}")

    current_app.logger.info(f"Subscription check completed: {results}")
    return results
