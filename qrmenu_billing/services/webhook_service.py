"""
Razorpay webhook ingestion.

Delivery is at-least-once. The ``razorpay_webhook_events`` ledger row is
written and committed before dispatch, so a replayed event id is a no-op and
a crashing handler is not reprocessed on redelivery.
"""
import enum
import hashlib
import json
from datetime import datetime, timezone
from flask import current_app
from sqlalchemy.exc import IntegrityError

from qrmenu_billing.extension.extensions import db
from qrmenu_billing.models.webhook_event import RazorpayWebhookEvent
from qrmenu_billing.models.subscription import SubscriptionStatus, utcnow
from qrmenu_billing.models.payment import PaymentStatus
from qrmenu_billing.services import razorpay_service
from qrmenu_billing.services.errors import InvalidSignature, ValidationError
from qrmenu_billing.services.subscription_service import (
    get_subscription_by_gateway_id, get_subscription_by_pending_gateway_id,
    activate_staged_upgrade, release_replaced_subscription, calculate_period_end,
    record_payment, sync_restaurant_plan
)


class WebhookEventType(str, enum.Enum):
    SUBSCRIPTION_ACTIVATED = "subscription.activated"
    SUBSCRIPTION_CHARGED = "subscription.charged"
    SUBSCRIPTION_PENDING = "subscription.pending"
    SUBSCRIPTION_HALTED = "subscription.halted"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value):
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


def resolve_event_id(payload, raw_body, header_event_id=None):
    """
    Prefer the gateway's own id. Without one, fall back to a hash of the
    exact body so two different events of the same type never collide.
    """
    event_id = payload.get('event_id') or header_event_id
    if event_id:
        return str(event_id)
    digest = hashlib.sha256(raw_body).hexdigest()
    return f"{payload.get('event')}-{digest}"


def _entity(payload, name):
    section = (payload.get('payload') or {}).get(name) or {}
    return section.get('entity')


def _from_unix(ts):
    if not ts:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


def _note_user_id(payment):
    notes = payment.get('notes')
    if not isinstance(notes, dict):
        # Razorpay sends [] for empty notes
        return None
    raw = notes.get('user_id')
    if raw in (None, ''):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        current_app.logger.warning(f"Ignoring non-numeric user_id note on payment {payment.get('id')}: {raw!r}")
        return None


def _activate_from_gateway(sub, entity, now):
    start = _from_unix(entity.get('current_start')) or now
    end = _from_unix(entity.get('current_end')) or calculate_period_end(start, sub.billing_cycle)
    sub.activate(start, end)


def _resolve_for_activation(gateway_id, entity, now):
    """
    Find the record a gateway subscription belongs to and make it active.

    Returns (subscription, replaced_gateway_id); subscription is None when no
    record references the gateway id.
    """
    sub = get_subscription_by_gateway_id(gateway_id)
    if sub is not None:
        return sub, None

    sub = get_subscription_by_pending_gateway_id(gateway_id)
    if sub is None:
        return None, None
    replaced = activate_staged_upgrade(sub, now)
    if entity.get('current_end'):
        _activate_from_gateway(sub, entity, now)
    return sub, replaced


def handle_subscription_activated(payload):
    entity = _entity(payload, 'subscription')
    if not entity or not entity.get('id'):
        return
    gateway_id = entity['id']
    now = utcnow()

    sub, replaced = _resolve_for_activation(gateway_id, entity, now)
    if sub is None:
        current_app.logger.warning(f"subscription.activated for unknown subscription {gateway_id}")
        return
    if replaced is None:
        _activate_from_gateway(sub, entity, now)
    sync_restaurant_plan(sub)
    db.session.commit()
    release_replaced_subscription(replaced)

    current_app.logger.info(f"✅ Subscription activated: {gateway_id}")


def handle_subscription_charged(payload):
    entity = _entity(payload, 'subscription')
    payment = _entity(payload, 'payment')
    if not entity or not entity.get('id') or not payment:
        return
    gateway_id = entity['id']
    now = utcnow()

    sub, replaced = _resolve_for_activation(gateway_id, entity, now)
    if sub is None:
        current_app.logger.warning(f"subscription.charged for unknown subscription {gateway_id}")
        return
    if replaced is None and sub.status in (SubscriptionStatus.pending, SubscriptionStatus.halted):
        # a successful charge after a retry cycle revives the subscription
        _activate_from_gateway(sub, entity, now)

    record_payment(
        user_id=sub.user_id,
        payment_id=payment.get('id'),
        status=PaymentStatus.captured,
        amount_paise=payment.get('amount'),
        currency=payment.get('currency'),
        method=payment.get('method'),
        subscription_id=sub.id,
        razorpay_subscription_id=gateway_id
    )

    period_end = _from_unix(entity.get('current_end'))
    if period_end:
        sub.current_period_end = period_end
    sync_restaurant_plan(sub)
    db.session.commit()
    release_replaced_subscription(replaced)

    current_app.logger.info(f"✅ Subscription charged: {gateway_id}")


def _set_status(payload, status, label):
    entity = _entity(payload, 'subscription')
    if not entity or not entity.get('id'):
        return
    gateway_id = entity['id']

    sub = get_subscription_by_gateway_id(gateway_id)
    if sub is None:
        current_app.logger.info(f"{label} for unknown subscription {gateway_id}, ignoring")
        return
    sub.status = status
    if status == SubscriptionStatus.cancelled:
        sub.cancelled_at = utcnow()
    db.session.commit()

    current_app.logger.info(f"{label}: {gateway_id}")


def handle_subscription_pending(payload):
    _set_status(payload, SubscriptionStatus.pending, "⏳ Subscription pending")


def handle_subscription_halted(payload):
    _set_status(payload, SubscriptionStatus.halted, "⚠️ Subscription halted")


def handle_subscription_cancelled(payload):
    _set_status(payload, SubscriptionStatus.cancelled, "❌ Subscription cancelled")


def _record_gateway_payment(payload, status):
    payment = _entity(payload, 'payment')
    if not payment:
        return
    user_id = _note_user_id(payment)
    if user_id is None:
        current_app.logger.info(f"Payment {payment.get('id')} carries no user_id note, not recorded")
        return

    metadata = None
    if status == PaymentStatus.failed:
        metadata = {
            "error_code": payment.get('error_code'),
            "error_description": payment.get('error_description'),
        }
    record_payment(
        user_id=user_id,
        payment_id=payment.get('id'),
        status=status,
        amount_paise=payment.get('amount'),
        currency=payment.get('currency'),
        method=payment.get('method'),
        metadata=metadata
    )
    db.session.commit()


def handle_payment_captured(payload):
    _record_gateway_payment(payload, PaymentStatus.captured)
    current_app.logger.info(f"✅ Payment captured: {(_entity(payload, 'payment') or {}).get('id')}")


def handle_payment_failed(payload):
    _record_gateway_payment(payload, PaymentStatus.failed)
    current_app.logger.info(f"❌ Payment failed: {(_entity(payload, 'payment') or {}).get('id')}")


EVENT_HANDLERS = {
    WebhookEventType.SUBSCRIPTION_ACTIVATED: handle_subscription_activated,
    WebhookEventType.SUBSCRIPTION_CHARGED: handle_subscription_charged,
    WebhookEventType.SUBSCRIPTION_PENDING: handle_subscription_pending,
    WebhookEventType.SUBSCRIPTION_HALTED: handle_subscription_halted,
    WebhookEventType.SUBSCRIPTION_CANCELLED: handle_subscription_cancelled,
    WebhookEventType.PAYMENT_CAPTURED: handle_payment_captured,
    WebhookEventType.PAYMENT_FAILED: handle_payment_failed,
}


def process_webhook(raw_body, signature, header_event_id=None):
    """
    Authenticate, dedupe and apply one webhook delivery.

    Returns:
        dict: {"status": "processed" | "duplicate", "event_id": ...}
    """
    if not razorpay_service.verify_webhook_signature(raw_body, signature):
        current_app.logger.error("Invalid webhook signature")
        raise InvalidSignature("Invalid signature", status_code=401)

    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise ValidationError("Invalid JSON payload")
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    event_type = payload.get('event')
    event_id = resolve_event_id(payload, raw_body, header_event_id)

    if RazorpayWebhookEvent.query.filter_by(event_id=event_id).first():
        current_app.logger.info(f"Duplicate event, skipping: {event_id}")
        return {"status": "duplicate", "event_id": event_id}

    db.session.add(RazorpayWebhookEvent(event_id=event_id, event_type=event_type, payload=payload))
    try:
        db.session.commit()
    except IntegrityError:
        # concurrent delivery of the same event won the insert
        db.session.rollback()
        current_app.logger.info(f"Duplicate event (concurrent), skipping: {event_id}")
        return {"status": "duplicate", "event_id": event_id}

    kind = WebhookEventType.parse(event_type)
    handler = EVENT_HANDLERS.get(kind)
    if handler is None:
        current_app.logger.info(f"Unhandled event type: {event_type}")
        return {"status": "processed", "event_id": event_id}

    try:
        handler(payload)
    except Exception as e:
        # acknowledged regardless of handler outcome
        db.session.rollback()
        current_app.logger.exception(f"Webhook handler {kind.value} failed for {event_id}: {e}")

    return {"status": "processed", "event_id": event_id}
