import razorpay
import requests
import hmac
import hashlib
from decimal import Decimal, ROUND_HALF_UP
from flask import current_app

from qrmenu_billing.services.errors import ConfigurationError, GatewayError

# Subscriptions run "forever": 10 years worth of charges
TOTAL_COUNT = {"monthly": 120, "yearly": 10}
PLAN_PAGE_SIZE = 100
PLAN_MAX_PAGES = 20

_SDK_ERRORS = (
    razorpay.errors.BadRequestError,
    razorpay.errors.GatewayError,
    razorpay.errors.ServerError,
    requests.exceptions.RequestException,
)


def is_configured():
    return bool(current_app.config.get('RAZORPAY_KEY_ID') and current_app.config.get('RAZORPAY_KEY_SECRET'))


def get_razorpay_client():
    """Initialize Razorpay client with keys from config"""
    if not is_configured():
        raise ConfigurationError("Payment gateway not configured")
    return razorpay.Client(
        auth=(
            current_app.config['RAZORPAY_KEY_ID'],
            current_app.config['RAZORPAY_KEY_SECRET']
        )
    )


def to_paise(amount):
    # ₹1 = 100 paise
    return int((Decimal(str(amount)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_paise(amount_paise):
    return (Decimal(int(amount_paise or 0)) / 100).quantize(Decimal('0.01'))


def _to_bytes(value):
    if isinstance(value, bytes):
        return value
    # lone surrogates can arrive through JSON escapes
    return str(value).encode('utf-8', 'surrogatepass')


def _hmac_hex(secret, message):
    return hmac.new(_to_bytes(secret), _to_bytes(message), hashlib.sha256).hexdigest()


def digests_match(expected, given):
    """Constant-time comparison that tolerates arbitrary client-supplied text."""
    if not expected or not given:
        return False
    return hmac.compare_digest(_to_bytes(expected), _to_bytes(given))


def verify_subscription_signature(payment_id, subscription_id, signature):
    """
    Verify the checkout signature Razorpay hands the client for a subscription payment

    Args:
        payment_id: Razorpay payment ID (pay_...)
        subscription_id: Razorpay subscription ID (sub_...)
        signature: razorpay_signature from the checkout callback

    Returns:
        bool: True if signature is valid, False otherwise
    """
    secret = current_app.config.get('RAZORPAY_KEY_SECRET')
    if not secret:
        raise ConfigurationError("Payment gateway not configured")

    generated_signature = _hmac_hex(secret, f"{payment_id}|{subscription_id}")
    is_valid = digests_match(generated_signature, signature)

    current_app.logger.info(f"Payment signature verification: {is_valid}")
    return is_valid


def verify_webhook_signature(raw_body, signature):
    """
    Verify X-Razorpay-Signature over the exact request bytes.
    Must run on the raw body, never on re-serialized JSON.
    """
    secret = current_app.config.get('RAZORPAY_WEBHOOK_SECRET')
    if not secret:
        raise ConfigurationError("Webhook not configured")
    if not signature:
        return False
    expected = _hmac_hex(secret, raw_body)
    return digests_match(expected, signature)


def _call(description, fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except _SDK_ERRORS as e:
        current_app.logger.error(f"Razorpay {description} failed: {e}")
        raise GatewayError(str(e) or f"Failed to {description}")


def get_or_create_plan(plan_slug, amount, period):
    """
    Reuse a gateway plan with the same name and amount, or create one.

    Args:
        plan_slug: our plan slug ('starter', 'pro', ...)
        amount: price in INR for one billing period
        period: 'monthly' | 'yearly'

    Returns:
        str: Razorpay plan id
    """
    client = get_razorpay_client()
    name = f"{plan_slug}-{period}"
    amount_paise = to_paise(amount)

    for page in range(PLAN_MAX_PAGES):
        data = _call("list plans", client.plan.all, {'count': PLAN_PAGE_SIZE, 'skip': page * PLAN_PAGE_SIZE})
        items = data.get('items') or []
        for p in items:
            item = p.get('item') or {}
            if item.get('name') == name and item.get('amount') == amount_paise:
                current_app.logger.info(f"Reusing Razorpay plan {p['id']} for {name}")
                return p['id']
        if len(items) < PLAN_PAGE_SIZE:
            break

    plan_data = {
        'period': period,
        'interval': 1,
        'item': {
            'name': name,
            'amount': amount_paise,
            'currency': current_app.config.get('RAZORPAY_CURRENCY', 'INR'),
            'description': f"AddMenu {plan_slug} {period} subscription",
        }
    }
    current_app.logger.info(f"Creating Razorpay plan: {name} ({amount_paise} paise)")
    plan = _call("create plan", client.plan.create, data=plan_data)
    current_app.logger.info(f"Razorpay plan created: {plan['id']}")
    return plan['id']


def create_subscription(gateway_plan_id, billing_cycle, notes=None):
    """
    Create a Razorpay subscription against a gateway plan

    Returns:
        dict: Razorpay subscription object (id, status, short_url, ...)
    """
    client = get_razorpay_client()
    data = {
        'plan_id': gateway_plan_id,
        'total_count': TOTAL_COUNT.get(billing_cycle, TOTAL_COUNT['monthly']),
        'customer_notify': 1,
        'notes': notes or {},
    }
    subscription = _call("create subscription", client.subscription.create, data=data)
    current_app.logger.info(f"Razorpay subscription created: {subscription['id']}")
    return subscription


def cancel_subscription(subscription_id, at_cycle_end=False):
    """
    Best-effort cancel. Never raises for gateway failures.

    Returns:
        tuple: (ok, error_message)
    """
    try:
        client = get_razorpay_client()
        client.subscription.cancel(subscription_id, {'cancel_at_cycle_end': 1 if at_cycle_end else 0})
    except (ConfigurationError,) + _SDK_ERRORS as e:
        current_app.logger.warning(f"Failed to cancel Razorpay subscription {subscription_id}: {e}")
        return False, str(e)
    current_app.logger.info(f"Razorpay subscription cancelled: {subscription_id}")
    return True, None


def get_payment_details(payment_id):
    """
    Fetch payment details from Razorpay

    Returns:
        dict: Payment details including amount (paise), status, method, etc.
    """
    client = get_razorpay_client()
    payment = _call("fetch payment", client.payment.fetch, payment_id)
    current_app.logger.info(f"Fetched payment details: {payment_id}")
    return payment
