import json

import pytest

from qrmenu_billing.services import razorpay_service
from qrmenu_billing.services.errors import ConfigurationError
from conftest import sign_body, sign_payment

BODY = b'{"event":"x"}'


def test_webhook_signature_accepts_exact_digest(app):
    assert razorpay_service.verify_webhook_signature(BODY, sign_body(BODY, "whsec"))


def test_webhook_signature_rejects_every_single_byte_mutation(app):
    signature = sign_body(BODY, "whsec")
    for i in range(len(BODY)):
        mutated = bytearray(BODY)
        mutated[i] ^= 0x01
        assert not razorpay_service.verify_webhook_signature(bytes(mutated), signature)


def test_webhook_signature_is_over_raw_bytes_not_reserialized_json(app):
    spaced = b'{"event": "x"}'
    assert json.loads(spaced) == json.loads(BODY)
    assert not razorpay_service.verify_webhook_signature(spaced, sign_body(BODY))


def test_webhook_signature_rejects_missing_or_wrong_secret(app):
    assert not razorpay_service.verify_webhook_signature(BODY, None)
    assert not razorpay_service.verify_webhook_signature(BODY, sign_body(BODY, "other"))


@pytest.mark.parametrize("forged", ["é" * 64, "\ud800" * 64, "ø", 12345])
def test_arbitrary_client_text_is_a_mismatch_not_an_error(app, forged):
    assert not razorpay_service.verify_webhook_signature(BODY, forged)
    assert not razorpay_service.verify_subscription_signature("pay_1", "sub_1", forged)


def test_digests_match():
    assert razorpay_service.digests_match("abc", "abc")
    assert not razorpay_service.digests_match("abc", "abd")
    assert not razorpay_service.digests_match("secret", None)
    assert not razorpay_service.digests_match(None, "secret")
    assert not razorpay_service.digests_match("secret", "sécret")


def test_webhook_signature_requires_configured_secret(app):
    app.config["RAZORPAY_WEBHOOK_SECRET"] = None
    with pytest.raises(ConfigurationError):
        razorpay_service.verify_webhook_signature(BODY, sign_body(BODY))


def test_subscription_signature_uses_payment_then_subscription(app):
    good = sign_payment("pay_123", "sub_456")
    assert razorpay_service.verify_subscription_signature("pay_123", "sub_456", good)
    assert not razorpay_service.verify_subscription_signature("sub_456", "pay_123", good)
    assert not razorpay_service.verify_subscription_signature("pay_123", "sub_456", None)


def test_paise_conversion():
    assert razorpay_service.to_paise(299) == 29900
    assert razorpay_service.to_paise("7999.99") == 799999
    assert str(razorpay_service.from_paise(29900)) == "299.00"


def test_client_requires_credentials(app):
    app.config["RAZORPAY_KEY_SECRET"] = None
    assert not razorpay_service.is_configured()
    with pytest.raises(ConfigurationError):
        razorpay_service.get_razorpay_client()
