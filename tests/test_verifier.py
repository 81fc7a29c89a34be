from datetime import timedelta

from qrmenu_billing.models import UserSubscription, SubscriptionStatus, PaymentTransaction, PaymentStatus, Restaurant
from qrmenu_billing.models.subscription import utcnow, as_utc
from qrmenu_billing.services import subscription_service
from qrmenu_billing.services.subscription_service import calculate_period_end
from conftest import auth_headers, make_subscription, sign_payment


def _verify(client, user, payment_id, subscription_id, signature=None):
    return client.post(
        "/api/subscriptions/verify",
        json={
            "paymentId": payment_id,
            "subscriptionId": subscription_id,
            "signature": signature or sign_payment(payment_id, subscription_id),
        },
        headers=auth_headers(user),
    )


def test_end_to_end_create_then_verify(client, gateway, plans, owner):
    created = client.post("/api/subscriptions/create",
                          json={"planId": plans["pro"].id, "billingCycle": "monthly"},
                          headers=auth_headers(owner)).get_json()
    sub_id = created["subscriptionId"]
    assert UserSubscription.query.one().status == SubscriptionStatus.pending

    gateway.payment.add("pay_E2E000000001", amount=79900)
    before = utcnow()
    resp = _verify(client, owner, "pay_E2E000000001", sub_id)

    assert resp.status_code == 200
    assert resp.get_json() == {"success": True}

    sub = UserSubscription.query.one()
    assert sub.status == SubscriptionStatus.active
    start = as_utc(sub.current_period_start)
    assert before - timedelta(seconds=5) <= start <= utcnow()
    assert as_utc(sub.current_period_end) == calculate_period_end(start, "monthly")

    txn = PaymentTransaction.query.one()
    assert txn.status == PaymentStatus.captured
    assert txn.razorpay_payment_id == "pay_E2E000000001"
    assert txn.razorpay_subscription_id == sub_id
    assert txn.subscription_id == sub.id
    assert str(txn.amount) == "799.00"
    assert txn.payment_method == "upi"
    assert txn.meta["order_id"] == "order_E2E000000001"

    restaurant = Restaurant.query.filter_by(user_id=owner.id).one()
    assert restaurant.subscription_plan_id == plans["pro"].id


def test_bad_signature_changes_nothing(client, gateway, plans, owner, db):
    make_subscription(db, owner, plans["starter"], status=SubscriptionStatus.pending)
    gateway.payment.add("pay_BAD000000001")

    resp = _verify(client, owner, "pay_BAD000000001", "sub_A0000000000001", signature="0" * 64)

    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Invalid payment signature"}
    assert UserSubscription.query.one().status == SubscriptionStatus.pending
    assert PaymentTransaction.query.count() == 0


def test_unsuccessful_payment_is_rejected(client, gateway, plans, owner, db):
    make_subscription(db, owner, plans["starter"], status=SubscriptionStatus.pending)
    gateway.payment.add("pay_FAIL00000001", status="failed")

    resp = _verify(client, owner, "pay_FAIL00000001", "sub_A0000000000001")

    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Payment not successful"}
    assert UserSubscription.query.one().status == SubscriptionStatus.pending


def test_authorized_payment_is_accepted(client, gateway, plans, owner, db):
    make_subscription(db, owner, plans["starter"], status=SubscriptionStatus.pending)
    gateway.payment.add("pay_AUTH00000001", status="authorized")

    assert _verify(client, owner, "pay_AUTH00000001", "sub_A0000000000001").status_code == 200
    assert UserSubscription.query.one().status == SubscriptionStatus.active


def test_missing_record_is_404(client, gateway, plans, owner):
    gateway.payment.add("pay_NONE00000001")
    resp = _verify(client, owner, "pay_NONE00000001", "sub_A0000000000001")
    assert resp.status_code == 404
    assert resp.get_json() == {"error": "Subscription not found"}


def test_unknown_payment_surfaces_gateway_error(client, gateway, plans, owner, db):
    make_subscription(db, owner, plans["starter"], status=SubscriptionStatus.pending)
    resp = _verify(client, owner, "pay_MISSING00001", "sub_A0000000000001")
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "The id provided does not exist"}


def test_repeated_verify_records_payment_once(client, gateway, plans, owner, db):
    make_subscription(db, owner, plans["starter"], status=SubscriptionStatus.pending)
    gateway.payment.add("pay_TWICE0000001")

    assert _verify(client, owner, "pay_TWICE0000001", "sub_A0000000000001").status_code == 200
    assert _verify(client, owner, "pay_TWICE0000001", "sub_A0000000000001").status_code == 200

    assert PaymentTransaction.query.count() == 1


def test_staged_upgrade_keeps_old_plan_until_verified(client, gateway, plans, owner, db):
    make_subscription(db, owner, plans["starter"], gateway_id="sub_A0000000000001")

    staged = client.post("/api/subscriptions/create",
                         json={"planId": plans["pro"].id, "billingCycle": "yearly"},
                         headers=auth_headers(owner)).get_json()
    new_sub_id = staged["subscriptionId"]

    # effective plan is unchanged before payment
    sub = UserSubscription.query.one()
    assert sub.plan_id == plans["starter"].id
    assert sub.status == SubscriptionStatus.active
    features = client.get("/api/subscriptions/features", headers=auth_headers(owner)).get_json()
    assert features["plan"] == "menu-only"

    gateway.payment.add("pay_UPGRADE00001", amount=799900)
    assert _verify(client, owner, "pay_UPGRADE00001", new_sub_id).status_code == 200

    sub = UserSubscription.query.one()
    assert sub.plan_id == plans["pro"].id
    assert sub.razorpay_subscription_id == new_sub_id
    assert sub.billing_cycle.value == "yearly"
    assert sub.status == SubscriptionStatus.active
    assert (sub.pending_plan_id, sub.pending_razorpay_subscription_id, sub.pending_billing_cycle) == (None, None, None)
    start = as_utc(sub.current_period_start)
    assert as_utc(sub.current_period_end) == calculate_period_end(start, "yearly")

    assert gateway.subscription.cancelled == [("sub_A0000000000001", {"cancel_at_cycle_end": 0})]
    assert Restaurant.query.one().subscription_plan_id == plans["pro"].id


def test_upgrade_promotion_survives_failed_old_cancel(client, gateway, plans, owner, db):
    sub = make_subscription(db, owner, plans["starter"], gateway_id="sub_A0000000000001")
    sub.stage_upgrade(plans["pro"].id, "sub_B0000000000002", "monthly")
    db.session.commit()
    gateway.subscription.fail_cancel = True
    gateway.payment.add("pay_UPGRADE00002")

    resp = _verify(client, owner, "pay_UPGRADE00002", "sub_B0000000000002")

    assert resp.status_code == 200
    sub = UserSubscription.query.one()
    assert sub.plan_id == plans["pro"].id
    assert sub.razorpay_subscription_id == "sub_B0000000000002"
    assert sub.pending_plan_id is None


def test_payment_for_original_subscription_does_not_promote(client, gateway, plans, owner, db):
    sub = make_subscription(db, owner, plans["starter"], gateway_id="sub_A0000000000001",
                            status=SubscriptionStatus.pending)
    sub.stage_upgrade(plans["pro"].id, "sub_B0000000000002", "monthly")
    db.session.commit()
    gateway.payment.add("pay_ORIGINAL0001")

    assert _verify(client, owner, "pay_ORIGINAL0001", "sub_A0000000000001").status_code == 200

    sub = UserSubscription.query.one()
    assert sub.plan_id == plans["starter"].id
    assert sub.pending_plan_id == plans["pro"].id
    assert sub.status == SubscriptionStatus.active
    assert gateway.subscription.cancelled == []


def test_non_ascii_signature_is_rejected_not_crashed(client, gateway, plans, owner, db):
    make_subscription(db, owner, plans["starter"], status=SubscriptionStatus.pending)
    gateway.payment.add("pay_UTF8000000001")

    resp = _verify(client, owner, "pay_UTF8000000001", "sub_A0000000000001", signature="é" * 64)

    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Invalid payment signature"}
    assert UserSubscription.query.one().status == SubscriptionStatus.pending


def test_concurrently_recorded_payment_keeps_activation(client, gateway, plans, owner, db, monkeypatch):
    sub = make_subscription(db, owner, plans["starter"], status=SubscriptionStatus.pending)
    # a webhook for the same payment lands between the lookup and the insert
    db.session.add(PaymentTransaction(user_id=owner.id, subscription_id=sub.id,
                                      razorpay_payment_id="pay_RACE00000001", amount=299,
                                      status=PaymentStatus.captured))
    db.session.commit()
    real_find = subscription_service.find_payment
    calls = []

    def lookup_misses_first_time(payment_id):
        calls.append(payment_id)
        if len(calls) == 1:
            return None
        return real_find(payment_id)

    monkeypatch.setattr(subscription_service, "find_payment", lookup_misses_first_time)
    gateway.payment.add("pay_RACE00000001")

    resp = _verify(client, owner, "pay_RACE00000001", "sub_A0000000000001")

    assert resp.status_code == 200
    assert resp.get_json() == {"success": True}
    assert UserSubscription.query.one().status == SubscriptionStatus.active
    assert PaymentTransaction.query.count() == 1
    assert Restaurant.query.one().subscription_plan_id == plans["starter"].id
