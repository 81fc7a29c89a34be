import hashlib
import hmac
import itertools
from datetime import timedelta

import pytest
import razorpay
from flask_jwt_extended import create_access_token

from qrmenu_billing import create_app
from qrmenu_billing.config import Config
from qrmenu_billing.extension.extensions import db as _db
from qrmenu_billing.models import (
    SubscriptionPlan, User, Restaurant, UserSubscription, SubscriptionStatus, BillingCycle
)
from qrmenu_billing.models.subscription import utcnow
from qrmenu_billing.services import razorpay_service


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    JWT_SECRET_KEY = "testing-jwt-secret-with-enough-bytes-for-hs256"
    RAZORPAY_KEY_ID = "rzp_test_key"
    RAZORPAY_KEY_SECRET = "rzp_test_secret"
    RAZORPAY_WEBHOOK_SECRET = "whsec"
    CRON_SECRET = "cron-secret"
    SERVICE_ROLE_KEY = "service-role-key"
    LOG_LEVEL = "WARNING"


class FakePlans:
    def __init__(self, ids):
        self._ids = ids
        self.items = []
        self.created = []

    def all(self, data=None, **kwargs):
        data = data or {}
        skip = data.get('skip', 0)
        count = data.get('count', 10)
        page = self.items[skip:skip + count]
        return {"entity": "collection", "count": len(page), "items": page}

    def create(self, data=None, **kwargs):
        plan = {
            "id": f"plan_{next(self._ids):014d}",
            "entity": "plan",
            "period": data['period'],
            "interval": data['interval'],
            "item": dict(data['item']),
        }
        self.items.append(plan)
        self.created.append(plan)
        return plan


class FakeSubscriptions:
    def __init__(self, ids):
        self._ids = ids
        self.created = []
        self.cancelled = []
        self.fail_create = None
        self.fail_cancel = False

    def create(self, data=None, **kwargs):
        if self.fail_create:
            raise razorpay.errors.BadRequestError(self.fail_create)
        sub = dict(data, id=f"sub_{next(self._ids):014d}", entity="subscription", status="created")
        self.created.append(sub)
        return sub

    def cancel(self, subscription_id, data=None, **kwargs):
        self.cancelled.append((subscription_id, data))
        if self.fail_cancel:
            raise razorpay.errors.ServerError("Gateway timeout")
        return {"id": subscription_id, "status": "cancelled"}


class FakePayments:
    def __init__(self):
        self.payments = {}

    def add(self, payment_id, status="captured", amount=29900, method="upi", **extra):
        self.payments[payment_id] = dict(
            id=payment_id, status=status, amount=amount, currency="INR", method=method,
            order_id=f"order_{payment_id[4:]}", email="owner@example.com", **extra
        )
        return self.payments[payment_id]

    def fetch(self, payment_id, data=None, **kwargs):
        if payment_id not in self.payments:
            raise razorpay.errors.BadRequestError("The id provided does not exist")
        return self.payments[payment_id]


class FakeRazorpayClient:
    def __init__(self):
        ids = itertools.count(1)
        self.plan = FakePlans(ids)
        self.subscription = FakeSubscriptions(ids)
        self.payment = FakePayments()


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def gateway(monkeypatch):
    fake = FakeRazorpayClient()
    monkeypatch.setattr(razorpay_service, "get_razorpay_client", lambda: fake)
    return fake


@pytest.fixture
def plans(db):
    starter = SubscriptionPlan(slug="menu-only", name="Menu Only", price_monthly=299, price_yearly=2999,
                               has_orders_feature=False, max_menu_items=100)
    pro = SubscriptionPlan(slug="pro", name="Pro", price_monthly=799, price_yearly=7999,
                           has_orders_feature=True, max_tables=50)
    db.session.add_all([starter, pro])
    db.session.commit()
    return {"starter": starter, "pro": pro}


def make_owner(db, email="owner@example.com", role="owner", with_restaurant=True):
    user = User(email=email, name="Owner", role=role)
    user.set_password("correct-horse")
    db.session.add(user)
    db.session.flush()
    if with_restaurant:
        db.session.add(Restaurant(user_id=user.id, name="Cafe Uno", email=email))
    db.session.commit()
    return user


# passing period_end=None stores a record without a period end
DEFAULT_END = object()


def make_subscription(db, user, plan, status=SubscriptionStatus.active, cycle=BillingCycle.monthly,
                      gateway_id="sub_A0000000000001", period_end=DEFAULT_END, period_start=None):
    now = utcnow()
    sub = UserSubscription(
        user_id=user.id,
        restaurant_id=user.restaurant.id if user.restaurant else None,
        plan_id=plan.id,
        billing_cycle=cycle,
        razorpay_subscription_id=gateway_id,
        status=status,
        current_period_start=period_start or (now - timedelta(days=5)),
        current_period_end=now + timedelta(days=25) if period_end is DEFAULT_END else period_end,
    )
    db.session.add(sub)
    db.session.commit()
    return sub


@pytest.fixture
def owner(db):
    return make_owner(db)


def auth_headers(user, **claims):
    claims.setdefault("role", user.role)
    claims.setdefault("email", user.email)
    token = create_access_token(identity=str(user.id), additional_claims=claims)
    return {"Authorization": f"Bearer {token}"}


def sign_payment(payment_id, subscription_id, secret="rzp_test_secret"):
    message = f"{payment_id}|{subscription_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def sign_body(body, secret="whsec"):
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
