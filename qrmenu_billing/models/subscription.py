# models/subscription.py
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, UniqueConstraint, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from qrmenu_billing.extension.extensions import db
import enum


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(dt):
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class SubscriptionStatus(str, enum.Enum):
    pending = "pending"
    active = "active"
    halted = "halted"
    cancelled = "cancelled"
    expired = "expired"


class BillingCycle(str, enum.Enum):
    monthly = "monthly"
    yearly = "yearly"


class UserSubscription(db.Model):
    __tablename__ = 'user_subscriptions'
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    restaurant_id = Column(Integer, ForeignKey('restaurants.id', ondelete='SET NULL'), nullable=True)
    plan_id = Column(Integer, ForeignKey('subscription_plans.id', ondelete='RESTRICT'), nullable=False)
    billing_cycle = Column(Enum(BillingCycle), nullable=False, default=BillingCycle.monthly)
    razorpay_subscription_id = Column(String(64), nullable=True, index=True)   # gateway sub id
    status = Column(Enum(SubscriptionStatus), nullable=False, index=True, default=SubscriptionStatus.pending)

    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)   # exclusive
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # staged upgrade, waiting on payment confirmation
    pending_plan_id = Column(Integer, ForeignKey('subscription_plans.id', ondelete='SET NULL'), nullable=True)
    pending_razorpay_subscription_id = Column(String(64), nullable=True, index=True)
    pending_billing_cycle = Column(Enum(BillingCycle), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship('User', back_populates='subscription')
    restaurant = relationship('Restaurant')
    plan = relationship('SubscriptionPlan', foreign_keys=[plan_id])
    pending_plan = relationship('SubscriptionPlan', foreign_keys=[pending_plan_id])

    __table_args__ = (
        UniqueConstraint('user_id', name='uq_user_subscriptions_user'),
        Index('ix_user_subscriptions_status_period_end', 'status', 'current_period_end'),
    )

    @property
    def has_pending_upgrade(self):
        return self.pending_plan_id is not None

    def stage_upgrade(self, plan_id, razorpay_subscription_id, billing_cycle):
        self.pending_plan_id = plan_id
        self.pending_razorpay_subscription_id = razorpay_subscription_id
        self.pending_billing_cycle = BillingCycle(billing_cycle)

    def clear_pending(self):
        self.pending_plan_id = None
        self.pending_razorpay_subscription_id = None
        self.pending_billing_cycle = None

    def promote_pending(self):
        """Swap the staged upgrade into the primary fields.

        Returns the gateway id of the subscription being replaced.
        """
        previous = self.razorpay_subscription_id
        self.plan_id = self.pending_plan_id
        self.razorpay_subscription_id = self.pending_razorpay_subscription_id
        self.billing_cycle = self.pending_billing_cycle
        self.clear_pending()
        return previous

    def activate(self, period_start, period_end):
        self.status = SubscriptionStatus.active
        self.current_period_start = period_start
        self.current_period_end = period_end

    def is_current(self, ts=None):
        ts = ts or utcnow()
        end = as_utc(self.current_period_end)
        return self.status == SubscriptionStatus.active and end is not None and end > ts

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "restaurant_id": self.restaurant_id,
            "plan_id": self.plan_id,
            "plan": self.plan.slug if self.plan else None,
            "billing_cycle": self.billing_cycle.value if self.billing_cycle else None,
            "status": self.status.value,
            "razorpay_subscription_id": self.razorpay_subscription_id,
            "current_period_start": _iso(self.current_period_start),
            "current_period_end": _iso(self.current_period_end),
            "cancelled_at": _iso(self.cancelled_at),
            "pending_plan_id": self.pending_plan_id,
            "pending_billing_cycle": self.pending_billing_cycle.value if self.pending_billing_cycle else None,
        }


def _iso(dt):
    dt = as_utc(dt)
    return dt.isoformat() if dt else None
