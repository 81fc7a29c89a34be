import enum
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum
from sqlalchemy.sql import func
from qrmenu_billing.extension.extensions import db
from qrmenu_billing.models.subscription import BillingCycle


class RegistrationStatus(str, enum.Enum):
    pending = "pending"
    completed = "completed"
    expired = "expired"


# Written over password_hash once a registration can no longer be redeemed
CLEARED = "[CLEARED]"
EXPIRED = "[EXPIRED]"


class PendingRegistration(db.Model):
    __tablename__ = 'pending_registrations'

    id = Column(Integer, primary_key=True)
    email = Column(String(254), nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    restaurant_name = Column(String(100), nullable=False)
    restaurant_description = Column(String(500), nullable=True)
    plan_id = Column(Integer, ForeignKey('subscription_plans.id', ondelete='CASCADE'), nullable=False)
    billing_cycle = Column(Enum(BillingCycle), nullable=False)
    razorpay_subscription_id = Column(String(64), unique=True, nullable=False)
    status = Column(Enum(RegistrationStatus), nullable=False, default=RegistrationStatus.pending)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def is_redeemed(self):
        return self.password_hash in (CLEARED, EXPIRED)
