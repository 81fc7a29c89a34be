# models/payment.py
import enum
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, Numeric, JSON
from sqlalchemy.sql import func
from qrmenu_billing.extension.extensions import db


class PaymentStatus(str, enum.Enum):
    captured = "captured"
    failed = "failed"


class PaymentTransaction(db.Model):
    """Append-only payment ledger. Rows are never updated after insert."""
    __tablename__ = 'payment_transactions'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    subscription_id = Column(Integer, ForeignKey('user_subscriptions.id', ondelete='SET NULL'), nullable=True)
    razorpay_payment_id = Column(String(64), unique=True, nullable=True)
    razorpay_subscription_id = Column(String(64), nullable=True)
    razorpay_signature = Column(String(128), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(8), nullable=False, default='INR')
    status = Column(Enum(PaymentStatus), nullable=False)
    payment_method = Column(String(32), nullable=True)
    meta = Column('metadata', JSON, nullable=True)   # error codes, order id
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
