from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from qrmenu_billing.extension.extensions import db

class RazorpayWebhookEvent(db.Model):
    """Idempotency ledger: one row per distinct inbound webhook event id."""
    __tablename__ = 'razorpay_webhook_events'

    id = Column(Integer, primary_key=True)
    event_id = Column(String(128), unique=True, nullable=False)
    event_type = Column(String(64), nullable=True)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
