from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from qrmenu_billing.extension.extensions import db

class AdminActionLog(db.Model):
    __tablename__ = 'admin_actions_log'

    id = Column(Integer, primary_key=True)
    admin_email = Column(String(254), nullable=False)      # actor
    action_type = Column(String(64), nullable=False, index=True)
    restaurant_id = Column(Integer, ForeignKey('restaurants.id', ondelete='SET NULL'), nullable=True)
    details = Column(JSON, nullable=False, default={})
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class PaymentSecurityLog(db.Model):
    __tablename__ = 'payment_security_log'

    id = Column(Integer, primary_key=True)
    event_type = Column(String(64), nullable=False, index=True)
    ip_hash = Column(String(16), nullable=True)
    email_hash = Column(String(16), nullable=True)
    user_agent_hash = Column(String(16), nullable=True)
    success = Column(Boolean, nullable=False, default=False)
    error_message = Column(String(500), nullable=True)
    meta = Column('metadata', JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
