from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from qrmenu_billing.extension.extensions import db

class Restaurant(db.Model):
    __tablename__ = 'restaurants'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    email = Column(String(254), nullable=True)
    description = Column(String(500), nullable=True)

    # Denormalized copy of the current subscription's plan, read by the menu app
    subscription_plan_id = Column(Integer, ForeignKey('subscription_plans.id', ondelete='SET NULL'), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship('User', back_populates='restaurant')
    subscription_plan = relationship('SubscriptionPlan')
