# models/plan.py
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, CheckConstraint
from sqlalchemy.sql import func
from qrmenu_billing.extension.extensions import db

class SubscriptionPlan(db.Model):
    __tablename__ = 'subscription_plans'
    id = Column(Integer, primary_key=True)
    slug = Column(String(32), unique=True, nullable=False)          # 'starter','pro'
    name = Column(String(64), nullable=False)
    price_monthly = Column(Numeric(12, 2), nullable=False)
    price_yearly = Column(Numeric(12, 2), nullable=False)
    has_orders_feature = Column(Boolean, nullable=False, default=False)
    max_menu_items = Column(Integer, nullable=True)                 # None = unlimited
    max_tables = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    __table_args__ = (
        CheckConstraint('price_monthly >= 0', name='ck_plans_price_monthly_nonneg'),
        CheckConstraint('price_yearly >= 0', name='ck_plans_price_yearly_nonneg'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "price_monthly": float(self.price_monthly),
            "price_yearly": float(self.price_yearly),
            "has_orders_feature": self.has_orders_feature,
            "limits": {
                "max_menu_items": self.max_menu_items,
                "max_tables": self.max_tables,
            },
        }
