from qrmenu_billing.models.plan import SubscriptionPlan
from qrmenu_billing.models.subscription import BillingCycle
from qrmenu_billing.extension.extensions import db
from qrmenu_billing.services.errors import NotFound, ValidationError

def list_plans(active_only=True):
    q = SubscriptionPlan.query
    if active_only:
        q = q.filter_by(is_active=True)
    return q.order_by(SubscriptionPlan.price_monthly.asc()).all()

def get_plan(plan_id):
    plan = db.session.get(SubscriptionPlan, plan_id) if plan_id is not None else None
    if not plan or not plan.is_active:
        raise NotFound("Plan not found")
    return plan

def parse_billing_cycle(value):
    try:
        return BillingCycle(value)
    except ValueError:
        raise ValidationError("Invalid billing cycle")

def get_plan_price(plan, billing_cycle):
    cycle = parse_billing_cycle(billing_cycle)
    return plan.price_yearly if cycle == BillingCycle.yearly else plan.price_monthly

def create_plan(data):
    plan = SubscriptionPlan(
        slug=data['slug'],
        name=data['name'],
        price_monthly=data['price_monthly'],
        price_yearly=data['price_yearly'],
        has_orders_feature=data.get('has_orders_feature', False),
        max_menu_items=data.get('max_menu_items'),
        max_tables=data.get('max_tables'),
        is_active=True
    )
    db.session.add(plan)
    db.session.commit()
    return plan
