import click
from flask.cli import with_appcontext


# 🆕 SUBSCRIPTION MANAGEMENT COMMANDS

@click.command('expire-subscriptions')
@with_appcontext
def expire_subscriptions_command():
    """
    Mark active subscriptions whose period has elapsed as expired
    Run this command periodically (cron job or scheduler)

    Usage: flask expire-subscriptions
    """
    from qrmenu_billing.services.subscription_service import expire_subscriptions

    click.echo("🔍 Checking for expired subscriptions...")
    result = expire_subscriptions()

    if result['updated']:
        click.echo(f"✅ Expired {len(result['updated'])} subscription(s): {result['updated']}")
    else:
        click.echo("✓ No subscriptions to expire")

    for error in result['errors']:
        click.echo(f"❌ {error}", err=True)


@click.command('list-subscriptions')
@click.option('--user-id', type=int, help='Filter by user ID')
@click.option('--status', type=click.Choice(['pending', 'active', 'halted', 'cancelled', 'expired']),
              help='Filter by status')
@with_appcontext
def list_subscriptions_command(user_id, status):
    """
    List subscriptions with status and period end

    Usage:
        flask list-subscriptions
        flask list-subscriptions --user-id=1 --status=active
    """
    from qrmenu_billing.models.subscription import UserSubscription, SubscriptionStatus, utcnow, as_utc

    query = UserSubscription.query

    if user_id:
        query = query.filter_by(user_id=user_id)
    if status:
        query = query.filter_by(status=SubscriptionStatus(status))

    subs = query.order_by(UserSubscription.created_at.desc()).all()

    if not subs:
        click.echo("No subscriptions found.\n")
        return

    click.echo(f"\n{'ID':<5} {'User':<6} {'Plan':<12} {'Cycle':<8} {'Status':<11} {'Period end':<17} {'Upgrade'}")
    click.echo("-" * 80)

    now = utcnow()
    for sub in subs:
        end = as_utc(sub.current_period_end)
        status_display = sub.status.value
        if sub.status == SubscriptionStatus.active and end is not None and end <= now:
            status_display = f"{status_display} ⚠"
        click.echo(
            f"{sub.id:<5} {sub.user_id:<6} {sub.plan.slug:<12} {sub.billing_cycle.value:<8} "
            f"{status_display:<11} {end.strftime('%Y-%m-%d %H:%M') if end else '-':<17} "
            f"{sub.pending_plan.slug if sub.pending_plan else ''}"
        )

    click.echo(f"\nTotal: {len(subs)} subscription(s)\n")


@click.command('subscription-stats')
@with_appcontext
def subscription_stats_command():
    """
    Show subscription statistics

    Usage: flask subscription-stats
    """
    from sqlalchemy import func
    from qrmenu_billing.extension.extensions import db
    from qrmenu_billing.models.subscription import UserSubscription, SubscriptionStatus, utcnow
    from qrmenu_billing.models.plan import SubscriptionPlan
    from qrmenu_billing.models.payment import PaymentTransaction, PaymentStatus

    click.echo("\n📊 Subscription Statistics\n")

    now = utcnow()

    total = UserSubscription.query.count()
    click.echo(f"Total Subscriptions: {total}")

    click.echo("\n📈 By Status:")
    status_counts = (
        db.session.query(UserSubscription.status, func.count(UserSubscription.id))
        .group_by(UserSubscription.status)
        .all()
    )
    for status, count in status_counts:
        click.echo(f"   {status.value}: {count}")

    needs_expiry = (
        UserSubscription.query
        .filter(UserSubscription.status == SubscriptionStatus.active)
        .filter(UserSubscription.current_period_end < now)
        .count()
    )
    if needs_expiry > 0:
        click.echo(f"⚠️  Needs Expiry: {needs_expiry} (run: flask expire-subscriptions)")

    staged = UserSubscription.query.filter(UserSubscription.pending_plan_id.isnot(None)).count()
    click.echo(f"⏳ Staged upgrades: {staged}")

    click.echo("\n📦 By Plan:")
    plan_counts = (
        db.session.query(SubscriptionPlan.slug, SubscriptionPlan.name, func.count(UserSubscription.id))
        .join(UserSubscription, UserSubscription.plan_id == SubscriptionPlan.id)
        .group_by(SubscriptionPlan.slug, SubscriptionPlan.name)
        .all()
    )
    for slug, name, count in plan_counts:
        click.echo(f"   {name} ({slug}): {count}")

    total_revenue = (
        db.session.query(func.sum(PaymentTransaction.amount))
        .filter(PaymentTransaction.status == PaymentStatus.captured)
        .scalar() or 0
    )
    click.echo(f"\n💰 Total Captured: ₹{float(total_revenue):,.2f}")
    click.echo()


DEFAULT_PLANS = [
    {"slug": "menu-only", "name": "Menu Only", "price_monthly": 299, "price_yearly": 2999,
     "has_orders_feature": False, "max_menu_items": 100, "max_tables": None},
    {"slug": "pro", "name": "Pro", "price_monthly": 799, "price_yearly": 7999,
     "has_orders_feature": True, "max_menu_items": None, "max_tables": 50},
]


@click.command('seed-plans')
@with_appcontext
def seed_plans_command():
    """
    Insert the default plan catalog (existing slugs are left alone)

    Usage: flask seed-plans
    """
    from qrmenu_billing.models.plan import SubscriptionPlan
    from qrmenu_billing.services.plan_service import create_plan

    for data in DEFAULT_PLANS:
        if SubscriptionPlan.query.filter_by(slug=data['slug']).first():
            click.echo(f"✓ {data['slug']} already exists")
            continue
        plan = create_plan(data)
        click.echo(f"✅ Created plan {plan.slug} (ID: {plan.id})")


# Register all commands
def register_commands(app):
    """Register all Flask CLI commands"""
    app.cli.add_command(expire_subscriptions_command)
    app.cli.add_command(list_subscriptions_command)
    app.cli.add_command(subscription_stats_command)
    app.cli.add_command(seed_plans_command)
