# qrmenu_billing/models/__init__.py

# Import models in the correct order so string relationships resolve
from .plan import SubscriptionPlan
from .user import User
from .restaurant import Restaurant
from .subscription import UserSubscription, SubscriptionStatus, BillingCycle
from .payment import PaymentTransaction, PaymentStatus
from .webhook_event import RazorpayWebhookEvent
from .pending_registration import PendingRegistration, RegistrationStatus
from .audit import AdminActionLog, PaymentSecurityLog


# Make them available when importing from this module
__all__ = [
    'SubscriptionPlan', 'User', 'Restaurant',
    'UserSubscription', 'SubscriptionStatus', 'BillingCycle',
    'PaymentTransaction', 'PaymentStatus', 'RazorpayWebhookEvent',
    'PendingRegistration', 'RegistrationStatus',
    'AdminActionLog', 'PaymentSecurityLog',
]
