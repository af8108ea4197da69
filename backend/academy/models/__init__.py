from .auth import User, SessionToken
from .catalog import SportCategory, SubscriptionPlan, PlanDiscount, plan_sport_categories
from .subscriptions import Subscription
from .transactions import Transaction
from .attendance import Attendance
from .notifications import Notification

__all__ = [
    'User', 'SessionToken',
    'SportCategory', 'SubscriptionPlan', 'PlanDiscount', 'plan_sport_categories',
    'Subscription',
    'Transaction',
    'Attendance',
    'Notification',
]
