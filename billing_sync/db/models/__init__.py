"""
Database models module.

Imports every model so they are registered with Base.metadata before table
creation and migrations.
"""
from billing_sync.db.models.user import User
from billing_sync.db.models.subscription import Subscription, SubscriptionPlan, SubscriptionStatus

__all__ = [
    "User",
    "Subscription",
    "SubscriptionPlan",
    "SubscriptionStatus",
]
