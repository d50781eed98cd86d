from enum import Enum

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Numeric
from sqlalchemy.sql import func
from billing_sync.db.base import Base


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELED = "canceled"


class SubscriptionPlan(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Subscription(Base):
    """
    One row per user, owned by the reconciliation engine.

    Rows are updated in place and never deleted here; cancellation is a
    status change. current_period_end never moves backwards for the same
    external_subscription_id.
    """

    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    external_customer_id = Column(String, index=True, nullable=True)
    external_subscription_id = Column(String, index=True, nullable=True)

    status = Column(String, nullable=False, default=SubscriptionStatus.ACTIVE.value)  # active | canceled
    plan = Column(String, nullable=False)  # monthly | yearly
    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)

    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
