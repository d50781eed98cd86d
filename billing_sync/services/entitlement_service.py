"""
Read-only entitlement checks over the subscription store.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from billing_sync.db.models.subscription import Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)


def get_active_subscription(db: Session, user_id: int, now: Optional[datetime] = None) -> Optional[Subscription]:
    """
    Return the user's subscription if it grants access right now.

    Access requires status=active and a current_period_end in the future.
    The comparison runs in SQL so stored timestamps are compared as stored.
    """
    now = now or datetime.now(timezone.utc)
    return db.query(Subscription).filter(
        Subscription.user_id == user_id,
        Subscription.status == SubscriptionStatus.ACTIVE.value,
        Subscription.current_period_end > now,
    ).first()


def has_active_subscription(db: Session, user_id: int, now: Optional[datetime] = None) -> bool:
    active = get_active_subscription(db, user_id, now) is not None
    logger.debug(f"Entitlement check: user_id={user_id}, active={active}")
    return active
