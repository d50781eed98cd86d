"""
Subscription state store.

Every mutation here is a single atomic write: either a conditional UPDATE
whose WHERE clause carries the idempotency check, or an upsert that reads
the row with SELECT ... FOR UPDATE before writing. Callers additionally hold
the per-subscription KeyedLock so workers in this process never interleave.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billing_sync.core.exceptions import StaleUpdate, StoreWriteFailure
from billing_sync.db.models.subscription import Subscription, SubscriptionStatus
from billing_sync.services.plan_resolver import PlanQuote

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Authoritative state for one checkout, ready to be written."""
    external_customer_id: Optional[str]
    external_subscription_id: str
    quote: PlanQuote
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]


class SubscriptionStore:
    def __init__(self, db: Session):
        self.db = db

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Subscription store write failed during {action}: {e}")
            raise StoreWriteFailure(f"Failed to {action}") from e

    def upsert_for_user(self, user_id: int, snapshot: SubscriptionSnapshot) -> Tuple[Subscription, bool]:
        """
        Create or update the user's single subscription row.

        Replaying the same checkout produces the same row. A replay for a
        subscription that has since been canceled is stale, and period bounds
        never move backwards for the same provider subscription. A checkout
        for a different subscription whose period started before the stored
        one belongs to an earlier cycle and is stale as well.

        Returns:
            (subscription, created)

        Raises:
            StaleUpdate: Checkout replay for a canceled or superseded subscription
            StoreWriteFailure: Database rejected the write
        """
        try:
            subscription = (
                self.db.query(Subscription)
                .filter(Subscription.user_id == user_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreWriteFailure("Failed to read subscription for upsert") from e

        created = subscription is None
        period_start = snapshot.current_period_start
        period_end = snapshot.current_period_end

        if created:
            subscription = Subscription(user_id=user_id)
            self.db.add(subscription)
        elif subscription.external_subscription_id == snapshot.external_subscription_id:
            if subscription.status == SubscriptionStatus.CANCELED.value:
                self.db.rollback()
                raise StaleUpdate(
                    f"Checkout for subscription_id={snapshot.external_subscription_id} "
                    f"replayed after cancellation"
                )
            stored_end = as_utc(subscription.current_period_end)
            if stored_end and (period_end is None or stored_end > as_utc(period_end)):
                # Keep the newer bounds already written by a later invoice
                period_start = subscription.current_period_start
                period_end = subscription.current_period_end
        else:
            stored_start = as_utc(subscription.current_period_start)
            if stored_start and period_start and stored_start > as_utc(period_start):
                self.db.rollback()
                raise StaleUpdate(
                    f"Checkout for subscription_id={snapshot.external_subscription_id} is older than "
                    f"stored subscription_id={subscription.external_subscription_id}"
                )

        subscription.external_customer_id = snapshot.external_customer_id
        subscription.external_subscription_id = snapshot.external_subscription_id
        subscription.status = SubscriptionStatus.ACTIVE.value
        subscription.plan = snapshot.quote.plan.value
        subscription.price = snapshot.quote.price
        subscription.currency = snapshot.quote.currency
        subscription.current_period_start = period_start
        subscription.current_period_end = period_end

        self._commit("upsert subscription")
        self.db.refresh(subscription)
        return subscription, created

    def mark_canceled(self, subscription_id: int, external_subscription_id: str) -> bool:
        """
        Set status=canceled, leaving identifiers and period bounds untouched.

        Returns:
            True if the row changed, False if it was already canceled
        """
        try:
            updated = (
                self.db.query(Subscription)
                .filter(
                    Subscription.id == subscription_id,
                    Subscription.external_subscription_id == external_subscription_id,
                    Subscription.status != SubscriptionStatus.CANCELED.value,
                )
                .update({Subscription.status: SubscriptionStatus.CANCELED.value}, synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreWriteFailure("Failed to cancel subscription") from e

        self._commit("cancel subscription")
        return updated > 0

    def advance_period(
        self,
        subscription_id: int,
        external_subscription_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> None:
        """
        Overwrite both period bounds unless that would move current_period_end backwards.

        Raises:
            StaleUpdate: Stored current_period_end is later than period_end
            StoreWriteFailure: Database rejected the write
        """
        try:
            updated = (
                self.db.query(Subscription)
                .filter(
                    Subscription.id == subscription_id,
                    Subscription.external_subscription_id == external_subscription_id,
                    or_(
                        Subscription.current_period_end.is_(None),
                        Subscription.current_period_end <= period_end,
                    ),
                )
                .update(
                    {
                        Subscription.current_period_start: period_start,
                        Subscription.current_period_end: period_end,
                    },
                    synchronize_session=False,
                )
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreWriteFailure("Failed to update billing period") from e

        if updated == 0:
            self.db.rollback()
            raise StaleUpdate(
                f"Period end {period_end.isoformat()} is older than stored value "
                f"for subscription_id={external_subscription_id}"
            )
        self._commit("update billing period")
