"""
Provider price id -> internal plan mapping.

The catalog is built once from configuration and injected into the event
processor, so tests can supply their own fixture mapping.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Mapping, Optional

from billing_sync.core import config
from billing_sync.core.exceptions import PlanResolutionFailure
from billing_sync.db.models.subscription import SubscriptionPlan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanQuote:
    plan: SubscriptionPlan
    price: Decimal
    currency: str


class PlanCatalog:
    """Immutable price id -> PlanQuote table."""

    def __init__(self, entries: Mapping[str, PlanQuote]):
        self._entries: Dict[str, PlanQuote] = dict(entries)

    def resolve(self, price_id: Optional[str]) -> PlanQuote:
        """
        Look up the plan for a provider price id.

        Raises:
            PlanResolutionFailure: Price id missing or not configured. Never
                falls back to a default plan.
        """
        quote = self._entries.get(price_id) if price_id else None
        if quote is None:
            logger.error(f"Plan resolution failed: no plan configured for price_id={price_id}")
            raise PlanResolutionFailure(price_id)
        return quote

    def __contains__(self, price_id: str) -> bool:
        return price_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def build_plan_catalog(
    monthly_price_id: Optional[str] = None,
    yearly_price_id: Optional[str] = None,
    monthly_price: Optional[str] = None,
    yearly_price: Optional[str] = None,
    currency: Optional[str] = None,
) -> PlanCatalog:
    """Build the catalog from environment configuration, skipping unset price ids."""
    monthly_price_id = monthly_price_id or config.STRIPE_PRICE_ID_MONTHLY
    yearly_price_id = yearly_price_id or config.STRIPE_PRICE_ID_YEARLY
    currency = (currency or config.BILLING_CURRENCY).upper()

    entries: Dict[str, PlanQuote] = {}
    if monthly_price_id:
        entries[monthly_price_id] = PlanQuote(
            plan=SubscriptionPlan.MONTHLY,
            price=Decimal(monthly_price or config.PLAN_PRICE_MONTHLY),
            currency=currency,
        )
    if yearly_price_id:
        entries[yearly_price_id] = PlanQuote(
            plan=SubscriptionPlan.YEARLY,
            price=Decimal(yearly_price or config.PLAN_PRICE_YEARLY),
            currency=currency,
        )

    if not entries:
        logger.warning("No Stripe price ids configured - every checkout will fail plan resolution")

    return PlanCatalog(entries)
