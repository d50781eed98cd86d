"""
Stripe gateway: fetches the authoritative subscription object.

Webhook payloads can be stale by the time they arrive, so handlers that need
period bounds or the price id read them back from Stripe.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import stripe
from pydantic import BaseModel, ConfigDict

from billing_sync.core.config import STRIPE_SECRET_KEY
from billing_sync.core.exceptions import ProviderFetchFailure

logger = logging.getLogger(__name__)

if not STRIPE_SECRET_KEY:
    logger.warning("STRIPE_SECRET_KEY not configured - subscription fetches will fail")


class ProviderSubscription(BaseModel):
    """The fields of a Stripe subscription the reconciliation engine uses."""
    id: str
    customer_id: Optional[str] = None
    status: Optional[str] = None
    price_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


def _field(obj: Any, key: str) -> Any:
    """Item access that works for StripeObject and plain dicts alike."""
    if obj is None:
        return None
    try:
        return obj[key]
    except (KeyError, IndexError, TypeError):
        return None


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def to_provider_subscription(stripe_sub: Any) -> ProviderSubscription:
    """
    Normalize a Stripe subscription object.

    Period bounds live on the subscription in older API versions and on its
    items in newer ones; the first item is used when the top level has none.
    """
    items = _field(_field(stripe_sub, "items"), "data") or []
    first_item = items[0] if items else None

    period_start = _field(stripe_sub, "current_period_start")
    period_end = _field(stripe_sub, "current_period_end")
    if period_end is None and first_item is not None:
        period_start = _field(first_item, "current_period_start")
        period_end = _field(first_item, "current_period_end")

    customer = _field(stripe_sub, "customer")
    if not isinstance(customer, str):
        customer = _field(customer, "id")

    return ProviderSubscription(
        id=_field(stripe_sub, "id"),
        customer_id=customer,
        status=_field(stripe_sub, "status"),
        price_id=_field(_field(first_item, "price"), "id"),
        current_period_start=_timestamp(period_start),
        current_period_end=_timestamp(period_end),
    )


class StripeGateway:
    """Outbound Stripe API calls used by the event handlers."""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or STRIPE_SECRET_KEY

    def fetch_subscription(self, subscription_id: str) -> ProviderSubscription:
        """
        Retrieve a subscription from Stripe.

        No timeout is imposed here; the call runs within the webhook request.

        Raises:
            ProviderFetchFailure: Stripe is not configured or the call failed
        """
        if not self.api_key:
            raise ProviderFetchFailure("Stripe not configured - STRIPE_SECRET_KEY required")

        try:
            stripe_sub = stripe.Subscription.retrieve(subscription_id, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error(f"Stripe error retrieving subscription_id={subscription_id}: {e}")
            raise ProviderFetchFailure(f"Failed to retrieve subscription {subscription_id}") from e

        subscription = to_provider_subscription(stripe_sub)
        logger.info(
            f"Fetched subscription_id={subscription.id}, price_id={subscription.price_id}, "
            f"period_end={subscription.current_period_end}"
        )
        return subscription
