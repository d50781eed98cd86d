"""
Billing event processing.

Routes verified Stripe events to one handler per event type. Every handler is
safe to apply any number of times and in any order: writes are upserts or
conditional overwrites, never increments.

Outcomes that need no redelivery (unknown type, unknown identity, stale
event) are returned as EventOutcome values. Plan, provider and store
failures propagate so the webhook answers 5xx and Stripe retries.
"""
import logging
from enum import Enum
from typing import Callable, Dict, Type

from sqlalchemy.orm import Session

from billing_sync.core.exceptions import (
    IdentityMissKind,
    IdentityNotFound,
    StaleUpdate,
    UnknownEventType,
)
from billing_sync.core.keyed_lock import KeyedLock, subscription_locks
from billing_sync.schemas.events import (
    BillingEvent,
    CheckoutSessionCompleted,
    CustomerSubscriptionDeleted,
    InvoicePaymentSucceeded,
    UnhandledEvent,
)
from billing_sync.services.identity_resolver import find_subscription_by_customer, find_user_by_email
from billing_sync.services.plan_resolver import PlanCatalog
from billing_sync.services.stripe_service import StripeGateway
from billing_sync.services.subscription_store import SubscriptionSnapshot, SubscriptionStore, as_utc

logger = logging.getLogger(__name__)

# Stripe statuses after which a subscription can never become active again
ENDED_PROVIDER_STATUSES = frozenset({"canceled", "incomplete_expired"})


class EventOutcome(str, Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    STALE = "stale"
    IDENTITY_NOT_FOUND = "identity_not_found"
    IGNORED = "ignored"
    UNHANDLED = "unhandled"


class BillingEventProcessor:
    def __init__(
        self,
        db: Session,
        catalog: PlanCatalog,
        gateway: StripeGateway,
        locks: KeyedLock = subscription_locks,
    ):
        self.db = db
        self.catalog = catalog
        self.gateway = gateway
        self.locks = locks
        self.store = SubscriptionStore(db)
        self._handlers: Dict[Type, Callable[..., EventOutcome]] = {
            CheckoutSessionCompleted: self.handle_checkout_completed,
            CustomerSubscriptionDeleted: self.handle_subscription_deleted,
            InvoicePaymentSucceeded: self.handle_invoice_payment_succeeded,
        }

    def process(self, event: BillingEvent) -> EventOutcome:
        """Apply one verified event and report what happened."""
        try:
            handler = self._handlers.get(type(event))
            if handler is None:
                event_type = event.event_type if isinstance(event, UnhandledEvent) else event.type
                raise UnknownEventType(event_type)
            return handler(event)

        except UnknownEventType as e:
            logger.info(f"Unhandled event type {e.event_type}, event_id={event.event_id} - acknowledged")
            return EventOutcome.UNHANDLED

        except IdentityNotFound as e:
            if e.kind == IdentityMissKind.EMAIL_AT_CHECKOUT:
                logger.warning(
                    f"{event.type}: no user for email={e.lookup_value}, event_id={event.event_id} - "
                    f"subscription not created"
                )
            else:
                logger.error(
                    f"{event.type}: no subscription for customer_id={e.lookup_value}, "
                    f"event_id={event.event_id} - possible missed checkout event"
                )
            return EventOutcome.IDENTITY_NOT_FOUND

        except StaleUpdate as e:
            logger.info(f"{event.type}: skipping stale event_id={event.event_id}: {e.message}")
            return EventOutcome.STALE

    def handle_checkout_completed(self, event: CheckoutSessionCompleted) -> EventOutcome:
        """
        Handle checkout.session.completed.

        Creates the user's subscription row or overwrites it with the new
        provider subscription. Plan and period bounds come from the
        subscription fetched back from Stripe. A late redelivery for a
        subscription Stripe already reports as ended is stale.
        """
        if not event.customer_email or not event.subscription_id:
            logger.info(
                f"checkout.session.completed: session_id={event.session_id} has no email or "
                f"subscription - nothing to record"
            )
            return EventOutcome.IGNORED

        user = find_user_by_email(self.db, event.customer_email)
        provider_sub = self.gateway.fetch_subscription(event.subscription_id)
        if provider_sub.status in ENDED_PROVIDER_STATUSES:
            raise StaleUpdate(
                f"Checkout for subscription_id={event.subscription_id} but Stripe reports "
                f"status={provider_sub.status}"
            )
        quote = self.catalog.resolve(provider_sub.price_id)

        snapshot = SubscriptionSnapshot(
            external_customer_id=event.customer_id or provider_sub.customer_id,
            external_subscription_id=event.subscription_id,
            quote=quote,
            current_period_start=provider_sub.current_period_start,
            current_period_end=provider_sub.current_period_end,
        )

        # The row is keyed by user; always take the user key before the subscription key
        with self.locks.hold(f"user:{user.id}"), self.locks.hold(event.subscription_id):
            subscription, created = self.store.upsert_for_user(user.id, snapshot)

        logger.info(
            f"Checkout completed: user_id={user.id}, plan={subscription.plan}, "
            f"subscription_id={event.subscription_id}, {'created' if created else 'updated'}"
        )
        return EventOutcome.APPLIED

    def handle_subscription_deleted(self, event: CustomerSubscriptionDeleted) -> EventOutcome:
        """
        Handle customer.subscription.deleted.

        Marks the row canceled. Identifiers and period bounds are left as they
        are, and a second cancellation changes nothing.
        """
        subscription = find_subscription_by_customer(self.db, event.customer_id)
        external_id = event.subscription_id or subscription.external_subscription_id
        if not external_id:
            logger.warning(f"customer.subscription.deleted: event_id={event.event_id} has no subscription id")
            return EventOutcome.IGNORED

        with self.locks.hold(external_id):
            self.db.refresh(subscription)
            if subscription.external_subscription_id != external_id:
                raise StaleUpdate(
                    f"Cancellation for subscription_id={external_id} but user_id={subscription.user_id} "
                    f"is on subscription_id={subscription.external_subscription_id}"
                )
            changed = self.store.mark_canceled(subscription.id, external_id)

        if not changed:
            logger.info(f"Subscription already canceled: user_id={subscription.user_id}, subscription_id={external_id}")
            return EventOutcome.UNCHANGED

        logger.info(f"Subscription canceled: user_id={subscription.user_id}, subscription_id={external_id}")
        return EventOutcome.APPLIED

    def handle_invoice_payment_succeeded(self, event: InvoicePaymentSucceeded) -> EventOutcome:
        """
        Handle invoice.payment_succeeded.

        Copies the current billing period from the freshly fetched Stripe
        subscription. A period end earlier than the stored one is rejected as
        stale so redelivered old invoices cannot roll the period back.
        """
        if not event.subscription_id:
            logger.info(f"invoice.payment_succeeded: invoice_id={event.invoice_id} has no subscription")
            return EventOutcome.IGNORED

        subscription = find_subscription_by_customer(self.db, event.customer_id)
        provider_sub = self.gateway.fetch_subscription(event.subscription_id)
        if provider_sub.current_period_end is None:
            logger.warning(
                f"invoice.payment_succeeded: subscription_id={event.subscription_id} returned "
                f"without period bounds"
            )
            return EventOutcome.IGNORED

        with self.locks.hold(event.subscription_id):
            self.db.refresh(subscription)
            if subscription.external_subscription_id != event.subscription_id:
                raise StaleUpdate(
                    f"Invoice for subscription_id={event.subscription_id} but user_id={subscription.user_id} "
                    f"is on subscription_id={subscription.external_subscription_id}"
                )
            if (
                as_utc(subscription.current_period_start) == provider_sub.current_period_start
                and as_utc(subscription.current_period_end) == provider_sub.current_period_end
            ):
                logger.info(f"Invoice paid, period already current: subscription_id={event.subscription_id}")
                return EventOutcome.UNCHANGED

            self.store.advance_period(
                subscription.id,
                event.subscription_id,
                provider_sub.current_period_start,
                provider_sub.current_period_end,
            )

        logger.info(
            f"Invoice paid: user_id={subscription.user_id}, subscription_id={event.subscription_id}, "
            f"period_end={provider_sub.current_period_end.isoformat()}"
        )
        return EventOutcome.APPLIED
