"""
Error taxonomy for billing event reconciliation.

Each error carries the HTTP status the webhook endpoint answers with, so the
provider knows whether to redeliver (5xx) or stop (2xx/4xx).
"""
from enum import Enum
from typing import Optional

from fastapi import status


class BillingSyncError(Exception):
    """Base class for reconciliation errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable: bool = True

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# --- Authenticity (terminal, 400) ---

class AuthenticityFailure(BillingSyncError):
    """Inbound payload could not be proven to come from the provider."""

    status_code = status.HTTP_400_BAD_REQUEST
    retryable = False


class MissingSignature(AuthenticityFailure):
    pass


class MissingWebhookSecret(AuthenticityFailure):
    pass


class SignatureMismatch(AuthenticityFailure):
    pass


class MalformedPayload(AuthenticityFailure):
    pass


# --- Routing / identity (acknowledged, 200) ---

class UnknownEventType(BillingSyncError):
    status_code = status.HTTP_200_OK
    retryable = False

    def __init__(self, event_type: str):
        super().__init__(f"Unhandled event type {event_type}")
        self.event_type = event_type


class IdentityMissKind(str, Enum):
    EMAIL_AT_CHECKOUT = "email_at_checkout"
    CUSTOMER_ON_UPDATE = "customer_on_update"


class IdentityNotFound(BillingSyncError):
    """
    No local record matches the identity an event carries.

    EMAIL_AT_CHECKOUT: the purchase precedes local account linkage.
    CUSTOMER_ON_UPDATE: an update for a subscription we never recorded,
    which usually means a checkout event was missed.
    """

    status_code = status.HTTP_200_OK
    retryable = False

    def __init__(self, kind: IdentityMissKind, lookup_value: Optional[str]):
        super().__init__(f"No local record for {kind.value}={lookup_value}")
        self.kind = kind
        self.lookup_value = lookup_value


class StaleUpdate(BillingSyncError):
    """Event is older than the stored state; skipping it is not an error."""

    status_code = status.HTTP_200_OK
    retryable = False


# --- Transient (retryable, 500) ---

class PlanResolutionFailure(BillingSyncError):
    """Price id has no configured plan. Needs an operator to fix config."""

    def __init__(self, price_id: Optional[str]):
        super().__init__(f"No plan configured for price_id={price_id}")
        self.price_id = price_id


class ProviderFetchFailure(BillingSyncError):
    pass


class StoreWriteFailure(BillingSyncError):
    pass
