"""
Typed provider events.

Each Stripe event type the engine understands maps to one frozen model
carrying exactly the fields its handler needs. Everything else becomes an
UnhandledEvent.
"""
from typing import Any, Callable, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict


class _ProviderEvent(BaseModel):
    event_id: str

    model_config = ConfigDict(frozen=True)


class CheckoutSessionCompleted(_ProviderEvent):
    type: Literal["checkout.session.completed"] = "checkout.session.completed"
    session_id: Optional[str] = None
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    subscription_id: Optional[str] = None


class CustomerSubscriptionDeleted(_ProviderEvent):
    type: Literal["customer.subscription.deleted"] = "customer.subscription.deleted"
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None


class InvoicePaymentSucceeded(_ProviderEvent):
    type: Literal["invoice.payment_succeeded"] = "invoice.payment_succeeded"
    invoice_id: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None


class UnhandledEvent(_ProviderEvent):
    type: Literal["unhandled"] = "unhandled"
    event_type: str


BillingEvent = Union[
    CheckoutSessionCompleted,
    CustomerSubscriptionDeleted,
    InvoicePaymentSucceeded,
    UnhandledEvent,
]


def _ref(value: Any) -> Optional[str]:
    """Stripe sends either an id string or an expanded object for references."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _checkout_completed(event_id: str, obj: Dict[str, Any]) -> CheckoutSessionCompleted:
    email = obj.get("customer_email") or (obj.get("customer_details") or {}).get("email")
    return CheckoutSessionCompleted(
        event_id=event_id,
        session_id=obj.get("id"),
        customer_id=_ref(obj.get("customer")),
        customer_email=email,
        subscription_id=_ref(obj.get("subscription")),
    )


def _subscription_deleted(event_id: str, obj: Dict[str, Any]) -> CustomerSubscriptionDeleted:
    return CustomerSubscriptionDeleted(
        event_id=event_id,
        customer_id=_ref(obj.get("customer")),
        subscription_id=obj.get("id"),
    )


def _invoice_paid(event_id: str, obj: Dict[str, Any]) -> InvoicePaymentSucceeded:
    subscription_id = _ref(obj.get("subscription"))
    if not subscription_id:
        # Newer API versions moved the reference under parent.subscription_details
        details = (obj.get("parent") or {}).get("subscription_details") or {}
        subscription_id = _ref(details.get("subscription"))
    return InvoicePaymentSucceeded(
        event_id=event_id,
        invoice_id=obj.get("id"),
        customer_id=_ref(obj.get("customer")),
        subscription_id=subscription_id,
    )


EVENT_PARSERS: Dict[str, Callable[[str, Dict[str, Any]], BillingEvent]] = {
    "checkout.session.completed": _checkout_completed,
    "customer.subscription.deleted": _subscription_deleted,
    "invoice.payment_succeeded": _invoice_paid,
}


def parse_event(raw: Dict[str, Any]) -> BillingEvent:
    """
    Build a typed event from a decoded Stripe event object.

    Raises:
        ValueError: If the envelope lacks an id, a type or a data object
    """
    event_id = raw.get("id")
    event_type = raw.get("type")
    if not event_id or not event_type:
        raise ValueError("Event is missing id or type")

    parser = EVENT_PARSERS.get(event_type)
    if parser is None:
        return UnhandledEvent(event_id=event_id, event_type=event_type)

    obj = (raw.get("data") or {}).get("object")
    if not isinstance(obj, dict):
        raise ValueError(f"Event {event_id} has no data.object")
    return parser(event_id, obj)
