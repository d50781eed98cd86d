"""
Integration tests for POST /webhooks/stripe.
"""
import pytest
from sqlalchemy import event as sa_event

from billing_sync.db.models.subscription import Subscription
from billing_sync.api.routes.billing_webhook import WebhookSettings, get_webhook_settings
from billing_sync.main import app
from billing_sync.services.subscription_store import as_utc

from conftest import (
    T0, T1, T2,
    checkout_event,
    deleted_event,
    encode,
    invoice_event,
    make_event,
    sign,
    test_engine,
    utc,
)


def post_event(client, raw, signature=None, payload=None):
    payload = payload if payload is not None else encode(raw)
    headers = {"Content-Type": "application/json"}
    if signature is not False:
        headers["Stripe-Signature"] = signature or sign(payload)
    return client.post("/webhooks/stripe", content=payload, headers=headers)


def fetch_subscription(db, user_id):
    db.expire_all()
    return db.query(Subscription).filter(Subscription.user_id == user_id).first()


@pytest.fixture
def write_counter():
    """Counts INSERT/UPDATE/DELETE statements hitting the test engine."""
    writes = []

    def _count(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith(("INSERT", "UPDATE", "DELETE")):
            writes.append(statement)

    sa_event.listen(test_engine, "before_cursor_execute", _count)
    try:
        yield writes
    finally:
        sa_event.remove(test_engine, "before_cursor_execute", _count)


def test_checkout_then_cancel_end_to_end(client, db, user, gateway):
    gateway.add("S1", customer_id="C1", start=T0, end=T1)

    response = post_event(client, checkout_event(email=user.email, customer="C1", subscription="S1"))
    assert response.status_code == 200
    assert response.json() == {"received": True}

    sub = fetch_subscription(db, user.id)
    assert sub.status == "active"
    assert sub.plan == "monthly"
    assert sub.external_customer_id == "C1"
    assert sub.external_subscription_id == "S1"
    before = (sub.plan, sub.price, sub.currency, sub.current_period_start, sub.current_period_end)

    response = post_event(client, deleted_event(customer="C1", subscription="S1"))
    assert response.status_code == 200
    assert response.json() == {"received": True}

    sub = fetch_subscription(db, user.id)
    assert sub.status == "canceled"
    assert sub.external_customer_id == "C1"
    assert sub.external_subscription_id == "S1"
    assert (sub.plan, sub.price, sub.currency, sub.current_period_start, sub.current_period_end) == before


def test_tampered_body_is_rejected_without_mutation(client, db, user, gateway, write_counter):
    gateway.add("S1")
    original = encode(checkout_event(email=user.email))
    signature = sign(original)
    tampered = encode(checkout_event(email=user.email, subscription="S_forged"))

    response = post_event(client, None, signature=signature, payload=tampered)

    assert response.status_code == 400
    assert "error" in response.json()
    assert fetch_subscription(db, user.id) is None
    assert write_counter == []
    assert gateway.calls == []


def test_missing_signature_header_is_400(client, db, user, gateway):
    gateway.add("S1")
    response = post_event(client, checkout_event(), signature=False)

    assert response.status_code == 400
    assert response.json() == {"error": "No signature found"}
    assert fetch_subscription(db, user.id) is None


def test_missing_webhook_secret_is_400(client, db, user, gateway):
    gateway.add("S1")
    app.dependency_overrides[get_webhook_settings] = lambda: WebhookSettings(secret=None, tolerance=300)

    response = post_event(client, checkout_event())

    assert response.status_code == 400
    assert response.json() == {"error": "Webhook secret not configured"}
    assert fetch_subscription(db, user.id) is None


def test_unknown_event_type_is_acknowledged_with_zero_writes(client, db, user, gateway, write_counter):
    response = post_event(client, make_event("payment_intent.created", {"id": "pi_1"}))

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert write_counter == []
    assert gateway.calls == []


def test_unknown_price_id_is_retryable_500(client, db, user, gateway):
    gateway.add("S1", price_id="price_not_configured")

    response = post_event(client, checkout_event())

    assert response.status_code == 500
    assert response.json() == {"error": "Webhook processing failed"}
    assert fetch_subscription(db, user.id) is None


def test_provider_failure_is_retryable_500(client, db, user):
    response = post_event(client, checkout_event(subscription="S_unreachable"))

    assert response.status_code == 500
    assert fetch_subscription(db, user.id) is None


def test_unknown_email_is_acknowledged(client, db, user, gateway):
    gateway.add("S1")
    response = post_event(client, checkout_event(email="nobody@example.com"))

    assert response.status_code == 200
    assert fetch_subscription(db, user.id) is None


def test_update_for_unknown_customer_is_acknowledged(client, db, user):
    response = post_event(client, invoice_event(customer="C_missing"))
    assert response.status_code == 200


def test_checkout_redelivery_is_idempotent(client, db, user, gateway):
    gateway.add("S1", start=T0, end=T1)
    raw = checkout_event()

    assert post_event(client, raw).status_code == 200
    first = fetch_subscription(db, user.id)
    first_state = (first.id, first.status, first.plan, first.external_subscription_id, first.current_period_end)

    assert post_event(client, raw).status_code == 200
    second = fetch_subscription(db, user.id)

    assert (second.id, second.status, second.plan, second.external_subscription_id, second.current_period_end) == first_state
    assert db.query(Subscription).count() == 1


def test_stale_invoice_is_acknowledged_and_skipped(client, db, user, gateway):
    gateway.add("S1", start=T0, end=T1)
    gateway.add("S1", start=T1, end=T2)
    gateway.add("S1", start=T0, end=T1)
    post_event(client, checkout_event())
    post_event(client, invoice_event(event_id="evt_inv_2"))

    response = post_event(client, invoice_event(event_id="evt_inv_1"))

    assert response.status_code == 200
    sub = fetch_subscription(db, user.id)
    assert as_utc(sub.current_period_end) == utc(T2)
