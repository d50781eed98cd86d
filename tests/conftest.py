"""
Shared fixtures: in-memory SQLite database, fixture plan catalog, a fake
Stripe gateway and helpers to build signed webhook requests.
"""
import hashlib
import hmac
import json
import os
import threading
import time
from collections import defaultdict, deque
from datetime import datetime, timezone
from decimal import Decimal

os.environ.setdefault("SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from billing_sync.core.auth_dependency import get_db
from billing_sync.core.exceptions import ProviderFetchFailure
from billing_sync.db.base import Base
from billing_sync.db.models.subscription import SubscriptionPlan
from billing_sync.db.models.user import User
from billing_sync.api.routes.billing_webhook import (
    WebhookSettings,
    get_payment_gateway,
    get_plan_catalog,
    get_webhook_settings,
)
from billing_sync.main import app
from billing_sync.services.plan_resolver import PlanCatalog, PlanQuote
from billing_sync.services.stripe_service import ProviderSubscription

WEBHOOK_SECRET = "whsec_test_secret"
MONTHLY_PRICE_ID = "monthly-price-id"
YEARLY_PRICE_ID = "yearly-price-id"

# Billing period boundaries used across tests (unix seconds)
T0 = 1767225600  # 2026-01-01
T1 = 1769904000  # 2026-02-01
T2 = 1772323200  # 2026-03-01
T3 = 1775001600  # 2026-04-01
T4 = 1777593600  # 2026-05-01


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def utc(ts: int) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


class FakeStripeGateway:
    """Serves queued ProviderSubscription snapshots per subscription id."""

    def __init__(self):
        self._responses = defaultdict(deque)
        self._lock = threading.Lock()
        self.calls = []

    def add(self, subscription_id, customer_id="C1", price_id=MONTHLY_PRICE_ID, start=T0, end=T1, status="active"):
        """Queue a snapshot. The last queued snapshot keeps being served."""
        self._responses[subscription_id].append(ProviderSubscription(
            id=subscription_id,
            customer_id=customer_id,
            status=status,
            price_id=price_id,
            current_period_start=utc(start) if start is not None else None,
            current_period_end=utc(end) if end is not None else None,
        ))

    def replace(self, subscription_id, **snapshot):
        """Drop queued snapshots and serve this one from now on."""
        self._responses[subscription_id].clear()
        self.add(subscription_id, **snapshot)

    def fetch_subscription(self, subscription_id):
        with self._lock:
            self.calls.append(subscription_id)
            queue = self._responses.get(subscription_id)
            if not queue:
                raise ProviderFetchFailure(f"No such subscription: {subscription_id}")
            if len(queue) > 1:
                return queue.popleft()
            return queue[0]


def make_event(event_type, obj, event_id="evt_1"):
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


def checkout_event(email="u1@example.com", customer="C1", subscription="S1", event_id="evt_checkout"):
    return make_event("checkout.session.completed", {
        "id": "cs_test_1",
        "object": "checkout.session",
        "customer": customer,
        "customer_email": email,
        "subscription": subscription,
        "mode": "subscription",
    }, event_id)


def deleted_event(customer="C1", subscription="S1", event_id="evt_deleted"):
    return make_event("customer.subscription.deleted", {
        "id": subscription,
        "object": "subscription",
        "customer": customer,
        "status": "canceled",
    }, event_id)


def invoice_event(customer="C1", subscription="S1", event_id="evt_invoice"):
    return make_event("invoice.payment_succeeded", {
        "id": "in_test_1",
        "object": "invoice",
        "customer": customer,
        "subscription": subscription,
    }, event_id)


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signed_payload = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def encode(event: dict) -> bytes:
    return json.dumps(event).encode("utf-8")


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def user(db):
    user = User(full_name="User One", email="u1@example.com")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def catalog():
    return PlanCatalog({
        MONTHLY_PRICE_ID: PlanQuote(plan=SubscriptionPlan.MONTHLY, price=Decimal("15"), currency="EUR"),
        YEARLY_PRICE_ID: PlanQuote(plan=SubscriptionPlan.YEARLY, price=Decimal("150"), currency="EUR"),
    })


@pytest.fixture
def gateway():
    return FakeStripeGateway()


@pytest.fixture
def webhook_settings():
    return WebhookSettings(secret=WEBHOOK_SECRET, tolerance=300)


@pytest.fixture
def client(db, catalog, gateway, webhook_settings):
    """TestClient wired to the test database and fakes."""

    def override_get_db():
        session = TestSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_plan_catalog] = lambda: catalog
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_webhook_settings] = lambda: webhook_settings
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
