"""
Stripe webhook endpoint.

Answers 200 when an event was applied or safely ignored, 400 when the
payload cannot be authenticated, and 500 when processing failed in a way
Stripe should retry.
"""
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from billing_sync.core import config
from billing_sync.core.auth_dependency import get_db
from billing_sync.core.exceptions import AuthenticityFailure, BillingSyncError
from billing_sync.schemas.billing import BillingErrorResponse, WebhookAck
from billing_sync.services.billing_service import BillingEventProcessor
from billing_sync.services.plan_resolver import PlanCatalog, build_plan_catalog
from billing_sync.services.stripe_service import StripeGateway
from billing_sync.services.webhook_verifier import verify_webhook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Billing Webhook"])


@dataclass(frozen=True)
class WebhookSettings:
    secret: Optional[str]
    tolerance: int


def get_webhook_settings() -> WebhookSettings:
    return WebhookSettings(secret=config.STRIPE_WEBHOOK_SECRET, tolerance=config.STRIPE_WEBHOOK_TOLERANCE)


@lru_cache
def get_plan_catalog() -> PlanCatalog:
    return build_plan_catalog()


def get_payment_gateway() -> StripeGateway:
    return StripeGateway()


@router.post(
    "/stripe",
    response_model=WebhookAck,
    responses={400: {"model": BillingErrorResponse}, 500: {"model": BillingErrorResponse}},
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    settings: WebhookSettings = Depends(get_webhook_settings),
    catalog: PlanCatalog = Depends(get_plan_catalog),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    # Raw bytes: the signature is computed over the body exactly as sent
    payload = await request.body()

    try:
        event = verify_webhook(payload, stripe_signature, settings.secret, settings.tolerance)
    except AuthenticityFailure as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.message})

    processor = BillingEventProcessor(db, catalog, gateway)
    try:
        outcome = await run_in_threadpool(processor.process, event)
    except BillingSyncError as e:
        logger.error(f"Webhook processing failed for event_id={event.event_id}: {e.message}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook processing failed"},
        )
    except Exception:
        logger.exception(f"Unexpected error processing event_id={event.event_id}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook processing failed"},
        )

    logger.info(f"Webhook event_id={event.event_id} processed: {outcome.value}")
    return WebhookAck(received=True)
