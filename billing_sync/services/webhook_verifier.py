"""
Authenticity verification for inbound Stripe webhooks.

The signature covers the exact bytes Stripe sent, so verification runs on
the raw body before anything parses it.
"""
import json
import logging
from typing import Optional

import stripe

from billing_sync.core.exceptions import (
    MalformedPayload,
    MissingSignature,
    MissingWebhookSecret,
    SignatureMismatch,
)
from billing_sync.schemas.events import BillingEvent, parse_event

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = stripe.Webhook.DEFAULT_TOLERANCE


def verify_webhook(
    payload: bytes,
    signature: Optional[str],
    secret: Optional[str],
    tolerance: int = DEFAULT_TOLERANCE,
) -> BillingEvent:
    """
    Verify and parse a Stripe webhook event.

    Args:
        payload: Raw request body bytes, exactly as received
        signature: Stripe-Signature header value
        secret: Endpoint signing secret (whsec_...)
        tolerance: Maximum age of the signed timestamp in seconds

    Returns:
        Typed event

    Raises:
        MissingWebhookSecret: No signing secret configured
        MissingSignature: Request carried no Stripe-Signature header
        SignatureMismatch: Signature or timestamp did not verify
        MalformedPayload: Verified body is not a valid event
    """
    if not secret:
        logger.error("STRIPE_WEBHOOK_SECRET not configured - rejecting webhook")
        raise MissingWebhookSecret("Webhook secret not configured")

    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        raise MissingSignature("No signature found")

    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedPayload(f"Webhook body is not UTF-8: {e}")

    try:
        stripe.WebhookSignature.verify_header(body, signature, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        raise SignatureMismatch("Webhook signature verification failed")

    try:
        raw = json.loads(body)
        if not isinstance(raw, dict):
            raise ValueError("Event payload is not an object")
        event = parse_event(raw)
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise MalformedPayload(f"Invalid webhook payload: {e}")

    logger.info(f"Verified webhook event: {raw['type']}, id={event.event_id}")
    return event
