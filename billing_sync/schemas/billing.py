"""
Pydantic schemas for billing endpoints.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class WebhookAck(BaseModel):
    """Acknowledgement returned to the provider for processed or ignored events."""
    received: bool = Field(True, description="Event was accepted and need not be redelivered")

    model_config = ConfigDict(json_schema_extra={"example": {"received": True}})


class BillingErrorResponse(BaseModel):
    """Error response schema for webhook failures."""
    error: str = Field(..., description="Error message")

    model_config = ConfigDict(
        json_schema_extra={"example": {"error": "Webhook signature verification failed"}}
    )


class SubscriptionOut(BaseModel):
    """Read-only view of a user's subscription."""
    plan: str
    status: str
    price: Decimal
    currency: str
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    external_customer_id: Optional[str] = None
    external_subscription_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SubscriptionCheckResponse(BaseModel):
    """Response schema for the entitlement check."""
    has_active_subscription: bool = Field(..., description="Active status and period not yet ended")
    subscription: Optional[SubscriptionOut] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "has_active_subscription": True,
                "subscription": {
                    "plan": "monthly",
                    "status": "active",
                    "price": "15.00",
                    "currency": "EUR",
                    "current_period_start": "2026-10-01T00:00:00Z",
                    "current_period_end": "2026-11-01T00:00:00Z",
                },
            }
        }
    )
