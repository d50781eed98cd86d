import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from billing_sync.core.auth_dependency import get_current_user_obj, get_db
from billing_sync.db.models.user import User
from billing_sync.schemas.billing import SubscriptionCheckResponse, SubscriptionOut
from billing_sync.services.entitlement_service import get_active_subscription

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscription", tags=["Subscription"])


@router.get("/check", response_model=SubscriptionCheckResponse)
def check_subscription(
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db),
):
    """Report whether the caller currently has paid access."""
    subscription = get_active_subscription(db, user.id)
    return SubscriptionCheckResponse(
        has_active_subscription=subscription is not None,
        subscription=SubscriptionOut.model_validate(subscription) if subscription else None,
    )
