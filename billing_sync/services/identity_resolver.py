"""
Maps provider identities onto local records.
"""
import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from billing_sync.core.exceptions import IdentityMissKind, IdentityNotFound
from billing_sync.db.models.subscription import Subscription
from billing_sync.db.models.user import User

logger = logging.getLogger(__name__)


def find_user_by_email(db: Session, email: Optional[str]) -> User:
    """
    Resolve the purchasing user at checkout.

    Raises:
        IdentityNotFound: EMAIL_AT_CHECKOUT when no account uses this email
    """
    user = None
    if email:
        user = db.query(User).filter(func.lower(User.email) == email.strip().lower()).first()

    if not user:
        raise IdentityNotFound(IdentityMissKind.EMAIL_AT_CHECKOUT, email)
    return user


def find_subscription_by_customer(db: Session, customer_id: Optional[str]) -> Subscription:
    """
    Resolve the subscription row for any post-checkout event.

    Raises:
        IdentityNotFound: CUSTOMER_ON_UPDATE when no row carries this customer id
    """
    subscription = None
    if customer_id:
        subscription = db.query(Subscription).filter(
            Subscription.external_customer_id == customer_id
        ).first()

    if not subscription:
        raise IdentityNotFound(IdentityMissKind.CUSTOMER_ON_UPDATE, customer_id)
    return subscription
