"""Access gating dependencies: enforce paid access from a fresh subscription read."""

import logging

from fastapi import Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from finwise.auth.dependencies import get_current_user
from finwise.database import get_db
from finwise.models.user import User
from finwise.services.subscription_service import get_subscription_record
from finwise.subscriptions.classifier import get_current_plan_name, has_active_access
from finwise.subscriptions.states import SubscriptionRecord

logger = logging.getLogger(__name__)


async def get_current_subscription(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> SubscriptionRecord | None:
    """Read the user's subscription for this request. Never cached across requests."""
    return await get_subscription_record(db, user.id)


async def get_status_subscription(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> SubscriptionRecord | None:
    """Like ``get_current_subscription`` but a failed read yields None.

    Banner and status display fall back to the free-plan defaults instead of
    failing the request. Access gating keeps using the strict read.
    """
    try:
        return await get_subscription_record(db, user.id)
    except SQLAlchemyError:
        logger.exception("Subscription read failed for user %s, showing defaults", user.id)
        return None


async def require_active_access(
    user: User = Depends(get_current_user),
    record: SubscriptionRecord | None = Depends(get_current_subscription),
) -> SubscriptionRecord | None:
    """Raise 402 unless the user's subscription currently grants access."""
    if not has_active_access(record):
        logger.info("Access denied for user %s (no active subscription)", user.id)
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "message": "An active subscription is required for this feature.",
                "plan": get_current_plan_name(record),
                "upgrade_url": "/api/v1/billing/checkout",
            },
        )
    return record
