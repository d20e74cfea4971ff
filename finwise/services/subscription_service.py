"""Subscription service: reads and transactional writes of subscription rows.

Every write path reads the row with ``SELECT ... FOR UPDATE`` and
``populate_existing`` so the new state is always computed from what is in the
database right now, never from an object cached in the session.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from stripe import StripeClient

from finwise.billing.plans import get_plan
from finwise.billing.stripe_client import create_customer
from finwise.models.subscription import Subscription
from finwise.models.user import User
from finwise.subscriptions.states import SubscriptionRecord, billing_status_for, utcnow
from finwise.subscriptions.transitions import PERIOD_END_BILLING_STATUSES, Transition, apply_transition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionSyncData:
    """Subscription snapshot taken from a Stripe subscription object."""

    user_id: uuid.UUID
    stripe_customer_id: str
    stripe_subscription_id: str
    stripe_price_id: str
    plan_type: str
    status: str
    current_period_start: datetime | None
    current_period_end: datetime | None
    cancel_at_period_end: bool
    trial_end: datetime | None
    has_used_trial: bool


async def get_subscription(db: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_subscription_record(
    db: AsyncSession, user_id: uuid.UUID
) -> SubscriptionRecord | None:
    """Fresh snapshot of the user's subscription, or None if they never had one."""
    subscription = await get_subscription(db, user_id)
    return SubscriptionRecord.from_model(subscription) if subscription else None


async def _lock_subscription(db: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_subscription_by_stripe_subscription(
    db: AsyncSession, stripe_subscription_id: str
) -> Subscription | None:
    """Look up subscription by Stripe subscription ID (used by webhooks)."""
    result = await db.execute(
        select(Subscription).where(
            Subscription.stripe_subscription_id == stripe_subscription_id
        )
    )
    return result.scalar_one_or_none()


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def ensure_stripe_customer(db: AsyncSession, client: StripeClient, user: User) -> str:
    """Ensure the user has a Stripe customer ID. Create one if missing."""
    if user.stripe_customer_id:
        return user.stripe_customer_id

    customer = await create_customer(
        client,
        email=user.email,
        name=user.name or user.email,
        user_id=str(user.id),
    )
    user.stripe_customer_id = customer.id
    await db.flush()
    logger.info("Linked Stripe customer %s to user %s", customer.id, user.id)
    return customer.id


async def _write_record(
    db: AsyncSession, subscription: Subscription | None, record: SubscriptionRecord
) -> Subscription:
    if subscription is None:
        subscription = Subscription(user_id=record.user_id)
        db.add(subscription)
    record.apply_to(subscription)
    await db.flush()
    return subscription


async def apply_lifecycle_transition(
    db: AsyncSession,
    user_id: uuid.UUID,
    transition: Transition,
    *,
    now: datetime | None = None,
    trial_end: datetime | None = None,
) -> SubscriptionRecord:
    """Apply one named transition to the user's subscription row.

    The row is locked for the rest of the caller's transaction. The caller owns
    commit/rollback; any error propagates unchanged.

    Raises:
        SubscriptionNotFoundError: The user has no row and ``transition`` is not
            ``trial_start``.
    """
    subscription = await _lock_subscription(db, user_id)
    current = SubscriptionRecord.from_model(subscription) if subscription else None

    updated = apply_transition(current, transition, user_id=user_id, now=now, trial_end=trial_end)
    if updated == current:
        logger.info("Transition %s left subscription for user %s unchanged", transition, user_id)
        return updated

    await _write_record(db, subscription, updated)
    logger.info(
        "Applied %s for user %s: plan=%s, status=%s, billing_status=%s",
        transition,
        user_id,
        updated.plan_type,
        updated.status,
        updated.billing_status,
    )
    return updated


async def sync_subscription_from_stripe(
    db: AsyncSession, data: SubscriptionSyncData
) -> tuple[SubscriptionRecord | None, SubscriptionRecord]:
    """Create or update the user's row from a Stripe snapshot.

    Returns the (previous, synced) records so callers can derive follow-up
    transitions from what changed.
    """
    subscription = await _lock_subscription(db, data.user_id)
    previous = SubscriptionRecord.from_model(subscription) if subscription else None

    synced = SubscriptionRecord(
        user_id=data.user_id,
        plan_type=data.plan_type,
        status=data.status,
        billing_status=billing_status_for(data.status),
        current_period_start=data.current_period_start,
        current_period_end=data.current_period_end,
        trial_end=data.trial_end,
        cancel_at_period_end=data.cancel_at_period_end,
        has_used_trial=data.has_used_trial or (previous is not None and previous.has_used_trial),
        stripe_customer_id=data.stripe_customer_id,
        stripe_subscription_id=data.stripe_subscription_id,
        stripe_price_id=data.stripe_price_id,
    )
    await _write_record(db, subscription, synced)

    logger.info(
        "Synced subscription %s for user %s: plan=%s (%s), status=%s",
        data.stripe_subscription_id,
        data.user_id,
        data.plan_type,
        get_plan(data.plan_type).display_name,
        data.status,
    )
    return previous, synced


async def find_users_with_lapsed_periods(
    db: AsyncSession, now: datetime | None = None
) -> list[uuid.UUID]:
    """Users whose billing period ended while payment was past due or canceled."""
    now = now or utcnow()
    result = await db.execute(
        select(Subscription.user_id).where(
            Subscription.current_period_end.is_not(None),
            Subscription.current_period_end <= now,
            Subscription.billing_status.in_([str(s) for s in PERIOD_END_BILLING_STATUSES]),
        )
    )
    return list(result.scalars().all())
