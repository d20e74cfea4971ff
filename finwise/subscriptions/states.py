"""Subscription state vocabulary and the immutable record the engine works on."""

import uuid
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from enum import Enum, StrEnum


class PlanType(StrEnum):
    FREE = "free"
    BASIC = "basic"
    PRO = "pro"


class SubscriptionStatus(StrEnum):
    """Mirrors Stripe's subscription status enum, in Stripe's order."""

    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"


class BillingStatus(StrEnum):
    """Payment sub-state layered on top of ``SubscriptionStatus``. ``None`` means healthy."""

    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    CANCELED = "canceled"


def utcnow() -> datetime:
    """Current time as naive UTC, matching the database columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def billing_status_for(status: str) -> BillingStatus | None:
    """Derive the billing sub-state Stripe implies for a subscription status."""
    try:
        return BillingStatus(status)
    except ValueError:
        return None


@dataclass(frozen=True)
class SubscriptionRecord:
    """Snapshot of one user's subscription row.

    ``plan_type``, ``status`` and ``billing_status`` are plain strings when
    read from storage, so values outside the enums survive a round trip and
    are handled by the classifier as "no special access".
    """

    user_id: uuid.UUID
    plan_type: str = PlanType.FREE
    status: str = SubscriptionStatus.ACTIVE
    billing_status: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    trial_end: datetime | None = None
    cancel_at_period_end: bool = False
    has_used_trial: bool = False
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    stripe_price_id: str | None = None

    @classmethod
    def from_model(cls, subscription) -> "SubscriptionRecord":
        """Build a record from a ``Subscription`` ORM row."""
        values = {f.name: getattr(subscription, f.name) for f in fields(cls)}
        # Column defaults are only applied on flush.
        values["cancel_at_period_end"] = bool(values["cancel_at_period_end"])
        values["has_used_trial"] = bool(values["has_used_trial"])
        return cls(**values)

    def apply_to(self, subscription) -> None:
        """Write every field onto a ``Subscription`` ORM row."""
        for f in fields(self):
            if f.name == "user_id":
                continue
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            setattr(subscription, f.name, value)
