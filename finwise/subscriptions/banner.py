"""Banner selection: at most one advisory notice per subscription.

The checks run in a fixed priority order and the first match wins. A payment
problem is surfaced even while a trial is counting down.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from finwise.subscriptions.classifier import (
    TRIAL_EXPIRING_THRESHOLD_DAYS,
    get_trial_days_left,
    is_trial_active,
)
from finwise.subscriptions.states import (
    BillingStatus,
    PlanType,
    SubscriptionRecord,
    SubscriptionStatus,
    utcnow,
)


class BannerType(StrEnum):
    START_TRIAL = "start_trial"
    TRIAL_COUNTDOWN = "trial_countdown"
    PAYMENT_ISSUE = "payment_issue"
    CANCELED_ENDS_SOON = "canceled_ends_soon"


@dataclass(frozen=True)
class Banner:
    type: BannerType
    message: str


START_TRIAL = Banner(
    BannerType.START_TRIAL,
    "Start your free trial to unlock premium features!",
)
PAYMENT_ISSUE = Banner(
    BannerType.PAYMENT_ISSUE,
    "Payment issue: update your payment method to continue access.",
)
CANCELED_ENDS_SOON = Banner(
    BannerType.CANCELED_ENDS_SOON,
    "Subscription canceled. You still have access until the end of your billing period.",
)


def _trial_countdown(days_left: int) -> Banner:
    plural = "" if days_left == 1 else "s"
    return Banner(
        BannerType.TRIAL_COUNTDOWN,
        f"Trial ends in {days_left} day{plural}. Upgrade to continue access.",
    )


def select_banner(record: SubscriptionRecord | None, now: datetime | None = None) -> Banner | None:
    """Pick the single banner to show for ``record``, or ``None``."""
    if record is None or record.plan_type == PlanType.FREE:
        return START_TRIAL

    if record.billing_status == BillingStatus.PAST_DUE:
        return PAYMENT_ISSUE

    now = now or utcnow()
    if record.status == SubscriptionStatus.TRIALING and is_trial_active(record, now):
        days_left = get_trial_days_left(record, now)
        if days_left <= TRIAL_EXPIRING_THRESHOLD_DAYS:
            return _trial_countdown(days_left)

    if record.billing_status == BillingStatus.CANCELED:
        return CANCELED_ENDS_SOON

    return None
