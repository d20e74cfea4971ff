"""Status classifier: pure facts derived from a subscription record.

Every function accepts ``None`` for "user has no subscription row" and never
raises. Unknown ``status``/``billing_status`` strings simply match nothing.
Access decisions must be made on a freshly read record; nothing here caches.
"""

import math
from datetime import datetime

from finwise.subscriptions.states import (
    BillingStatus,
    PlanType,
    SubscriptionRecord,
    SubscriptionStatus,
    utcnow,
)

TRIAL_EXPIRING_THRESHOLD_DAYS = 3
_SECONDS_PER_DAY = 24 * 60 * 60

ACTIVE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)

# Plans that can unlock paid features. Unknown plan names never do.
PAID_PLAN_TYPES = (PlanType.BASIC, PlanType.PRO)

# Statuses that keep feature access open. Everything else (canceled, unpaid,
# incomplete_expired, past_due, unknown) is closed unless the subscription is
# merely scheduled for cancellation.
ACCESS_GRANTING_STATUSES = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.INCOMPLETE,
    SubscriptionStatus.PAUSED,
)

_PLAN_NAMES = {
    PlanType.FREE.value: "Free",
    PlanType.BASIC.value: "Basic",
    PlanType.PRO.value: "Pro",
}


def is_subscription_active(record: SubscriptionRecord | None) -> bool:
    return record is not None and record.status in ACTIVE_STATUSES


def is_trialing(record: SubscriptionRecord | None) -> bool:
    return record is not None and record.status == SubscriptionStatus.TRIALING


def is_trial_active(record: SubscriptionRecord | None, now: datetime | None = None) -> bool:
    """Trialing with a trial end still in the future."""
    if not is_trialing(record) or record.trial_end is None:
        return False
    return record.trial_end > (now or utcnow())


def get_trial_days_left(record: SubscriptionRecord | None, now: datetime | None = None) -> int:
    """Whole days left in an active trial, rounded up. 0 when not actively trialing."""
    now = now or utcnow()
    if not is_trial_active(record, now):
        return 0
    seconds = (record.trial_end - now).total_seconds()
    return max(math.ceil(seconds / _SECONDS_PER_DAY), 0)


def is_trial_expiring_soon(
    record: SubscriptionRecord | None,
    threshold_days: int = TRIAL_EXPIRING_THRESHOLD_DAYS,
    now: datetime | None = None,
) -> bool:
    now = now or utcnow()
    if not is_trial_active(record, now):
        return False
    days_left = get_trial_days_left(record, now)
    return 0 < days_left <= threshold_days


def has_used_trial(record: SubscriptionRecord | None) -> bool:
    return record is not None and record.has_used_trial


def is_payment_past_due(record: SubscriptionRecord | None) -> bool:
    return record is not None and record.billing_status == BillingStatus.PAST_DUE


def is_payment_unpaid(record: SubscriptionRecord | None) -> bool:
    return record is not None and record.billing_status == BillingStatus.UNPAID


def has_payment_issue(record: SubscriptionRecord | None) -> bool:
    return is_payment_past_due(record) or is_payment_unpaid(record)


def is_free_plan(record: SubscriptionRecord | None) -> bool:
    if record is None:
        return True
    return record.plan_type == PlanType.FREE or record.status == SubscriptionStatus.CANCELED


def get_current_plan_name(record: SubscriptionRecord | None) -> str:
    if record is None or record.status == SubscriptionStatus.CANCELED:
        return "Free"
    return _PLAN_NAMES.get(str(record.plan_type), "Free")


def is_scheduled_for_cancellation(record: SubscriptionRecord | None) -> bool:
    return record is not None and record.cancel_at_period_end


def is_paused(record: SubscriptionRecord | None) -> bool:
    return record is not None and record.status == SubscriptionStatus.PAUSED


def is_incomplete(record: SubscriptionRecord | None) -> bool:
    return record is not None and record.status == SubscriptionStatus.INCOMPLETE


def is_incomplete_expired(record: SubscriptionRecord | None) -> bool:
    return record is not None and record.status == SubscriptionStatus.INCOMPLETE_EXPIRED


def requires_payment_action(record: SubscriptionRecord | None) -> bool:
    """Stripe is waiting on the customer (e.g. 3D Secure) to finish the first payment."""
    return is_incomplete(record)


def is_expired(record: SubscriptionRecord | None) -> bool:
    if record is None:
        return False
    return record.billing_status in (BillingStatus.CANCELED, BillingStatus.UNPAID) or is_incomplete_expired(record)


def has_payment_problem(record: SubscriptionRecord | None) -> bool:
    return has_payment_issue(record) or is_incomplete_expired(record)


def has_active_access(record: SubscriptionRecord | None) -> bool:
    """Authorization gate for paid features.

    Closed for the free plan, for unknown plans and while a payment is past
    due or unpaid.
    Otherwise open for active, trialing, incomplete and paused subscriptions,
    and for any subscription still running out a period after cancellation.
    """
    if record is None or record.plan_type not in PAID_PLAN_TYPES:
        return False
    if has_payment_issue(record):
        return False
    if record.status in ACCESS_GRANTING_STATUSES:
        return True
    return record.cancel_at_period_end is True
