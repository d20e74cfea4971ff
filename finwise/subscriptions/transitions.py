"""Lifecycle transitions: the only way a subscription record changes.

``apply_transition`` is pure: it takes the current record (freshly read by the
caller) and returns the complete next record. Applying the same transition
twice in a row yields the same record as applying it once.
"""

import dataclasses
import uuid
from datetime import datetime, timedelta
from enum import StrEnum

from finwise.billing.errors import SubscriptionNotFoundError
from finwise.billing.plans import get_plan
from finwise.subscriptions.states import (
    BillingStatus,
    PlanType,
    SubscriptionRecord,
    SubscriptionStatus,
    utcnow,
)


class Transition(StrEnum):
    TRIAL_START = "trial_start"
    TRIAL_END_SUCCESS = "trial_end_success"
    TRIAL_END_FAILED = "trial_end_failed"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    MANUAL_CANCEL = "manual_cancel"
    PERIOD_END = "period_end"
    STRIPE_DELETED = "stripe_deleted"


# period_end only downgrades subscriptions whose period ran out unpaid or canceled
PERIOD_END_BILLING_STATUSES = (BillingStatus.PAST_DUE, BillingStatus.CANCELED)


def _start_trial(
    current: SubscriptionRecord | None,
    user_id: uuid.UUID,
    now: datetime,
    trial_end: datetime | None,
) -> SubscriptionRecord:
    base = current or SubscriptionRecord(user_id=user_id)
    if base.status == SubscriptionStatus.TRIALING and base.trial_end is not None:
        trial_end = base.trial_end
    elif trial_end is None:
        trial_end = now + timedelta(days=get_plan(PlanType.BASIC).trial_days)
    return dataclasses.replace(
        base,
        plan_type=PlanType.BASIC,
        status=SubscriptionStatus.TRIALING,
        billing_status=None,
        trial_end=trial_end,
        has_used_trial=True,
    )


def apply_transition(
    current: SubscriptionRecord | None,
    transition: Transition,
    *,
    user_id: uuid.UUID,
    now: datetime | None = None,
    trial_end: datetime | None = None,
) -> SubscriptionRecord:
    """Compute the record that results from applying ``transition`` to ``current``.

    Args:
        current: The record as just read from storage, or ``None`` if the user
            has no subscription row yet.
        transition: Which lifecycle event happened.
        user_id: Owner of the record; used when ``trial_start`` creates one.
        now: Reference time (naive UTC). Defaults to the current time.
        trial_end: Trial end reported by Stripe for ``trial_start``. When omitted
            the plan's trial length is used.

    Raises:
        SubscriptionNotFoundError: Any transition other than ``trial_start``
            applied to a user with no record.
    """
    transition = Transition(transition)
    now = now or utcnow()

    if transition is Transition.TRIAL_START:
        return _start_trial(current, user_id, now, trial_end)

    if current is None:
        raise SubscriptionNotFoundError(user_id)

    replace = dataclasses.replace
    match transition:
        case Transition.TRIAL_END_SUCCESS:
            return replace(current, status=SubscriptionStatus.ACTIVE, billing_status=None)
        case Transition.TRIAL_END_FAILED:
            # Stripe keeps the subscription trialing while it retries the charge.
            return replace(
                current,
                status=SubscriptionStatus.TRIALING,
                billing_status=BillingStatus.PAST_DUE,
            )
        case Transition.PAYMENT_FAILED:
            return replace(current, billing_status=BillingStatus.PAST_DUE)
        case Transition.PAYMENT_SUCCEEDED:
            return replace(current, status=SubscriptionStatus.ACTIVE, billing_status=None)
        case Transition.MANUAL_CANCEL:
            return replace(current, billing_status=BillingStatus.CANCELED)
        case Transition.PERIOD_END:
            if current.billing_status not in PERIOD_END_BILLING_STATUSES:
                return current
            return replace(
                current,
                plan_type=PlanType.FREE,
                status=SubscriptionStatus.ACTIVE,
                billing_status=BillingStatus.UNPAID,
            )
        case Transition.STRIPE_DELETED:
            return replace(
                current,
                plan_type=PlanType.FREE,
                status=SubscriptionStatus.ACTIVE,
                billing_status=BillingStatus.CANCELED,
                stripe_subscription_id=None,
                cancel_at_period_end=False,
            )
    raise ValueError(f"Unhandled transition: {transition}")
