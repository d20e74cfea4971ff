"""Aggregate subscription status: every classifier fact plus the selected banner."""

from dataclasses import dataclass
from datetime import datetime

from finwise.subscriptions import classifier
from finwise.subscriptions.banner import select_banner
from finwise.subscriptions.states import BillingStatus, PlanType, SubscriptionRecord, utcnow


@dataclass(frozen=True)
class SubscriptionStatusInfo:
    """Everything the billing pages need about one subscription, computed at once."""

    is_active: bool
    is_canceled: bool
    is_scheduled_for_cancellation: bool
    is_paused: bool
    is_incomplete: bool
    is_incomplete_expired: bool
    is_expired: bool
    is_trialing: bool
    is_trial_active: bool
    trial_days_left: int
    is_trial_expiring_soon: bool
    has_used_trial: bool
    is_payment_past_due: bool
    is_payment_unpaid: bool
    has_payment_issue: bool
    has_payment_problem: bool
    requires_payment_action: bool
    is_free_plan: bool
    current_plan_name: str
    plan_type: str
    current_period_end: datetime | None
    trial_end: datetime | None
    billing_status: str | None
    has_active_access: bool
    banner_type: str | None
    banner_message: str | None


def get_status_info(record: SubscriptionRecord | None, now: datetime | None = None) -> SubscriptionStatusInfo:
    now = now or utcnow()
    banner = select_banner(record, now)
    return SubscriptionStatusInfo(
        is_active=classifier.is_subscription_active(record),
        is_canceled=record is not None and record.billing_status == BillingStatus.CANCELED,
        is_scheduled_for_cancellation=classifier.is_scheduled_for_cancellation(record),
        is_paused=classifier.is_paused(record),
        is_incomplete=classifier.is_incomplete(record),
        is_incomplete_expired=classifier.is_incomplete_expired(record),
        is_expired=classifier.is_expired(record),
        is_trialing=classifier.is_trialing(record),
        is_trial_active=classifier.is_trial_active(record, now),
        trial_days_left=classifier.get_trial_days_left(record, now),
        is_trial_expiring_soon=classifier.is_trial_expiring_soon(record, now=now),
        has_used_trial=classifier.has_used_trial(record),
        is_payment_past_due=classifier.is_payment_past_due(record),
        is_payment_unpaid=classifier.is_payment_unpaid(record),
        has_payment_issue=classifier.has_payment_issue(record),
        has_payment_problem=classifier.has_payment_problem(record),
        requires_payment_action=classifier.requires_payment_action(record),
        is_free_plan=classifier.is_free_plan(record),
        current_plan_name=classifier.get_current_plan_name(record),
        plan_type=str(record.plan_type) if record is not None else PlanType.FREE.value,
        current_period_end=record.current_period_end if record is not None else None,
        trial_end=record.trial_end if record is not None else None,
        billing_status=str(record.billing_status) if record is not None and record.billing_status else None,
        has_active_access=classifier.has_active_access(record),
        banner_type=banner.type.value if banner else None,
        banner_message=banner.message if banner else None,
    )
