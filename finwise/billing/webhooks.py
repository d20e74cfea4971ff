"""Stripe webhook event handlers: map verified events onto lifecycle transitions.

Each handler returns a ``WebhookOutcome``: ``Processed`` when a record was
synced or transitioned, ``Ignored`` when the event needs no state change.
Failures raise so the delivery is rolled back and redelivered by Stripe.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

import stripe
from sqlalchemy.ext.asyncio import AsyncSession
from stripe import StripeClient

from finwise.billing.errors import MissingUserLinkageError, UnknownPriceError
from finwise.billing.plans import get_plan_by_price_id
from finwise.billing.stripe_client import USER_ID_METADATA_KEY, get_subscription, retrieve_customer
from finwise.config import Settings
from finwise.services.subscription_service import (
    SubscriptionSyncData,
    apply_lifecycle_transition,
    get_subscription_by_stripe_subscription,
    get_subscription_record,
    get_user,
    sync_subscription_from_stripe,
)
from finwise.subscriptions.states import (
    BillingStatus,
    PlanType,
    SubscriptionRecord,
    SubscriptionStatus,
    utcnow,
)
from finwise.subscriptions.transitions import Transition

logger = logging.getLogger(__name__)

# Stripe statuses a subscription never leaves.
ENDED_STRIPE_STATUSES = (SubscriptionStatus.CANCELED.value, SubscriptionStatus.INCOMPLETE_EXPIRED.value)


@dataclass(frozen=True)
class Processed:
    event_type: str
    record: SubscriptionRecord
    transitions: tuple[Transition, ...] = ()


@dataclass(frozen=True)
class Ignored:
    event_type: str
    reason: str


WebhookOutcome = Processed | Ignored


def _ts_to_naive(ts: int | None) -> datetime | None:
    """Convert Stripe Unix timestamp to naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, timezone.utc).replace(tzinfo=None)


def _get_id(value) -> str | None:
    """Stripe fields like ``customer`` are either an ID or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return value.id


def _get_first_item(stripe_sub: stripe.Subscription):
    """Get the first subscription item, using bracket notation to avoid
    collision with Python dict .items() in newer Stripe API versions.
    """
    sub_items = stripe_sub["items"]
    if sub_items and sub_items.data:
        return sub_items.data[0]
    return None


def _get_price_id_from_subscription(stripe_sub: stripe.Subscription) -> str | None:
    """Extract the first price ID from a Stripe subscription's items."""
    item = _get_first_item(stripe_sub)
    return item.price.id if item else None


def _get_period(stripe_sub: stripe.Subscription) -> tuple[datetime | None, datetime | None]:
    """Extract current period start/end from subscription item.

    In Stripe API 2025-08-27 (basil), current_period_start/end moved
    from the subscription object to the subscription item.
    """
    item = _get_first_item(stripe_sub)
    if item:
        return (
            _ts_to_naive(getattr(item, "current_period_start", None)),
            _ts_to_naive(getattr(item, "current_period_end", None)),
        )
    return None, None


def _get_invoice_subscription_id(invoice: stripe.Invoice) -> str | None:
    """Invoices carry their subscription at the top level on older API
    versions and under ``parent.subscription_details`` on newer ones.
    """
    subscription = getattr(invoice, "subscription", None)
    if subscription:
        return _get_id(subscription)
    parent = getattr(invoice, "parent", None)
    details = getattr(parent, "subscription_details", None) if parent else None
    return _get_id(getattr(details, "subscription", None)) if details else None


def _metadata_value(obj, key: str) -> str | None:
    metadata = getattr(obj, "metadata", None)
    if not metadata:
        return None
    try:
        return metadata[key]
    except KeyError:
        return None


def _is_deleted(record: SubscriptionRecord | None) -> bool:
    """The row was downgraded by ``stripe_deleted`` and not resubscribed since."""
    return (
        record is not None
        and record.stripe_subscription_id is None
        and record.plan_type == PlanType.FREE
        and record.billing_status == BillingStatus.CANCELED
    )


async def _resolve_user_id(db: AsyncSession, client: StripeClient, customer_id: str | None) -> uuid.UUID:
    """Map a Stripe customer back to a Finwise user via customer metadata."""
    if not customer_id:
        raise MissingUserLinkageError(customer_id)

    customer = await retrieve_customer(client, customer_id)
    raw_user_id = None if getattr(customer, "deleted", False) else _metadata_value(customer, USER_ID_METADATA_KEY)
    if not raw_user_id:
        raise MissingUserLinkageError(customer_id)

    try:
        user_id = uuid.UUID(raw_user_id)
    except ValueError:
        raise MissingUserLinkageError(customer_id) from None

    if await get_user(db, user_id) is None:
        raise MissingUserLinkageError(customer_id)
    return user_id


async def _build_sync_data(
    db: AsyncSession, client: StripeClient, stripe_sub: stripe.Subscription, settings: Settings
) -> SubscriptionSyncData:
    price_id = _get_price_id_from_subscription(stripe_sub)
    plan = get_plan_by_price_id(price_id, settings) if price_id else None
    if plan is None:
        raise UnknownPriceError(price_id)

    customer_id = _get_id(stripe_sub.customer)
    user_id = await _resolve_user_id(db, client, customer_id)

    trial_end = _ts_to_naive(getattr(stripe_sub, "trial_end", None))
    period_start, period_end = _get_period(stripe_sub)
    return SubscriptionSyncData(
        user_id=user_id,
        stripe_customer_id=customer_id,
        stripe_subscription_id=stripe_sub.id,
        stripe_price_id=price_id,
        plan_type=plan,
        status=stripe_sub.status,
        current_period_start=period_start,
        current_period_end=period_end,
        cancel_at_period_end=bool(getattr(stripe_sub, "cancel_at_period_end", False)),
        trial_end=trial_end,
        has_used_trial=(
            stripe_sub.status == SubscriptionStatus.TRIALING
            or (trial_end is not None and trial_end < utcnow())
        ),
    )


def _follow_up_transitions(
    previous: SubscriptionRecord | None, synced: SubscriptionRecord
) -> list[Transition]:
    """Named transitions implied by moving from ``previous`` to a Stripe snapshot."""
    transitions: list[Transition] = []
    was_trialing = previous is not None and previous.status == SubscriptionStatus.TRIALING

    if synced.status == SubscriptionStatus.TRIALING and not was_trialing:
        transitions.append(Transition.TRIAL_START)
    elif was_trialing and synced.status == SubscriptionStatus.ACTIVE:
        transitions.append(Transition.TRIAL_END_SUCCESS)
    elif was_trialing and synced.status == SubscriptionStatus.PAST_DUE:
        transitions.append(Transition.TRIAL_END_FAILED)

    if synced.cancel_at_period_end:
        transitions.append(Transition.MANUAL_CANCEL)
    return transitions


async def _sync_and_transition(
    db: AsyncSession,
    client: StripeClient,
    event_type: str,
    stripe_sub: stripe.Subscription,
    settings: Settings,
) -> WebhookOutcome:
    data = await _build_sync_data(db, client, stripe_sub, settings)

    if _is_deleted(await get_subscription_record(db, data.user_id)):
        # Events can arrive after the deletion; only a live subscription may
        # bring a deleted row back.
        live_sub = await get_subscription(client, stripe_sub.id)
        if live_sub.status in ENDED_STRIPE_STATUSES:
            logger.info(
                "Subscription %s already deleted, ignoring late %s", stripe_sub.id, event_type
            )
            return Ignored(event_type, "subscription already deleted")
        data = await _build_sync_data(db, client, live_sub, settings)

    previous, record = await sync_subscription_from_stripe(db, data)

    transitions = tuple(_follow_up_transitions(previous, record))
    for transition in transitions:
        record = await apply_lifecycle_transition(
            db, data.user_id, transition, trial_end=data.trial_end
        )
    return Processed(event_type, record, transitions)


async def handle_checkout_session_completed(
    db: AsyncSession, client: StripeClient, event: stripe.Event, settings: Settings
) -> WebhookOutcome:
    """Handle checkout.session.completed: the user finished Stripe Checkout."""
    session = event.data.object
    subscription_id = _get_id(session.subscription)

    if not subscription_id:
        logger.info("Checkout session %s has no subscription (one-time?), skipping", session.id)
        return Ignored(event.type, "checkout without subscription")

    # Fetch full subscription from Stripe to get price, trial and period info
    stripe_sub = await get_subscription(client, subscription_id)
    outcome = await _sync_and_transition(db, client, event.type, stripe_sub, settings)
    if isinstance(outcome, Processed):
        logger.info(
            "Checkout completed: subscription %s on plan %s, status=%s",
            subscription_id,
            outcome.record.plan_type,
            outcome.record.status,
        )
    return outcome


async def handle_subscription_changed(
    db: AsyncSession, client: StripeClient, event: stripe.Event, settings: Settings
) -> WebhookOutcome:
    """Handle customer.subscription.*: sync the snapshot, then derived transitions."""
    stripe_sub = event.data.object
    outcome = await _sync_and_transition(db, client, event.type, stripe_sub, settings)
    if isinstance(outcome, Processed):
        logger.info(
            "Subscription %s synced from %s: plan=%s, status=%s, transitions=%s",
            stripe_sub.id,
            event.type,
            outcome.record.plan_type,
            outcome.record.status,
            [str(t) for t in outcome.transitions],
        )
    return outcome


async def _apply_invoice_transition(
    db: AsyncSession,
    client: StripeClient,
    event: stripe.Event,
    settings: Settings,
    transition: Transition,
) -> WebhookOutcome:
    invoice = event.data.object
    subscription_id = _get_invoice_subscription_id(invoice)

    if not subscription_id:
        logger.info("Invoice %s has no subscription (one-time), skipping", invoice.id)
        return Ignored(event.type, "invoice without subscription")

    if transition is Transition.PAYMENT_SUCCEEDED and getattr(invoice, "amount_paid", None) == 0:
        # Trial start invoices are zero-amount and must not end the trial.
        logger.info("Invoice %s is zero-amount, skipping", invoice.id)
        return Ignored(event.type, "zero-amount invoice")

    subscription = await get_subscription_by_stripe_subscription(db, subscription_id)
    if subscription is not None:
        user_id = subscription.user_id
    else:
        # First event seen for this subscription: create the row from Stripe.
        stripe_sub = await get_subscription(client, subscription_id)
        if stripe_sub.status in ENDED_STRIPE_STATUSES:
            logger.info("Invoice %s is for ended subscription %s, skipping", invoice.id, subscription_id)
            return Ignored(event.type, "subscription already deleted")
        data = await _build_sync_data(db, client, stripe_sub, settings)
        await sync_subscription_from_stripe(db, data)
        user_id = data.user_id

    record = await apply_lifecycle_transition(db, user_id, transition)
    return Processed(event.type, record, (transition,))


async def handle_invoice_payment_succeeded(
    db: AsyncSession, client: StripeClient, event: stripe.Event, settings: Settings
) -> WebhookOutcome:
    """Handle invoice.paid / invoice.payment_succeeded: clear billing problems."""
    outcome = await _apply_invoice_transition(db, client, event, settings, Transition.PAYMENT_SUCCEEDED)
    if isinstance(outcome, Processed):
        logger.info("Payment succeeded for user %s", outcome.record.user_id)
    return outcome


async def handle_invoice_payment_failed(
    db: AsyncSession, client: StripeClient, event: stripe.Event, settings: Settings
) -> WebhookOutcome:
    """Handle invoice.payment_failed: mark billing as past_due."""
    outcome = await _apply_invoice_transition(db, client, event, settings, Transition.PAYMENT_FAILED)
    if isinstance(outcome, Processed):
        logger.warning("Payment failed for user %s, billing marked past_due", outcome.record.user_id)
    return outcome


async def handle_invoice_payment_action_required(
    db: AsyncSession, client: StripeClient, event: stripe.Event, settings: Settings
) -> WebhookOutcome:
    """Handle invoice.payment_action_required: the customer must confirm the
    payment (e.g. 3D Secure). Re-sync so the incomplete state shows at once.
    """
    invoice = event.data.object
    subscription_id = _get_invoice_subscription_id(invoice)
    if not subscription_id:
        logger.info("Invoice %s has no subscription (one-time), skipping", invoice.id)
        return Ignored(event.type, "invoice without subscription")

    stripe_sub = await get_subscription(client, subscription_id)
    outcome = await _sync_and_transition(db, client, event.type, stripe_sub, settings)
    if isinstance(outcome, Processed):
        logger.warning(
            "Payment action required for user %s, subscription %s status=%s",
            outcome.record.user_id,
            subscription_id,
            outcome.record.status,
        )
    return outcome


async def handle_subscription_deleted(
    db: AsyncSession, client: StripeClient, event: stripe.Event, settings: Settings
) -> WebhookOutcome:
    """Handle customer.subscription.deleted: downgrade to free, keep the row."""
    stripe_sub = event.data.object
    subscription_id = stripe_sub.id

    subscription = await get_subscription_by_stripe_subscription(db, subscription_id)
    if subscription is None:
        logger.warning(
            "No local subscription found for Stripe subscription %s (delete event)",
            subscription_id,
        )
        return Ignored(event.type, "unknown subscription")

    record = await apply_lifecycle_transition(db, subscription.user_id, Transition.STRIPE_DELETED)
    logger.info("Subscription deleted: %s downgraded to free tier", subscription_id)
    return Processed(event.type, record, (Transition.STRIPE_DELETED,))


EVENT_HANDLERS = {
    "checkout.session.completed": handle_checkout_session_completed,
    "customer.subscription.created": handle_subscription_changed,
    "customer.subscription.updated": handle_subscription_changed,
    "customer.subscription.paused": handle_subscription_changed,
    "customer.subscription.resumed": handle_subscription_changed,
    "customer.subscription.trial_will_end": handle_subscription_changed,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.paid": handle_invoice_payment_succeeded,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "invoice.payment_failed": handle_invoice_payment_failed,
    "invoice.payment_action_required": handle_invoice_payment_action_required,
}


async def process_event(
    db: AsyncSession, client: StripeClient, event: stripe.Event, settings: Settings
) -> WebhookOutcome:
    """Dispatch a verified event. Unknown event types are logged and ignored."""
    handler = EVENT_HANDLERS.get(event.type)
    if handler is None:
        logger.info("Unhandled webhook event type: %s (id=%s)", event.type, event.id)
        return Ignored(event.type, "unhandled event type")

    logger.info("Processing webhook event: %s (id=%s)", event.type, event.id)
    return await handler(db, client, event, settings)
