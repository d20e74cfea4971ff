"""Billing API endpoints: status, Stripe Checkout, and Customer Portal.

None of these endpoints change a subscription row. Checkout and Portal only
hand the user to Stripe; the row changes when Stripe's webhook confirms it.
"""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from stripe import StripeClient

from finwise.api.deps import (
    billing_rate_limit,
    get_current_subscription,
    get_current_user,
    get_db,
    get_status_subscription,
    get_stripe_client,
)
from finwise.billing.plans import PAID_PLAN_NAMES, PLANS, get_plan, get_price_id
from finwise.billing.stripe_client import create_checkout_session, create_portal_session
from finwise.config import Settings, get_settings
from finwise.models.user import User
from finwise.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    PlanResponse,
    PlansListResponse,
    PortalRequest,
    PortalResponse,
    SubscriptionResponse,
    SubscriptionStatusResponse,
)
from finwise.services.subscription_service import ensure_stripe_customer
from finwise.subscriptions.classifier import has_used_trial
from finwise.subscriptions.states import SubscriptionRecord
from finwise.subscriptions.summary import get_status_info

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


@router.get("/plans", response_model=PlansListResponse)
async def list_plans() -> PlansListResponse:
    """List available plans (public: no auth required)."""
    return PlansListResponse(
        plans=[
            PlanResponse(
                name=p.name,
                display_name=p.display_name,
                description=p.description,
                max_accounts=p.max_accounts,
                max_transactions_per_month=p.max_transactions_per_month,
                max_ai_queries_per_month=p.max_ai_queries_per_month,
                has_export=p.has_export,
                price_monthly_cents=p.price_monthly_cents,
                trial_days=p.trial_days,
                features=list(p.features),
            )
            for p in PLANS.values()
        ]
    )


@router.get("/status", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    record: SubscriptionRecord | None = Depends(get_status_subscription),
) -> SubscriptionStatusResponse:
    """Access flag and banner for the current user, computed from a fresh read.

    A failed read is shown as the free-plan defaults rather than an error.
    """
    info = get_status_info(record)
    return SubscriptionStatusResponse(
        has_active_access=info.has_active_access,
        banner_type=info.banner_type,
        banner_message=info.banner_message,
        plan_type=info.plan_type,
        current_plan_name=info.current_plan_name,
        trial_days_left=info.trial_days_left,
        current_period_end=info.current_period_end,
    )


@router.get("/subscription", response_model=SubscriptionResponse | None)
async def get_subscription(
    record: SubscriptionRecord | None = Depends(get_current_subscription),
) -> SubscriptionResponse | None:
    """Stored subscription fields, or null if the user never subscribed."""
    if record is None:
        return None
    return SubscriptionResponse.model_validate(record)


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    dependencies=[Depends(billing_rate_limit("checkout"))],
)
async def create_checkout(
    body: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    record: SubscriptionRecord | None = Depends(get_current_subscription),
    client: StripeClient = Depends(get_stripe_client),
    settings: Settings = Depends(get_settings),
) -> CheckoutResponse:
    """Create a Stripe Checkout session to start a trial or upgrade."""
    if body.plan not in PAID_PLAN_NAMES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid plan. Choose 'basic' or 'pro'.",
        )

    plan = get_plan(body.plan)
    price_id = get_price_id(plan.name, settings)
    if not price_id:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stripe price ID not configured for plan.",
        )

    # A trial is granted at most once per user.
    trial_days = plan.trial_days if plan.trial_days > 0 and not has_used_trial(record) else None

    success_url = (
        body.success_url
        or f"{settings.frontend_url}/billing/payment-success?session_id={{CHECKOUT_SESSION_ID}}"
    )
    cancel_url = body.cancel_url or f"{settings.frontend_url}/billing/payment-failed"

    try:
        customer_id = await ensure_stripe_customer(db, client, current_user)
        session = await create_checkout_session(
            client,
            customer_id=customer_id,
            user_id=str(current_user.id),
            price_id=price_id,
            success_url=success_url,
            cancel_url=cancel_url,
            trial_days=trial_days,
        )
    except stripe.StripeError as e:
        logger.error("Stripe checkout error: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        ) from e

    return CheckoutResponse(
        checkout_url=session.url,
        session_id=session.id,
        trial_days=trial_days,
    )


@router.post(
    "/portal",
    response_model=PortalResponse,
    dependencies=[Depends(billing_rate_limit("portal"))],
)
async def create_portal(
    body: PortalRequest,
    current_user: User = Depends(get_current_user),
    client: StripeClient = Depends(get_stripe_client),
    settings: Settings = Depends(get_settings),
) -> PortalResponse:
    """Create a Stripe Customer Portal session (cancel, change plan, payment method)."""
    if not current_user.stripe_customer_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No Stripe customer found. Subscribe first.",
        )

    return_url = body.return_url or f"{settings.frontend_url}/settings/billing"

    try:
        session = await create_portal_session(
            client,
            customer_id=current_user.stripe_customer_id,
            return_url=return_url,
        )
    except stripe.StripeError as e:
        logger.error("Stripe portal error: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        ) from e

    return PortalResponse(portal_url=session.url)
