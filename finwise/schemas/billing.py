"""Pydantic v2 request/response schemas for billing endpoints."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

# --- Request schemas ---


class CheckoutRequest(BaseModel):
    """Request to create a Stripe Checkout session."""

    plan: str  # "basic" or "pro"
    success_url: str | None = None
    cancel_url: str | None = None


class PortalRequest(BaseModel):
    """Request to create a Stripe Customer Portal session."""

    return_url: str | None = None


# --- Response schemas ---


class PlanResponse(BaseModel):
    """Plan details for display."""

    name: str
    display_name: str
    description: str
    max_accounts: int | None
    max_transactions_per_month: int | None
    max_ai_queries_per_month: int | None
    has_export: bool
    price_monthly_cents: int
    trial_days: int
    features: list[str]


class PlansListResponse(BaseModel):
    """All available plans."""

    plans: list[PlanResponse]


class SubscriptionResponse(BaseModel):
    """Stored subscription fields for the authenticated user."""

    model_config = ConfigDict(from_attributes=True)

    plan_type: str
    status: str
    billing_status: str | None
    current_period_start: datetime | None
    current_period_end: datetime | None
    trial_end: datetime | None
    cancel_at_period_end: bool
    has_used_trial: bool


class SubscriptionStatusResponse(BaseModel):
    """Values exposed to the presentation layer."""

    has_active_access: bool
    banner_type: Literal["start_trial", "trial_countdown", "payment_issue", "canceled_ends_soon"] | None
    banner_message: str | None
    plan_type: str
    current_plan_name: str
    trial_days_left: int
    current_period_end: datetime | None


class CheckoutResponse(BaseModel):
    """Stripe Checkout session URL returned to frontend."""

    checkout_url: str
    session_id: str
    trial_days: int | None = None


class PortalResponse(BaseModel):
    """Stripe Customer Portal URL returned to frontend."""

    portal_url: str
