"""Plan definitions: pricing tiers, trials and usage limits."""

from dataclasses import dataclass

from finwise.config import Settings
from finwise.subscriptions.states import PlanType


@dataclass(frozen=True)
class PlanLimits:
    """Limits and catalogue details for a subscription plan."""

    name: str
    display_name: str
    description: str
    max_accounts: int | None  # None = unlimited
    max_transactions_per_month: int | None  # None = unlimited
    max_ai_queries_per_month: int | None  # None = unlimited
    has_export: bool
    price_monthly_cents: int  # in cents (e.g., 1200 = $12.00)
    trial_days: int
    features: tuple[str, ...]


PLANS: dict[str, PlanLimits] = {
    PlanType.FREE.value: PlanLimits(
        name=PlanType.FREE.value,
        display_name="Free",
        description="Perfect for getting started with basic expense tracking.",
        max_accounts=2,
        max_transactions_per_month=100,
        max_ai_queries_per_month=5,
        has_export=False,
        price_monthly_cents=0,
        trial_days=0,
        features=(
            "Track expenses and income",
            "Up to 2 accounts",
            "100 transactions/month",
            "AI financial insights (5 queries/month)",
            "Financial dashboard",
            "Category spending analysis",
            "Balance history (last 3 months)",
        ),
    ),
    PlanType.BASIC.value: PlanLimits(
        name=PlanType.BASIC.value,
        display_name="Basic",
        description="Ideal for regular users who need advanced analytics.",
        max_accounts=5,
        max_transactions_per_month=1000,
        max_ai_queries_per_month=50,
        has_export=True,
        price_monthly_cents=1200,
        trial_days=14,
        features=(
            "Up to 5 accounts",
            "1,000 transactions/month",
            "AI financial insights (50 queries/month)",
            "Export to CSV & JSON",
            "Full transaction history",
            "Advanced analytics dashboard",
            "Monthly financial summaries",
            "Email support",
        ),
    ),
    PlanType.PRO.value: PlanLimits(
        name=PlanType.PRO.value,
        display_name="Pro",
        description="For power users who need unlimited access to all features.",
        max_accounts=None,
        max_transactions_per_month=None,
        max_ai_queries_per_month=None,
        has_export=True,
        price_monthly_cents=2900,
        trial_days=0,
        features=(
            "Unlimited accounts",
            "Unlimited transactions",
            "Unlimited AI financial insights",
            "Export to CSV & JSON",
            "Advanced analytics & reporting",
            "Priority support",
        ),
    ),
}

PAID_PLAN_NAMES: tuple[str, ...] = (PlanType.BASIC.value, PlanType.PRO.value)


def get_plan(plan_name: str) -> PlanLimits:
    """Get plan limits by name. Defaults to free if unknown."""
    return PLANS.get(str(plan_name), PLANS[PlanType.FREE.value])


def get_price_id(plan_name: str, settings: Settings) -> str | None:
    """Stripe price ID configured for a paid plan. None for free or unconfigured."""
    price_ids = {
        PlanType.BASIC.value: settings.stripe_basic_price_id,
        PlanType.PRO.value: settings.stripe_pro_price_id,
    }
    return price_ids.get(str(plan_name)) or None


def get_plan_by_price_id(price_id: str, settings: Settings) -> str | None:
    """Reverse lookup: Stripe price ID -> plan name. Returns None if not found."""
    for plan_name in PAID_PLAN_NAMES:
        configured = get_price_id(plan_name, settings)
        if configured and configured == price_id:
            return plan_name
    return None
