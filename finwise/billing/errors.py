"""Billing error taxonomy.

Anything raised from here aborts the current webhook delivery so that Stripe
redelivers it. Nothing is retried in-process.
"""


class BillingError(Exception):
    """Base class for billing failures that must not be silently defaulted."""


class UnknownPriceError(BillingError):
    """A Stripe price ID with no plan mapping."""

    def __init__(self, price_id: str | None) -> None:
        self.price_id = price_id
        super().__init__(f"Unknown price ID: {price_id}")


class MissingUserLinkageError(BillingError):
    """A Stripe customer that cannot be tied back to a Finwise user."""

    def __init__(self, customer_id: str | None) -> None:
        self.customer_id = customer_id
        super().__init__(f"No Finwise user linked to Stripe customer: {customer_id}")


class SubscriptionNotFoundError(BillingError):
    def __init__(self, user_id) -> None:
        self.user_id = user_id
        super().__init__(f"No subscription found for user {user_id}")
