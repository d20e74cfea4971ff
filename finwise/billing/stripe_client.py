"""Async Stripe API wrapper for Finwise.

The ``StripeClient`` is built once at startup (see ``finwise.main``) and
passed into these helpers; nothing here holds a module-level client.
"""

import logging

import stripe
from fastapi import Request
from stripe import StripeClient

from finwise.config import Settings

logger = logging.getLogger(__name__)

# Customer metadata key linking a Stripe customer to a Finwise user
USER_ID_METADATA_KEY = "finwise_user_id"


def build_stripe_client(settings: Settings) -> StripeClient:
    """Create a StripeClient instance with async HTTP support."""
    return StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(),
    )


def get_stripe_client(request: Request) -> StripeClient:
    """FastAPI dependency returning the client built at startup."""
    return request.app.state.stripe_client


async def create_customer(
    client: StripeClient, email: str, name: str, user_id: str
) -> stripe.Customer:
    """Create a Stripe customer linked to a Finwise user."""
    logger.info("Creating Stripe customer for user %s (%s)", user_id, email)
    customer = await client.v1.customers.create_async(
        params={
            "email": email,
            "name": name,
            "metadata": {USER_ID_METADATA_KEY: user_id},
        }
    )
    logger.info("Created Stripe customer %s for user %s", customer.id, user_id)
    return customer


async def retrieve_customer(client: StripeClient, customer_id: str) -> stripe.Customer:
    return await client.v1.customers.retrieve_async(customer_id)


async def create_checkout_session(
    client: StripeClient,
    customer_id: str,
    user_id: str,
    price_id: str,
    success_url: str,
    cancel_url: str,
    trial_days: int | None = None,
) -> stripe.checkout.Session:
    """Create a Stripe Checkout Session for a subscription, optionally with a trial."""
    logger.info(
        "Creating checkout session for customer %s, price %s, trial_days=%s",
        customer_id,
        price_id,
        trial_days,
    )
    params = {
        "mode": "subscription",
        "customer": customer_id,
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": success_url,
        "cancel_url": cancel_url,
        "metadata": {USER_ID_METADATA_KEY: user_id},
    }
    if trial_days:
        params["subscription_data"] = {"trial_period_days": trial_days}
    return await client.v1.checkout.sessions.create_async(params=params)


async def create_portal_session(
    client: StripeClient, customer_id: str, return_url: str
) -> stripe.billing_portal.Session:
    """Create a Stripe Customer Portal session for subscription management."""
    logger.info("Creating portal session for customer %s", customer_id)
    return await client.v1.billing_portal.sessions.create_async(
        params={
            "customer": customer_id,
            "return_url": return_url,
        }
    )


async def get_subscription(client: StripeClient, subscription_id: str) -> stripe.Subscription:
    """Retrieve a Stripe subscription by ID."""
    return await client.v1.subscriptions.retrieve_async(subscription_id)


def construct_webhook_event(
    client: StripeClient, payload: bytes, sig_header: str, webhook_secret: str
) -> stripe.Event:
    """Verify and construct a Stripe webhook event (synchronous)."""
    return client.construct_event(payload, sig_header, webhook_secret)
