"""Create Stripe products and prices for the paid plans in test mode.

Run once inside the backend container:
    python -m finwise.billing.scripts.create_stripe_products

Outputs price IDs to set in .env:
    STRIPE_BASIC_PRICE_ID=price_xxx
    STRIPE_PRO_PRICE_ID=price_xxx
"""

import asyncio

from finwise.billing.plans import PAID_PLAN_NAMES, get_plan
from finwise.billing.stripe_client import build_stripe_client
from finwise.config import get_settings


async def main() -> None:
    settings = get_settings()
    if not settings.stripe_secret_key:
        print("ERROR: STRIPE_SECRET_KEY is not set in .env")
        return

    client = build_stripe_client(settings)

    env_lines = []
    for plan_name in PAID_PLAN_NAMES:
        plan = get_plan(plan_name)
        product = await client.v1.products.create_async(
            params={
                "name": f"Finwise {plan.display_name}",
                "description": plan.description,
                "metadata": {"plan_type": plan.name},
            }
        )
        price = await client.v1.prices.create_async(
            params={
                "product": product.id,
                "unit_amount": plan.price_monthly_cents,
                "currency": "usd",
                "recurring": {"interval": "month"},
            }
        )
        print(f"Created product: {product.name} ({product.id})")
        print(f"  Price: ${plan.price_monthly_cents / 100:.2f}/mo ({price.id})")
        env_lines.append(f"STRIPE_{plan.name.upper()}_PRICE_ID={price.id}")

    print("\n--- Add these to your .env ---")
    for line in env_lines:
        print(line)


if __name__ == "__main__":
    asyncio.run(main())
