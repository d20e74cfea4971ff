"""Stripe webhook endpoint: receives and processes Stripe events."""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from stripe import StripeClient

from finwise.billing.stripe_client import construct_webhook_event, get_stripe_client
from finwise.billing.webhooks import Ignored, Processed, process_event
from finwise.config import Settings, get_settings
from finwise.database import get_session_factory

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    client: StripeClient = Depends(get_stripe_client),
    settings: Settings = Depends(get_settings),
) -> dict[str, str]:
    """Receive and process Stripe webhook events."""
    # 1. Read raw body (MUST be raw bytes for signature verification)
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    # 2. Verify signature
    try:
        event = construct_webhook_event(client, payload, sig_header, settings.stripe_webhook_secret)
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        ) from e
    except ValueError as e:
        logger.warning("Invalid webhook payload")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        ) from e

    # 3. One transaction per event (webhook has no auth context)
    async with session_factory() as db:
        try:
            outcome = await process_event(db, client, event, settings)
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.exception("Error processing webhook event %s (%s)", event.id, event.type)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Webhook processing failed",
            ) from e

    match outcome:
        case Processed():
            return {"status": "processed"}
        case Ignored(reason=reason):
            return {"status": "ignored", "reason": reason}
