"""
Stripe webhook endpoint.

SECURITY: Every delivery MUST pass Stripe signature verification before
the body is parsed. Payloads of rejected deliveries are never logged.

Response policy:
- 401: missing or invalid signature
- 503: webhook secret not configured
- 400: verified body is not a valid event
- 200: event applied, duplicate, ignored, or recorded as failed
- 500: storage failure; nothing was recorded and Stripe retries

Documentation: https://stripe.com/docs/webhooks/signatures
"""

import os
import json
import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from src.config.stripe_prices import get_price_table
from src.database.session import get_db_session
from src.platform.rate_limit import rate_limit
from src.services.billing_events import ProcessorEvent
from src.services.billing_sync import BillingEventSynchronizer, get_billing_synchronizer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks/stripe", tags=["webhooks"])

DEFAULT_TOLERANCE_SECONDS = 300


class WebhookResponse(BaseModel):
    """Standard webhook response."""
    received: bool = True
    event_id: Optional[str] = None
    outcome: str
    message: str


def _tolerance_seconds() -> int:
    raw = os.getenv("STRIPE_WEBHOOK_TOLERANCE_SECONDS")
    try:
        return int(raw) if raw else DEFAULT_TOLERANCE_SECONDS
    except ValueError:
        logger.warning("Invalid STRIPE_WEBHOOK_TOLERANCE_SECONDS, using default", extra={"value": raw})
        return DEFAULT_TOLERANCE_SECONDS


async def get_verified_event(request: Request) -> Dict[str, Any]:
    """
    Verify the Stripe-Signature header and decode the body.

    Raises:
        HTTPException: 401, 503 or 400 (see module docstring)
    """
    signature = request.headers.get("Stripe-Signature")
    if not signature:
        logger.warning("Missing Stripe-Signature header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing signature"
        )

    secret = os.getenv("STRIPE_WEBHOOK_SECRET")
    if not secret:
        logger.error("STRIPE_WEBHOOK_SECRET not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook verification not configured"
        )

    body = await request.body()
    try:
        stripe.WebhookSignature.verify_header(
            body.decode("utf-8"),
            signature,
            secret,
            _tolerance_seconds(),
        )
    except (stripe.SignatureVerificationError, UnicodeDecodeError):
        logger.warning("Invalid Stripe webhook signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature"
        )

    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        logger.error("Invalid JSON in verified webhook body")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON body"
        )
    if not isinstance(data, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid event body"
        )
    return data


def get_synchronizer(db: Session = Depends(get_db_session)) -> BillingEventSynchronizer:
    return get_billing_synchronizer(db)


@router.post(
    "",
    response_model=WebhookResponse,
    dependencies=[Depends(rate_limit("webhook"))],
)
async def handle_stripe_webhook(
    request: Request,
    synchronizer: BillingEventSynchronizer = Depends(get_synchronizer),
):
    """Apply a verified Stripe event exactly once."""
    payload = await get_verified_event(request)

    try:
        event = ProcessorEvent.from_payload(payload)
    except ValueError as e:
        logger.warning("Malformed Stripe event", extra={"error": str(e)})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    logger.info("Stripe webhook received", extra={
        "event_id": event.event_id,
        "event_type": event.event_type,
    })

    result = await run_in_threadpool(synchronizer.apply, event)

    return WebhookResponse(
        event_id=result.event_id,
        outcome=result.outcome.value,
        message=result.message,
    )


@router.get("")
async def webhook_config_probe():
    """Report which Stripe settings are present, never their values."""
    table = get_price_table()
    return {
        "webhook_secret_configured": bool(os.getenv("STRIPE_WEBHOOK_SECRET")),
        "api_key_configured": bool(os.getenv("STRIPE_SECRET_KEY")),
        "price_table_version": table.version,
        "prices": table.env_status(),
    }
