"""Stripe webhook endpoint."""

import asyncio
from typing import Optional

from fastapi import Depends, Header, Request
from fastapi.responses import JSONResponse

from ledgerhook.api import deps
from ledgerhook.api.router import TrailingSlashRouter
from ledgerhook.billing.webhook_processor import BillingWebhookProcessor
from ledgerhook.core.config import settings
from ledgerhook.core.logging import logger
from ledgerhook.schemas.billing_event import (
    ProcessingOutcome,
    ProcessingResult,
    WebhookResponse,
)

router = TrailingSlashRouter()

# 2xx tells Stripe to stop redelivering, anything else makes it retry with backoff
OUTCOME_STATUS_CODES = {
    ProcessingOutcome.APPLIED: 200,
    ProcessingOutcome.ALREADY_APPLIED: 200,
    ProcessingOutcome.IGNORED: 200,
    ProcessingOutcome.REJECTED: 202,
    ProcessingOutcome.INVARIANT_VIOLATION: 202,
    ProcessingOutcome.RETRY: 503,
}


def _to_response(result: ProcessingResult) -> JSONResponse:
    received = result.outcome not in (ProcessingOutcome.REJECTED, ProcessingOutcome.RETRY)
    body = WebhookResponse(
        received=received,
        outcome=result.outcome,
        event_id=result.event_id,
        detail=result.detail,
    )
    return JSONResponse(
        status_code=OUTCOME_STATUS_CODES[result.outcome],
        content=body.model_dump(mode="json"),
    )


@router.post("/stripe", include_in_schema=False, response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    processor: BillingWebhookProcessor = Depends(deps.get_webhook_processor),
) -> JSONResponse:
    """Handle Stripe webhook events.

    Receives checkout, invoice and subscription events, grants credits at most once per
    purchase period and keeps the local subscription state in step with Stripe.

    Security:
    - Verifies the webhook signature before anything is parsed
    - Every state change is idempotent, so redeliveries are harmless

    Args:
        request: Raw HTTP request
        stripe_signature: Stripe signature header
        processor: Webhook processor bound to the request's database session

    Returns:
        200 when the event was handled, 202 when it can never be handled, 503 when Stripe
        should deliver it again
    """
    payload = await request.body()

    try:
        result = await asyncio.wait_for(
            processor.handle_webhook(payload, stripe_signature),
            timeout=settings.WEBHOOK_PROCESSING_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.warning(
            f"Stripe webhook exceeded {settings.WEBHOOK_PROCESSING_TIMEOUT_SECONDS}s, "
            "asking for redelivery"
        )
        result = ProcessingResult(
            outcome=ProcessingOutcome.RETRY, detail="processing deadline exceeded"
        )

    return _to_response(result)
