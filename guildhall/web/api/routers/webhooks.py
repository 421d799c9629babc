"""Stripe webhook endpoint.

Signature verification needs the exact bytes Stripe sent, so the body is
read raw rather than through a pydantic model.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from guildhall.shared.context import AppContext
from guildhall.shared.exceptions import GuildhallError, WebhookSignatureError
from guildhall.web.api.dependencies import get_context, get_db_session
from guildhall.web.api.schemas import envelope, error_envelope
from guildhall.web.crud import EntitlementOperations
from guildhall.web.webhooks import WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    context: AppContext = Depends(get_context),
    session: AsyncSession = Depends(get_db_session),
) -> Any:
    """Verify and apply a Stripe event.

    Returns 400 when the signature doesn't verify and 500 when applying
    the event fails, so Stripe retries delivery.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        event = context.payments.construct_event(payload, signature)
    except WebhookSignatureError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        return JSONResponse(status_code=400, content=error_envelope("Invalid signature"))

    reconciler = WebhookReconciler(EntitlementOperations(session, context.payments), context.payments)
    try:
        parsed = await reconciler.handle(event)
    except GuildhallError as e:
        logger.error(f"Error handling webhook event {event.get('type')}: {e}")
        await session.rollback()
        return JSONResponse(status_code=500, content=error_envelope("Webhook handler failed"))

    logger.info(f"Processed Stripe event {event.get('id')} ({type(parsed).__name__})")
    return envelope({"received": True})
