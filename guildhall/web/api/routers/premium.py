"""Premium API router.

Premium status lookups, Stripe checkout, subscription cancellation and the
administrator override.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from guildhall.shared.context import AppContext
from guildhall.shared.exceptions import NotFoundError, ValidationError
from guildhall.web.api.dependencies import (
    get_context,
    get_current_user,
    get_db_session,
    require_admin,
)
from guildhall.web.api.schemas import (
    CancelSubscriptionRequest,
    CheckoutRequest,
    CheckoutResponse,
    EntitlementResponse,
    GuildPremiumResponse,
    OverrideRequest,
    envelope,
)
from guildhall.web.api.security import AuthenticatedUser
from guildhall.web.crud import EntitlementOperations
from guildhall.web.models import ADMIN_OVERRIDE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Premium"])


@router.get("/guild/{guild_id}/premium")
async def get_guild_premium(
    guild_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    context: AppContext = Depends(get_context),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """Get a guild's effective premium entitlement, if any."""
    record = await EntitlementOperations(session, context.payments).get_active_for_guild(guild_id)
    return envelope(
        GuildPremiumResponse(
            is_premium=record is not None,
            subscription=EntitlementResponse.model_validate(record) if record else None,
        )
    )


@router.get("/user/premium")
async def get_user_premium(
    user: AuthenticatedUser = Depends(get_current_user),
    context: AppContext = Depends(get_context),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """List the caller's live entitlements across guilds."""
    records = await EntitlementOperations(session, context.payments).get_active_for_user(
        user.discord_id
    )
    return envelope([EntitlementResponse.model_validate(record) for record in records])


@router.post("/checkout-session")
async def create_checkout_session(
    payload: CheckoutRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    """Start a Stripe subscription checkout for a guild.

    The purchaser and guild travel in the session metadata and come back
    on the ``checkout.session.completed`` webhook.
    """
    checkout = await context.payments.create_checkout_session(
        price_id=payload.price_id,
        success_url=payload.success_url,
        cancel_url=payload.cancel_url,
        metadata={"guildId": payload.guild_id, "userId": user.discord_id},
    )
    logger.info(f"Created checkout session {checkout.id} for guild {payload.guild_id}")
    return envelope(CheckoutResponse(session_id=checkout.id, url=checkout.url))


@router.post("/subscription/{subscription_id}/cancel")
async def cancel_subscription(
    subscription_id: str,
    payload: Optional[CancelSubscriptionRequest] = Body(default=None),
    user: AuthenticatedUser = Depends(get_current_user),
    context: AppContext = Depends(get_context),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """Cancel one of the caller's subscriptions at Stripe and locally.

    Raises:
        NotFoundError: If the caller has no record for the subscription
        ValidationError: For administrator overrides, which have no Stripe subscription
    """
    if subscription_id == ADMIN_OVERRIDE:
        raise ValidationError(
            "Administrator overrides can't be canceled here",
            ["Administrator overrides can't be canceled here"],
        )

    entitlements = EntitlementOperations(session, context.payments)
    if await entitlements.get_user_subscription(user.discord_id, subscription_id) is None:
        raise NotFoundError("Subscription not found or access denied")

    await context.payments.cancel_subscription(subscription_id)
    await entitlements.cancel(subscription_id, payload.reason if payload else None)
    return envelope({"message": "Subscription canceled successfully"})


@router.post("/admin/override")
async def override_premium(
    payload: OverrideRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    context: AppContext = Depends(get_context),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """Grant premium to a guild without a Stripe subscription."""
    record = await EntitlementOperations(session, context.payments).override(
        guild_id=payload.guild_id,
        user_id=payload.user_id,
        tier=payload.tier,
        admin_actor_id=admin.discord_id,
    )
    return envelope(EntitlementResponse.model_validate(record))
