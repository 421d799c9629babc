"""Authentication API router.

The dashboard exchanges a completed Discord OAuth login for a short-lived
token here and uses it as a bearer credential everywhere else.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from guildhall.bot.events import invite_link
from guildhall.shared.context import AppContext
from guildhall.web.api.dependencies import get_context, get_current_user
from guildhall.web.api.schemas import BotInfoResponse, TokenRequest, TokenResponse, envelope
from guildhall.web.api.security import AuthenticatedUser, issue_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/generate-token")
async def generate_token(
    payload: TokenRequest,
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    """Issue a dashboard token.

    Args:
        payload: Dashboard user ID and Discord user ID

    Returns:
        Envelope with the signed token
    """
    token = issue_token(context.settings, payload.user_id, payload.discord_id)
    logger.info(f"JWT generated for user {payload.user_id} (Discord: {payload.discord_id})")
    return envelope(TokenResponse(token=token))


@router.post("/verify-token")
async def verify_token(
    user: AuthenticatedUser = Depends(get_current_user),
) -> Dict[str, Any]:
    return envelope({"valid": True, "user": user.to_dict()})


@router.get("/bot-info")
async def bot_info(
    user: AuthenticatedUser = Depends(get_current_user),
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    """Report whether the bot is connected and how to invite it."""
    platform = context.platform
    return envelope(
        BotInfoResponse(
            id=platform.bot_user_id if platform else None,
            connected=platform is not None,
            guild_count=platform.guild_count() if platform else None,
            invite_url=invite_link(context.settings),
        )
    )
