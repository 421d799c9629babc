"""Message template API router.

Template CRUD plus immediate sends and scheduling. Multi-embed templates,
interactive components and scheduling are premium features.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from guildhall.bot.services.delivery import DeliveryEngine
from guildhall.shared.context import AppContext
from guildhall.shared.exceptions import PremiumRequiredError, ValidationError
from guildhall.web.api.dependencies import (
    client_ip,
    get_context,
    get_db_session,
    require_guild_manage,
    require_guild_view,
)
from guildhall.web.api.schemas import (
    ScheduleTemplateRequest,
    SendResult,
    SendTemplateRequest,
    TemplateCreate,
    TemplateResponse,
    TemplateUpdate,
    envelope,
)
from guildhall.web.api.security import AuthenticatedUser
from guildhall.web.crud import EntitlementOperations, TemplateOperations
from guildhall.web.validation import requires_premium

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/guild/{guild_id}/templates", tags=["Message Templates"])


async def ensure_premium(
    context: AppContext, session: AsyncSession, guild_id: str, message: str
) -> None:
    """Raise PremiumRequiredError unless the guild has a live entitlement."""
    if not await EntitlementOperations(session, context.payments).is_guild_active(guild_id):
        logger.info(f"Premium feature refused for guild {guild_id}: {message}")
        raise PremiumRequiredError(message)


@router.get("")
async def list_templates(
    guild_id: str,
    user: AuthenticatedUser = Depends(require_guild_view),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    templates = await TemplateOperations(session).list(guild_id)
    return envelope([TemplateResponse.model_validate(template) for template in templates])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_template(
    guild_id: str,
    payload: TemplateCreate,
    request: Request,
    user: AuthenticatedUser = Depends(require_guild_manage),
    context: AppContext = Depends(get_context),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """Create a template for the guild.

    Raises:
        PremiumRequiredError: If the template uses premium features on a free guild
        ValidationError: With every violation if the template is invalid
    """
    data = payload.to_store()
    if requires_premium(data):
        await ensure_premium(context, session, guild_id, "Premium required for advanced template features")

    data["guild_id"] = guild_id
    data["created_by"] = user.discord_id
    template = await TemplateOperations(session).create(
        data, actor_id=user.discord_id, ip_address=client_ip(request)
    )
    return envelope(TemplateResponse.model_validate(template))


@router.get("/{template_id}")
async def get_template(
    guild_id: str,
    template_id: str,
    user: AuthenticatedUser = Depends(require_guild_view),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    template = await TemplateOperations(session).get(template_id, guild_id)
    return envelope(TemplateResponse.model_validate(template))


@router.put("/{template_id}")
async def update_template(
    guild_id: str,
    template_id: str,
    payload: TemplateUpdate,
    request: Request,
    user: AuthenticatedUser = Depends(require_guild_manage),
    context: AppContext = Depends(get_context),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """Update a template.

    The premium check runs against the template as it would look after the
    update, so a free guild can't add a second embed through an edit.
    """
    templates = TemplateOperations(session)
    updates = payload.to_store(exclude_unset=True)

    current = await templates.get(template_id, guild_id)
    merged = {
        "embeds": updates.get("embeds", current.embeds),
        "components": updates.get("components", current.components),
    }
    if requires_premium(merged):
        await ensure_premium(context, session, guild_id, "Premium required for advanced template features")

    template = await templates.update(
        template_id, guild_id, updates, actor_id=user.discord_id, ip_address=client_ip(request)
    )
    return envelope(TemplateResponse.model_validate(template))


@router.delete("/{template_id}")
async def delete_template(
    guild_id: str,
    template_id: str,
    request: Request,
    user: AuthenticatedUser = Depends(require_guild_manage),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    await TemplateOperations(session).soft_delete(
        template_id, guild_id, actor_id=user.discord_id, ip_address=client_ip(request)
    )
    return envelope({"message": "Template deleted successfully"})


@router.post("/{template_id}/send")
async def send_template(
    guild_id: str,
    template_id: str,
    payload: SendTemplateRequest,
    request: Request,
    user: AuthenticatedUser = Depends(require_guild_manage),
    context: AppContext = Depends(get_context),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """Send a template to one of the guild's text channels right away."""
    engine = DeliveryEngine(session, context.require_platform())
    result = await engine.send(
        template_id,
        guild_id,
        payload.channel_id,
        actor_id=user.discord_id,
        ip_address=client_ip(request),
    )
    return envelope(SendResult(message_id=result["messageId"], channel_id=result["channelId"]))


@router.post("/{template_id}/schedule")
async def schedule_template(
    guild_id: str,
    template_id: str,
    payload: ScheduleTemplateRequest,
    request: Request,
    user: AuthenticatedUser = Depends(require_guild_manage),
    context: AppContext = Depends(get_context),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """Record when a template should go out. Premium only."""
    if not payload.scheduled_for:
        raise ValidationError("scheduledFor is required", ["scheduledFor is required"])

    await ensure_premium(context, session, guild_id, "Premium required for scheduled messages")
    template = await TemplateOperations(session).schedule(
        template_id,
        payload.scheduled_for,
        guild_id,
        actor_id=user.discord_id,
        ip_address=client_ip(request),
    )
    return envelope(TemplateResponse.model_validate(template))
