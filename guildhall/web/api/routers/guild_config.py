"""Guild configuration API router.

Configuration reads and writes, member permission checks, the role and
channel pickers used by the dashboard, and the guild's audit trail.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from guildhall.bot.services.roles import RoleService
from guildhall.shared.context import AppContext
from guildhall.shared.exceptions import NotFoundError
from guildhall.web.api.dependencies import (
    client_ip,
    get_context,
    get_db_session,
    require_guild_manage,
    require_guild_view,
)
from guildhall.web.api.schemas import (
    AuditLogResponse,
    ChannelResponse,
    GuildConfigResponse,
    GuildConfigUpdate,
    RoleResponse,
    UserPermissionsResponse,
    envelope,
)
from guildhall.web.api.security import AuthenticatedUser
from guildhall.web.crud import AuditLogOperations, GuildConfigOperations

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/guild/{guild_id}", tags=["Guild Configuration"])


@router.get("/config")
async def get_guild_config(
    guild_id: str,
    user: AuthenticatedUser = Depends(require_guild_view),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    config = await GuildConfigOperations(session).get_or_create(guild_id)
    return envelope(GuildConfigResponse.model_validate(config))


@router.put("/config")
async def update_guild_config(
    guild_id: str,
    payload: GuildConfigUpdate,
    request: Request,
    user: AuthenticatedUser = Depends(require_guild_manage),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """Update a guild's configuration.

    Only fields present in the body are changed.
    """
    config = await GuildConfigOperations(session).update(
        guild_id,
        payload.model_dump(exclude_unset=True),
        actor_id=user.discord_id,
        ip_address=client_ip(request),
    )
    return envelope(GuildConfigResponse.model_validate(config))


@router.get("/user/{user_id}/permissions")
async def get_user_permissions(
    guild_id: str,
    user_id: str,
    user: AuthenticatedUser = Depends(require_guild_view),
    context: AppContext = Depends(get_context),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    roles = RoleService(session, context.require_platform())
    return envelope(
        UserPermissionsResponse(
            is_admin=await roles.is_user_admin(guild_id, user_id),
            is_moderator=await roles.is_user_moderator(guild_id, user_id),
        )
    )


@router.get("/roles")
async def list_guild_roles(
    guild_id: str,
    user: AuthenticatedUser = Depends(require_guild_view),
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    """Assignable roles, highest first.

    Managed (integration) roles and @everyone are left out.
    """
    platform = context.require_platform()
    if await platform.fetch_guild(guild_id) is None:
        raise NotFoundError("Guild not found")

    roles = [
        role for role in await platform.list_roles(guild_id)
        if not role.managed and role.id != guild_id
    ]
    roles.sort(key=lambda role: role.position, reverse=True)
    return envelope([RoleResponse.model_validate(role) for role in roles])


@router.get("/channels")
async def list_guild_channels(
    guild_id: str,
    user: AuthenticatedUser = Depends(require_guild_view),
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    """Text channels, sorted by name."""
    platform = context.require_platform()
    if await platform.fetch_guild(guild_id) is None:
        raise NotFoundError("Guild not found")

    channels = sorted(await platform.list_text_channels(guild_id), key=lambda channel: channel.name)
    return envelope([ChannelResponse.model_validate(channel) for channel in channels])


@router.get("/audit-logs")
async def get_audit_logs(
    guild_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    skip: int = Query(default=0, ge=0),
    action: Optional[str] = Query(default=None),
    actor_id: Optional[str] = Query(default=None, alias="userId"),
    search: Optional[str] = Query(default=None),
    user: AuthenticatedUser = Depends(require_guild_manage),
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    """Guild audit trail, newest first.

    ``search`` matches action tags and template/channel IDs and ignores the
    other filters.
    """
    audit = AuditLogOperations(session)
    if search:
        entries = await audit.search_logs(guild_id, search, limit=limit)
    else:
        entries = await audit.get_logs(
            guild_id, limit=limit, skip=skip, action=action, user_id=actor_id
        )
    return envelope([AuditLogResponse.model_validate(entry) for entry in entries])
