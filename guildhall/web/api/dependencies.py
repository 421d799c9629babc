"""FastAPI dependencies for the dashboard API.

Provides the request-scoped database session, bearer-token authentication
and the guild access checks shared by the routers.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from guildhall.bot.services.roles import RoleService
from guildhall.shared.context import AppContext
from guildhall.shared.exceptions import AuthenticationError, PermissionDeniedError
from guildhall.web.api.security import AuthenticatedUser, verify_token

logger = logging.getLogger(__name__)

# auto_error is off so a missing header reaches our own 401 envelope
bearer_scheme = HTTPBearer(auto_error=False)


def get_context(request: Request) -> AppContext:
    """The application context attached by ``create_api``."""
    return request.app.state.context


async def get_db_session(
    context: AppContext = Depends(get_context),
) -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session that commits on success and rolls back on error."""
    async with context.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def client_ip(request: Request) -> Optional[str]:
    """Caller address, preferring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    context: AppContext = Depends(get_context),
) -> AuthenticatedUser:
    """Authenticate the dashboard bearer token.

    Raises:
        AuthenticationError: If the Authorization header is missing or malformed (401)
        InvalidTokenError: If the token is invalid or expired (403)
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authorization header missing or invalid")

    user = verify_token(context.settings, credentials.credentials)
    request.state.user = user
    return user


async def require_admin(
    user: AuthenticatedUser = Depends(get_current_user),
    context: AppContext = Depends(get_context),
) -> AuthenticatedUser:
    """Only users listed in ``ADMIN_USER_IDS`` may pass."""
    if user.discord_id not in context.settings.admin_ids:
        logger.warning(f"Rejected admin request from {user.discord_id}")
        raise PermissionDeniedError("Admin access required")
    return user


async def require_guild_view(
    guild_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    context: AppContext = Depends(get_context),
) -> AuthenticatedUser:
    """The caller must be a member of the guild.

    Raises:
        DependencyError: If the bot isn't connected
        PermissionDeniedError: If the caller isn't in the guild
    """
    platform = context.require_platform()
    member = await platform.fetch_member(guild_id, user.discord_id)
    if member is None:
        raise PermissionDeniedError("You do not have access to this guild")
    return user


async def require_guild_manage(
    guild_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    context: AppContext = Depends(get_context),
    session: AsyncSession = Depends(get_db_session),
) -> AuthenticatedUser:
    """The caller must be a guild administrator (permission or configured admin role)."""
    roles = RoleService(session, context.require_platform())
    if not await roles.is_user_admin(guild_id, user.discord_id):
        raise PermissionDeniedError("Administrator permission required for this guild")
    return user
