"""Role automation and permission checks for guild members."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import hikari
from sqlalchemy.ext.asyncio import AsyncSession

from guildhall.web.crud import AuditLogOperations
from guildhall.web.crud import GuildConfigOperations
from guildhall.web.models import AuditAction

if TYPE_CHECKING:
    from guildhall.bot.services.platform import ChatPlatform

logger = logging.getLogger(__name__)

MODERATOR_PERMISSIONS = (
    hikari.Permissions.MANAGE_MESSAGES,
    hikari.Permissions.KICK_MEMBERS,
    hikari.Permissions.BAN_MEMBERS,
    hikari.Permissions.MUTE_MEMBERS,
    hikari.Permissions.DEAFEN_MEMBERS,
    hikari.Permissions.MOVE_MEMBERS,
)


class RoleService:
    """Auto-role assignment and admin/moderator resolution."""

    def __init__(self, session: AsyncSession, platform: ChatPlatform):
        self.session = session
        self.platform = platform
        self.audit = AuditLogOperations(session)
        self.configs = GuildConfigOperations(session, self.audit)

    async def assign_auto_roles(self, guild_id: str, member_id: str) -> list[str]:
        """Give a member the guild's configured auto-assign roles.

        Roles that no longer exist, or that the member already has, are
        skipped. Platform failures are logged rather than raised so a
        missing permission never breaks the join flow.

        Returns:
            list[str]: Role IDs that were added
        """
        config = await self.configs.get_or_create(guild_id)
        if not config.auto_assign_roles:
            return []

        try:
            member = await self.platform.fetch_member(guild_id, member_id)
            if member is None:
                logger.warning(f"Member {member_id} not found in guild {guild_id}, skipping auto roles")
                return []

            existing = {role.id for role in await self.platform.list_roles(guild_id)}
            to_add = [
                role_id
                for role_id in config.auto_assign_roles
                if role_id in existing and role_id not in member.role_ids
            ]
            if not to_add:
                return []

            await self.platform.add_roles(guild_id, member_id, to_add, reason="Auto-assign on join")
        except Exception as e:
            logger.error(f"Failed to assign auto roles to {member_id} in guild {guild_id}: {e}")
            return []

        await self.audit.log(
            guild_id=guild_id,
            user_id=self.platform.bot_user_id or "system",
            action=AuditAction.ROLE_ADDED,
            details={"memberId": member_id, "roles": to_add, "reason": "auto-assign"},
        )
        logger.info(f"Assigned {len(to_add)} auto roles to {member_id} in guild {guild_id}")
        return to_add

    async def bot_top_role_position(self, guild_id: str) -> int:
        """Position of the bot's highest role; roles at or above it can't be assigned."""
        bot_id = self.platform.bot_user_id
        member = await self.platform.fetch_member(guild_id, bot_id) if bot_id else None
        if member is None:
            return 0
        positions = {role.id: role.position for role in await self.platform.list_roles(guild_id)}
        return max((positions.get(role_id, 0) for role_id in member.role_ids), default=0)

    async def is_user_admin(self, guild_id: str, user_id: str) -> bool:
        member = await self.platform.fetch_member(guild_id, user_id)
        if member is None:
            return False
        if member.permissions & hikari.Permissions.ADMINISTRATOR:
            return True

        config = await self.configs.get_or_create(guild_id)
        return any(role_id in config.admin_roles for role_id in member.role_ids)

    async def is_user_moderator(self, guild_id: str, user_id: str) -> bool:
        if await self.is_user_admin(guild_id, user_id):
            return True

        member = await self.platform.fetch_member(guild_id, user_id)
        if member is None:
            return False
        if any(member.permissions & permission for permission in MODERATOR_PERMISSIONS):
            return True

        config = await self.configs.get_or_create(guild_id)
        return any(role_id in config.moderator_roles for role_id in member.role_ids)
