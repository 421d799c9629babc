"""Gateway event handlers.

Listeners in ``client.py`` unpack hikari events and call these functions,
which only depend on the application context and plain IDs.
"""

from __future__ import annotations

import logging

from guildhall.bot.services.roles import RoleService
from guildhall.shared.context import AppContext
from guildhall.shared.config import Settings
from guildhall.web.crud import AuditLogOperations
from guildhall.web.models import AuditAction

logger = logging.getLogger(__name__)


def format_welcome_message(message: str, user_id: str, server_name: str) -> str:
    """Fill the ``{user}`` and ``{server}`` placeholders of a welcome message."""
    return message.replace("{user}", f"<@{user_id}>").replace("{server}", server_name)


def invite_link(settings: Settings) -> str:
    client_id = settings.discord_application_id or "YOUR_CLIENT_ID"
    return (
        "https://discord.com/api/oauth2/authorize"
        f"?client_id={client_id}&permissions=8&scope=bot%20applications.commands"
    )


def dm_help_text(settings: Settings) -> str:
    return (
        "Hello! To set up the bot for your server:\n\n"
        "1. Use `/setup wizard` in your server to start the setup process\n"
        f"2. Visit the dashboard: {settings.dashboard_link()}\n"
        "3. Select your server and configure settings\n\n"
        "Need help? Join our support server or contact support through the dashboard."
    )


def presence_text(guild_count: int, settings: Settings) -> str:
    return f"{guild_count} servers | {settings.dashboard_host}"


async def handle_member_join(context: AppContext, guild_id: str, member_id: str) -> None:
    """Assign auto roles and post the welcome message for a new member."""
    platform = context.require_platform()

    async with context.session() as session:
        service = RoleService(session, platform)
        await service.assign_auto_roles(guild_id, member_id)
        config = await service.configs.get_or_create(guild_id)
        welcome_channel_id = config.welcome_channel_id
        welcome_message = config.welcome_message

    if not welcome_channel_id or not welcome_message:
        return

    guild = await platform.fetch_guild(guild_id)
    if guild is None:
        logger.warning(f"Guild {guild_id} not found, skipping welcome message")
        return

    try:
        await platform.send_text(
            welcome_channel_id,
            format_welcome_message(welcome_message, member_id, guild.name),
        )
    except Exception as e:
        logger.error(f"Failed to send welcome message in guild {guild_id}: {e}")


async def handle_member_update(
    context: AppContext,
    guild_id: str,
    member_id: str,
    member_tag: str,
    old_role_ids: list[str] | None,
    new_role_ids: list[str],
    old_nickname: str | None,
    new_nickname: str | None,
    role_names: dict[str, str] | None = None,
) -> list[AuditAction]:
    """Audit role and nickname changes on a member.

    ``old_role_ids`` is None when the previous member state wasn't cached;
    in that case nothing can be compared and no entries are written.

    Returns:
        list[AuditAction]: Actions that were recorded
    """
    if old_role_ids is None:
        return []

    role_names = role_names or {}
    actor_id = context.require_platform().bot_user_id or "system"
    added = [role_id for role_id in new_role_ids if role_id not in old_role_ids]
    removed = [role_id for role_id in old_role_ids if role_id not in new_role_ids]

    recorded = []
    async with context.session() as session:
        audit = AuditLogOperations(session)

        for action, roles in ((AuditAction.ROLE_ADDED, added), (AuditAction.ROLE_REMOVED, removed)):
            if not roles:
                continue
            await audit.log(
                guild_id=guild_id,
                user_id=actor_id,
                action=action,
                details={
                    "memberId": member_id,
                    "memberTag": member_tag,
                    "roles": roles,
                    "roleNames": [role_names.get(role_id, role_id) for role_id in roles],
                },
            )
            recorded.append(action)

        if old_nickname != new_nickname:
            await audit.log(
                guild_id=guild_id,
                user_id=actor_id,
                action=AuditAction.NICKNAME_CHANGED,
                details={
                    "memberId": member_id,
                    "memberTag": member_tag,
                    "oldNickname": old_nickname,
                    "newNickname": new_nickname,
                },
            )
            recorded.append(AuditAction.NICKNAME_CHANGED)

    return recorded


def handle_dm_message(settings: Settings, content: str) -> str | None:
    """Reply text for a direct message, or None when no reply is due."""
    lowered = content.lower()
    if "setup" in lowered or "help" in lowered:
        return dm_help_text(settings)
    return None


def handle_legacy_command(settings: Settings, content: str, latency_ms: float) -> str | None:
    """Reply text for the ``!ping`` and ``!invite`` text commands."""
    if content == "!ping":
        return f"🏓 Pong!\n• API Latency: {round(latency_ms)}ms"
    if content == "!invite":
        return f"🔗 Invite link: {invite_link(settings)}"
    return None

