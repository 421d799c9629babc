"""Chat platform adapter.

Services and API routes reach Discord only through ``ChatPlatform``. The
hikari implementation talks to the REST API via the bot's RESTClient; tests
use an in-memory fake with the same surface.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field
from typing import Protocol

import hikari

from guildhall.bot.services.delivery import ActionRow
from guildhall.bot.services.delivery import ButtonComponent
from guildhall.bot.services.delivery import MessagePayload
from guildhall.bot.services.delivery import SelectMenuComponent
from guildhall.shared.exceptions import DeliveryError

logger = logging.getLogger(__name__)


@dataclass
class GuildInfo:
    id: str
    name: str
    owner_id: str | None = None


@dataclass
class ChannelInfo:
    id: str
    name: str
    guild_id: str | None
    is_text: bool = True
    position: int = 0


@dataclass
class RoleInfo:
    id: str
    name: str
    color: int = 0
    position: int = 0
    managed: bool = False
    permissions: hikari.Permissions = hikari.Permissions.NONE


@dataclass
class MemberInfo:
    """Guild member with permissions already resolved from their roles."""

    id: str
    tag: str
    nickname: str | None = None
    role_ids: list[str] = field(default_factory=list)
    permissions: hikari.Permissions = hikari.Permissions.NONE
    is_bot: bool = False


class ChatPlatform(Protocol):
    """Capabilities the application needs from Discord."""

    @property
    def bot_user_id(self) -> str | None: ...

    def guild_count(self) -> int: ...

    async def fetch_guild(self, guild_id: str) -> GuildInfo | None: ...

    async def fetch_channel(self, channel_id: str) -> ChannelInfo | None: ...

    async def fetch_member(self, guild_id: str, user_id: str) -> MemberInfo | None: ...

    async def list_roles(self, guild_id: str) -> list[RoleInfo]: ...

    async def list_text_channels(self, guild_id: str) -> list[ChannelInfo]: ...

    async def add_roles(
        self, guild_id: str, member_id: str, role_ids: list[str], reason: str | None = None
    ) -> None: ...

    async def remove_role(
        self, guild_id: str, member_id: str, role_id: str, reason: str | None = None
    ) -> None: ...

    async def send_message(self, channel_id: str, payload: MessagePayload) -> str:
        """Send a rendered message and return its ID.

        Raises:
            DeliveryError: If Discord rejects the message
        """
        ...

    async def send_text(self, channel_id: str, content: str) -> str: ...

    async def send_direct_message(self, user_id: str, content: str) -> str: ...


def build_action_rows(rows: list[ActionRow]) -> list[hikari.api.ComponentBuilder]:
    """Convert rendered action rows into hikari component builders."""
    builders = []
    for row in rows:
        builder = hikari.impl.MessageActionRowBuilder()
        for component in row.components:
            if isinstance(component, ButtonComponent):
                if component.url:
                    builder.add_link_button(component.url, label=component.label)
                else:
                    style = component.style
                    if style == hikari.ButtonStyle.LINK:
                        style = hikari.ButtonStyle.PRIMARY
                    builder.add_interactive_button(
                        hikari.ButtonStyle(style),
                        component.custom_id,
                        label=component.label,
                    )
            elif isinstance(component, SelectMenuComponent):
                menu = builder.add_text_menu(
                    component.custom_id,
                    placeholder=component.placeholder,
                    min_values=component.min_values,
                    max_values=component.max_values,
                )
                for option in component.options:
                    menu.add_option(
                        option.label,
                        option.value,
                        description=option.description or hikari.UNDEFINED,
                    )
        builders.append(builder)
    return builders


class HikariPlatform:
    """ChatPlatform backed by a running hikari bot."""

    def __init__(self, bot: hikari.GatewayBot):
        self.bot = bot

    @property
    def bot_user_id(self) -> str | None:
        me = self.bot.get_me()
        return str(me.id) if me else None

    def guild_count(self) -> int:
        return len(self.bot.cache.get_guilds_view())

    async def fetch_guild(self, guild_id: str) -> GuildInfo | None:
        guild = self.bot.cache.get_guild(int(guild_id))
        if guild is None:
            try:
                guild = await self.bot.rest.fetch_guild(int(guild_id))
            except (hikari.NotFoundError, hikari.ForbiddenError):
                return None
        return GuildInfo(id=str(guild.id), name=guild.name, owner_id=str(guild.owner_id))

    async def fetch_channel(self, channel_id: str) -> ChannelInfo | None:
        try:
            channel = await self.bot.rest.fetch_channel(int(channel_id))
        except (hikari.NotFoundError, hikari.ForbiddenError):
            return None
        guild_id = getattr(channel, "guild_id", None)
        return ChannelInfo(
            id=str(channel.id),
            name=channel.name or "",
            guild_id=str(guild_id) if guild_id else None,
            is_text=isinstance(channel, hikari.TextableGuildChannel),
            position=getattr(channel, "position", 0) or 0,
        )

    async def fetch_member(self, guild_id: str, user_id: str) -> MemberInfo | None:
        try:
            member = await self.bot.rest.fetch_member(int(guild_id), int(user_id))
            guild = await self.fetch_guild(guild_id)
            roles = await self.bot.rest.fetch_roles(int(guild_id))
        except (hikari.NotFoundError, hikari.ForbiddenError):
            return None

        if guild and guild.owner_id == str(member.id):
            permissions = hikari.Permissions.all_permissions()
        else:
            member_roles = {int(role_id) for role_id in member.role_ids}
            permissions = hikari.Permissions.NONE
            for role in roles:
                # The @everyone role shares the guild's ID
                if role.id in member_roles or role.id == int(guild_id):
                    permissions |= role.permissions

        return MemberInfo(
            id=str(member.id),
            tag=member.username,
            nickname=member.nickname,
            role_ids=[str(role_id) for role_id in member.role_ids],
            permissions=permissions,
            is_bot=member.is_bot,
        )

    async def list_roles(self, guild_id: str) -> list[RoleInfo]:
        roles = await self.bot.rest.fetch_roles(int(guild_id))
        return [
            RoleInfo(
                id=str(role.id),
                name=role.name,
                color=int(role.color),
                position=role.position,
                managed=role.is_managed,
                permissions=role.permissions,
            )
            for role in roles
        ]

    async def list_text_channels(self, guild_id: str) -> list[ChannelInfo]:
        channels = await self.bot.rest.fetch_guild_channels(int(guild_id))
        return [
            ChannelInfo(
                id=str(channel.id),
                name=channel.name or "",
                guild_id=guild_id,
                is_text=True,
                position=channel.position,
            )
            for channel in channels
            if isinstance(channel, hikari.GuildTextChannel)
        ]

    async def add_roles(
        self, guild_id: str, member_id: str, role_ids: list[str], reason: str | None = None
    ) -> None:
        for role_id in role_ids:
            await self.bot.rest.add_role_to_member(
                int(guild_id), int(member_id), int(role_id), reason=reason or hikari.UNDEFINED
            )

    async def remove_role(
        self, guild_id: str, member_id: str, role_id: str, reason: str | None = None
    ) -> None:
        await self.bot.rest.remove_role_from_member(
            int(guild_id), int(member_id), int(role_id), reason=reason or hikari.UNDEFINED
        )

    async def send_message(self, channel_id: str, payload: MessagePayload) -> str:
        try:
            message = await self.bot.rest.create_message(
                int(channel_id),
                content=payload.content or hikari.UNDEFINED,
                embeds=payload.embeds or hikari.UNDEFINED,
                components=build_action_rows(payload.components) or hikari.UNDEFINED,
            )
        except hikari.HTTPResponseError as e:
            raise DeliveryError(f"Failed to send message to channel {channel_id}: {e.message}") from e
        return str(message.id)

    async def send_text(self, channel_id: str, content: str) -> str:
        try:
            message = await self.bot.rest.create_message(int(channel_id), content=content)
        except hikari.HTTPResponseError as e:
            raise DeliveryError(f"Failed to send message to channel {channel_id}: {e.message}") from e
        return str(message.id)

    async def send_direct_message(self, user_id: str, content: str) -> str:
        try:
            channel = await self.bot.rest.create_dm_channel(int(user_id))
            message = await channel.send(content)
        except hikari.HTTPResponseError as e:
            raise DeliveryError(f"Failed to DM user {user_id}: {e.message}") from e
        return str(message.id)
