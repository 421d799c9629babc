"""Template rendering and delivery.

Turns stored templates into hikari message payloads and sends them through
the chat platform, recording each send in the audit log.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from dataclasses import field
from datetime import UTC
from datetime import datetime
from typing import TYPE_CHECKING
from typing import Any
from uuid import UUID

import hikari
from sqlalchemy.ext.asyncio import AsyncSession

from guildhall.shared.exceptions import NotFoundError
from guildhall.web.crud import AuditLogOperations
from guildhall.web.crud import TemplateOperations
from guildhall.web.models import AuditAction
from guildhall.web.models import MessageTemplate
from guildhall.web.validation import parse_datetime

if TYPE_CHECKING:
    from guildhall.bot.services.platform import ChatPlatform

logger = logging.getLogger(__name__)

ACTION_ROW = 1
BUTTON = 2
STRING_SELECT = 3


@dataclass
class ButtonComponent:
    custom_id: str
    label: str = "Button"
    style: int = int(hikari.ButtonStyle.PRIMARY)
    url: str | None = None


@dataclass
class SelectOption:
    label: str
    value: str
    description: str | None = None


@dataclass
class SelectMenuComponent:
    custom_id: str
    placeholder: str = "Select an option"
    min_values: int = 1
    max_values: int = 1
    options: list[SelectOption] = field(default_factory=list)


@dataclass
class ActionRow:
    components: list[ButtonComponent | SelectMenuComponent] = field(default_factory=list)


@dataclass
class MessagePayload:
    """Platform-ready message built from a template."""

    content: str
    embeds: list[hikari.Embed] = field(default_factory=list)
    components: list[ActionRow] = field(default_factory=list)


def _default_custom_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}"


def render_embed(spec: dict[str, Any]) -> hikari.Embed:
    """Build a hikari embed from a stored embed definition."""
    color = None
    if spec.get("color") is not None:
        try:
            color = hikari.Color.of(spec["color"])
        except (TypeError, ValueError):
            logger.debug(f"Ignoring invalid embed color {spec['color']!r}")

    embed = hikari.Embed(
        title=spec.get("title"),
        description=spec.get("description"),
        color=color,
    )

    for item in spec.get("fields") or []:
        embed.add_field(
            str(item.get("name", "")),
            str(item.get("value", "")),
            inline=bool(item.get("inline", False)),
        )

    thumbnail = spec.get("thumbnail")
    if isinstance(thumbnail, dict):
        thumbnail = thumbnail.get("url")
    if thumbnail:
        embed.set_thumbnail(thumbnail)

    image = spec.get("image")
    if isinstance(image, dict):
        image = image.get("url")
    if image:
        embed.set_image(image)

    footer = spec.get("footer")
    if isinstance(footer, dict) and footer.get("text"):
        embed.set_footer(footer["text"], icon=footer.get("icon_url") or footer.get("iconUrl"))
    elif isinstance(footer, str) and footer:
        embed.set_footer(footer)

    timestamp = spec.get("timestamp")
    if timestamp is True:
        embed.timestamp = datetime.now(UTC)
    elif timestamp:
        embed.timestamp = parse_datetime(timestamp)

    return embed


def render_component(spec: dict[str, Any]) -> ButtonComponent | SelectMenuComponent | None:
    """Build a typed component, or None for unsupported component types."""
    kind = spec.get("type")

    if kind == BUTTON:
        return ButtonComponent(
            custom_id=spec.get("custom_id") or spec.get("customId") or _default_custom_id("btn"),
            label=spec.get("label") or "Button",
            style=int(spec.get("style") or hikari.ButtonStyle.PRIMARY),
            url=spec.get("url"),
        )

    if kind == STRING_SELECT:
        return SelectMenuComponent(
            custom_id=spec.get("custom_id") or spec.get("customId") or _default_custom_id("select"),
            placeholder=spec.get("placeholder") or "Select an option",
            min_values=int(spec.get("min_values", spec.get("minValues", 1))),
            max_values=int(spec.get("max_values", spec.get("maxValues", 1))),
            options=[
                SelectOption(
                    label=str(option.get("label", "")),
                    value=str(option.get("value", "")),
                    description=option.get("description"),
                )
                for option in spec.get("options") or []
            ],
        )

    logger.debug(f"Dropping unsupported component type {kind!r}")
    return None


def render(template: MessageTemplate) -> MessagePayload:
    """Render a template into a message payload.

    Embeds map one-to-one in order. Component rows keep their order and
    drop component types other than buttons and string selects; a row left
    empty is dropped too.
    """
    embeds = [render_embed(spec) for spec in template.embeds or []]

    rows = []
    for row in template.components or []:
        children = row.get("components") if row.get("type", ACTION_ROW) == ACTION_ROW else [row]
        rendered = [
            component
            for component in (render_component(child) for child in children or [])
            if component is not None
        ]
        if not rendered:
            logger.debug("Dropping component row with nothing left to render")
            continue
        rows.append(ActionRow(components=rendered))

    return MessagePayload(content=template.content, embeds=embeds, components=rows)


class DeliveryEngine:
    """Sends templates to guild channels."""

    def __init__(self, session: AsyncSession, platform: ChatPlatform):
        self.session = session
        self.platform = platform
        self.audit = AuditLogOperations(session)
        self.templates = TemplateOperations(session, self.audit)

    def render(self, template: MessageTemplate) -> MessagePayload:
        return render(template)

    async def send(
        self,
        template_id: str | UUID,
        guild_id: str,
        channel_id: str,
        actor_id: str,
        ip_address: str | None = None,
    ) -> dict[str, str]:
        """Render a template and send it to a channel.

        Args:
            template_id: Template to send
            guild_id: Guild that owns the template and channel
            channel_id: Destination channel
            actor_id: Discord user requesting the send
            ip_address: Requesting client address, if any

        Returns:
            dict: ``messageId`` and ``channelId`` of the sent message

        Raises:
            NotFoundError: If the template, guild or channel can't be found
            DeliveryError: If Discord rejects the message
        """
        template = await self.templates.get(template_id, guild_id)

        guild = await self.platform.fetch_guild(guild_id)
        if guild is None:
            raise NotFoundError("Guild not found")

        channel = await self.platform.fetch_channel(channel_id)
        if channel is None or channel.guild_id != guild_id or not channel.is_text:
            raise NotFoundError("Channel not found")

        payload = self.render(template)
        message_id = await self.platform.send_message(channel_id, payload)

        await self.audit.log(
            guild_id=guild_id,
            user_id=actor_id,
            action=AuditAction.MESSAGE_SENT,
            details={
                "templateId": str(template.id),
                "channelId": channel_id,
                "messageId": message_id,
            },
            ip_address=ip_address,
        )
        logger.info(f"Sent template {template.id} to channel {channel_id} in guild {guild_id}")
        return {"messageId": message_id, "channelId": channel_id}
