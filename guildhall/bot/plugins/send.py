"""Ad-hoc message sending commands."""

from __future__ import annotations

import logging

import hikari
import lightbulb

from guildhall.bot.services.delivery import MessagePayload
from guildhall.bot.utils import BLURPLE
from guildhall.bot.utils import ERROR_MESSAGE
from guildhall.bot.utils import GREEN
from guildhall.bot.utils import GUILD_ONLY_MESSAGE
from guildhall.bot.utils import defer_ephemeral
from guildhall.bot.utils import get_context
from guildhall.bot.utils import make_embed
from guildhall.bot.utils import parse_hex_color
from guildhall.bot.utils import truncate
from guildhall.shared.exceptions import DeliveryError
from guildhall.web.crud import AuditLogOperations
from guildhall.web.models import AuditAction

plugin = lightbulb.Plugin("send")

logger = logging.getLogger(__name__)

SEND_FAILED_MESSAGE = "Failed to send {kind}. Make sure I have permission to send messages in that channel."

TEXT_CHANNEL_TYPES = [hikari.ChannelType.GUILD_TEXT, hikari.ChannelType.GUILD_NEWS]


async def _record_send(ctx: lightbulb.SlashContext, channel_id: str, message_id: str) -> None:
    async with get_context(ctx).session() as session:
        await AuditLogOperations(session).log(
            guild_id=str(ctx.guild_id),
            user_id=str(ctx.author.id),
            action=AuditAction.MESSAGE_SENT,
            details={"channelId": channel_id, "messageId": message_id},
        )


@plugin.command
@lightbulb.app_command_permissions(hikari.Permissions.ADMINISTRATOR, dm_enabled=False)
@lightbulb.command("send", "Send messages and templates")
@lightbulb.implements(lightbulb.SlashCommandGroup)
async def send_group(ctx: lightbulb.Context) -> None:
    """Send command group."""
    pass


@send_group.child
@lightbulb.option("content", "Message content")
@lightbulb.option(
    "channel", "Channel to send to", type=hikari.TextableGuildChannel, channel_types=TEXT_CHANNEL_TYPES
)
@lightbulb.command("message", "Send a custom message")
@lightbulb.implements(lightbulb.SlashSubCommand)
async def message_command(ctx: lightbulb.SlashContext) -> None:
    try:
        await defer_ephemeral(ctx)

        if ctx.guild_id is None:
            await ctx.edit_last_response(GUILD_ONLY_MESSAGE)
            return

        channel_id = str(ctx.options.channel.id)
        content: str = ctx.options.content
        platform = get_context(ctx).require_platform()

        try:
            message_id = await platform.send_text(channel_id, content)
        except DeliveryError as e:
            logger.error(f"Failed to send message: {e}")
            await ctx.edit_last_response(SEND_FAILED_MESSAGE.format(kind="message"))
            return

        await _record_send(ctx, channel_id, message_id)

        embed = make_embed("Message Sent", f"✅ Message sent to <#{channel_id}>.", GREEN)
        embed.add_field("Content", truncate(content))
        await ctx.edit_last_response(embed=embed)

    except Exception as e:
        logger.error(f"Error in send message command: {e}")
        await ctx.edit_last_response(ERROR_MESSAGE)


@send_group.child
@lightbulb.option("color", "Embed color (hex code)", required=False)
@lightbulb.option("description", "Embed description")
@lightbulb.option("title", "Embed title")
@lightbulb.option(
    "channel", "Channel to send to", type=hikari.TextableGuildChannel, channel_types=TEXT_CHANNEL_TYPES
)
@lightbulb.command("embed", "Send an embed message")
@lightbulb.implements(lightbulb.SlashSubCommand)
async def embed_command(ctx: lightbulb.SlashContext) -> None:
    """Send a single embed built from the command options."""
    try:
        await defer_ephemeral(ctx)

        if ctx.guild_id is None:
            await ctx.edit_last_response(GUILD_ONLY_MESSAGE)
            return

        channel_id = str(ctx.options.channel.id)
        title: str = ctx.options.title
        color = parse_hex_color(ctx.options.color, BLURPLE)
        platform = get_context(ctx).require_platform()

        payload = MessagePayload(
            content="",
            embeds=[make_embed(title, ctx.options.description, color)],
        )
        try:
            message_id = await platform.send_message(channel_id, payload)
        except DeliveryError as e:
            logger.error(f"Failed to send embed: {e}")
            await ctx.edit_last_response(SEND_FAILED_MESSAGE.format(kind="embed"))
            return

        await _record_send(ctx, channel_id, message_id)

        embed = make_embed("Embed Sent", f"✅ Embed sent to <#{channel_id}>.", GREEN)
        embed.add_field("Title", title, inline=True)
        embed.add_field("Color", f"#{color:06X}", inline=True)
        await ctx.edit_last_response(embed=embed)

    except Exception as e:
        logger.error(f"Error in send embed command: {e}")
        await ctx.edit_last_response(ERROR_MESSAGE)


def load(bot: lightbulb.BotApp) -> None:
    """Load the send plugin."""
    bot.add_plugin(plugin)


def unload(bot: lightbulb.BotApp) -> None:
    """Unload the send plugin."""
    bot.remove_plugin(plugin)
