"""Utility commands: latency check and invite link."""

from __future__ import annotations

import math

import lightbulb

from guildhall.bot.events import invite_link
from guildhall.bot.utils import defer_ephemeral
from guildhall.bot.utils import get_context

plugin = lightbulb.Plugin("utility")


@plugin.command
@lightbulb.command("ping", "Check bot latency")
@lightbulb.implements(lightbulb.SlashCommand)
async def ping_command(ctx: lightbulb.SlashContext) -> None:
    await defer_ephemeral(ctx)
    latency = ctx.bot.heartbeat_latency
    latency_ms = 0 if math.isnan(latency) else round(latency * 1000)
    await ctx.edit_last_response(f"🏓 Pong!\n• API Latency: {latency_ms}ms")


@plugin.command
@lightbulb.command("invite", "Get bot invite link")
@lightbulb.implements(lightbulb.SlashCommand)
async def invite_command(ctx: lightbulb.SlashContext) -> None:
    await defer_ephemeral(ctx)
    link = invite_link(get_context(ctx).settings)
    await ctx.edit_last_response(
        f"🔗 **Invite Link:** {link}\n\nCopy this link to invite the bot to other servers!"
    )


def load(bot: lightbulb.BotApp) -> None:
    """Load the utility plugin."""
    bot.add_plugin(plugin)


def unload(bot: lightbulb.BotApp) -> None:
    """Unload the utility plugin."""
    bot.remove_plugin(plugin)
