"""Premium status and feature overview commands."""

from __future__ import annotations

import logging

import hikari
import lightbulb

from guildhall.bot.utils import ERROR_MESSAGE
from guildhall.bot.utils import GREEN
from guildhall.bot.utils import GUILD_ONLY_MESSAGE
from guildhall.bot.utils import defer_ephemeral
from guildhall.bot.utils import get_context
from guildhall.bot.utils import make_embed
from guildhall.web.crud import EntitlementOperations

plugin = lightbulb.Plugin("premium")

logger = logging.getLogger(__name__)

PREMIUM_FEATURES = (
    ("🎨 Advanced Templates", "Create templates with multiple embeds, buttons, and select menus"),
    ("⏰ Scheduled Messages", "Schedule messages to be sent at specific times"),
    ("🤖 Advanced Automation", "Set up complex role and message automation"),
    ("📊 Advanced Analytics", "Detailed message and member analytics"),
    ("🔐 Priority Support", "Get help faster with priority support"),
    ("⚡ Unlimited Templates", "No limits on number of templates"),
)


@plugin.command
@lightbulb.app_command_permissions(hikari.Permissions.ADMINISTRATOR, dm_enabled=False)
@lightbulb.command("premium", "Manage premium features")
@lightbulb.implements(lightbulb.SlashCommandGroup)
async def premium_group(ctx: lightbulb.Context) -> None:
    """Premium command group."""
    pass


@premium_group.child
@lightbulb.command("status", "Check premium status for this server")
@lightbulb.implements(lightbulb.SlashSubCommand)
async def status_command(ctx: lightbulb.SlashContext) -> None:
    """Show whether the guild currently has premium."""
    try:
        await defer_ephemeral(ctx)

        if ctx.guild_id is None:
            await ctx.edit_last_response(GUILD_ONLY_MESSAGE)
            return

        guild_id = str(ctx.guild_id)
        context = get_context(ctx)
        async with context.session() as session:
            record = await EntitlementOperations(session, context.payments).get_active_for_guild(guild_id)

        guild = ctx.get_guild()
        embed = make_embed(f"Premium Status: {guild.name if guild else guild_id}")
        if record is None:
            embed.description = "This server does not have premium."
        else:
            embed.description = "✅ Premium is active."
            embed.add_field("Tier", record.tier.title(), inline=True)
            embed.add_field("Renews / Expires", f"<t:{int(record.current_period_end.timestamp())}:D>", inline=True)
        embed.add_field("Dashboard", context.settings.dashboard_link(guild_id), inline=False)

        await ctx.edit_last_response(embed=embed)

    except Exception as e:
        logger.error(f"Error in premium status command: {e}")
        await ctx.edit_last_response(ERROR_MESSAGE)


@premium_group.child
@lightbulb.command("features", "View premium features")
@lightbulb.implements(lightbulb.SlashSubCommand)
async def features_command(ctx: lightbulb.SlashContext) -> None:
    await defer_ephemeral(ctx)

    embed = make_embed("Premium Features", "Upgrade to unlock these exclusive features:", GREEN)
    for name, value in PREMIUM_FEATURES:
        embed.add_field(name, value, inline=True)
    embed.set_footer("Visit the dashboard to upgrade and unlock all features!")

    await ctx.edit_last_response(embed=embed)


def load(bot: lightbulb.BotApp) -> None:
    """Load the premium plugin."""
    bot.add_plugin(plugin)


def unload(bot: lightbulb.BotApp) -> None:
    """Unload the premium plugin."""
    bot.remove_plugin(plugin)
