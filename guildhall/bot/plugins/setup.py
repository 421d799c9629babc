"""Server setup commands: onboarding wizard, config summary, dashboard link."""

from __future__ import annotations

import logging

import hikari
import lightbulb

from guildhall.bot.utils import ERROR_MESSAGE
from guildhall.bot.utils import GUILD_ONLY_MESSAGE
from guildhall.bot.utils import defer_ephemeral
from guildhall.bot.utils import get_context
from guildhall.bot.utils import make_embed
from guildhall.web.crud import GuildConfigOperations

plugin = lightbulb.Plugin("setup")

logger = logging.getLogger(__name__)


@plugin.command
@lightbulb.app_command_permissions(hikari.Permissions.ADMINISTRATOR, dm_enabled=False)
@lightbulb.command("setup", "Setup the bot for your server")
@lightbulb.implements(lightbulb.SlashCommandGroup)
async def setup_group(ctx: lightbulb.Context) -> None:
    """Setup command group."""
    pass


@setup_group.child
@lightbulb.command("wizard", "Start interactive setup wizard")
@lightbulb.implements(lightbulb.SlashSubCommand)
async def wizard_command(ctx: lightbulb.SlashContext) -> None:
    """DM the invoking user the setup steps and their dashboard link."""
    await defer_ephemeral(ctx)

    guild = ctx.get_guild()
    if ctx.guild_id is None:
        await ctx.edit_last_response(GUILD_ONLY_MESSAGE)
        return

    context = get_context(ctx)
    guild_name = guild.name if guild else str(ctx.guild_id)

    embed = make_embed(
        f"Setup Wizard: {guild_name}",
        "I will guide you through setting up the bot for your server.",
    )
    embed.add_field("Step 1", "Configure auto-assign roles", inline=True)
    embed.add_field("Step 2", "Set welcome channel & message", inline=True)
    embed.add_field("Step 3", "Configure audit logging", inline=True)

    try:
        dm_channel = await ctx.author.fetch_dm_channel()
        await dm_channel.send(embed=embed)
        await dm_channel.send(
            f"Complete your setup on the dashboard: {context.settings.dashboard_link(str(ctx.guild_id))}"
        )
        await ctx.edit_last_response("✅ I've sent you a DM with setup instructions!")
    except hikari.HTTPResponseError as e:
        logger.warning(f"Setup wizard DM to {ctx.author.id} failed: {e}")
        await ctx.edit_last_response("❌ Could not send DM. Please enable DMs and try again.")


@setup_group.child
@lightbulb.command("config", "View current configuration")
@lightbulb.implements(lightbulb.SlashSubCommand)
async def config_command(ctx: lightbulb.SlashContext) -> None:
    """Show the guild's stored configuration."""
    try:
        await defer_ephemeral(ctx)

        if ctx.guild_id is None:
            await ctx.edit_last_response(GUILD_ONLY_MESSAGE)
            return

        guild_id = str(ctx.guild_id)
        context = get_context(ctx)
        async with context.session() as session:
            config = await GuildConfigOperations(session).get_or_create(guild_id)

        guild = ctx.get_guild()
        embed = make_embed(f"Configuration: {guild.name if guild else guild_id}")
        embed.add_field("Server ID", guild_id, inline=True)
        if guild and guild.member_count is not None:
            embed.add_field("Member Count", str(guild.member_count), inline=True)
        embed.add_field(
            "Auto Roles",
            " ".join(f"<@&{role_id}>" for role_id in config.auto_assign_roles) or "None",
            inline=False,
        )
        embed.add_field(
            "Welcome Channel",
            f"<#{config.welcome_channel_id}>" if config.welcome_channel_id else "Not set",
            inline=True,
        )
        embed.add_field(
            "Audit Channel",
            f"<#{config.audit_channel_id}>" if config.audit_channel_id else "Not set",
            inline=True,
        )
        embed.set_footer("Change these settings on the dashboard.")

        await ctx.edit_last_response(embed=embed)

    except Exception as e:
        logger.error(f"Error in setup config command: {e}")
        await ctx.edit_last_response(ERROR_MESSAGE)


@setup_group.child
@lightbulb.command("dashboard", "Get dashboard link for your server")
@lightbulb.implements(lightbulb.SlashSubCommand)
async def dashboard_command(ctx: lightbulb.SlashContext) -> None:
    await defer_ephemeral(ctx)

    if ctx.guild_id is None:
        await ctx.edit_last_response(GUILD_ONLY_MESSAGE)
        return

    link = get_context(ctx).settings.dashboard_link(str(ctx.guild_id))
    embed = make_embed(
        "Dashboard Access",
        f"Manage your server configuration on the dashboard:\n\n{link}",
    )
    embed.set_footer("You must be logged in with your Discord account to access the dashboard.")
    await ctx.edit_last_response(embed=embed)


def load(bot: lightbulb.BotApp) -> None:
    """Load the setup plugin."""
    bot.add_plugin(plugin)


def unload(bot: lightbulb.BotApp) -> None:
    """Unload the setup plugin."""
    bot.remove_plugin(plugin)
