"""Auto-assign role management commands."""

from __future__ import annotations

import logging

import hikari
import lightbulb

from guildhall.bot.services.roles import RoleService
from guildhall.bot.utils import ERROR_MESSAGE
from guildhall.bot.utils import GREEN
from guildhall.bot.utils import GUILD_ONLY_MESSAGE
from guildhall.bot.utils import RED
from guildhall.bot.utils import defer_ephemeral
from guildhall.bot.utils import get_context
from guildhall.bot.utils import make_embed

plugin = lightbulb.Plugin("roles")

logger = logging.getLogger(__name__)


@plugin.command
@lightbulb.app_command_permissions(hikari.Permissions.ADMINISTRATOR, dm_enabled=False)
@lightbulb.command("roles", "Manage auto-assign roles")
@lightbulb.implements(lightbulb.SlashCommandGroup)
async def roles_group(ctx: lightbulb.Context) -> None:
    """Roles command group."""
    pass


@roles_group.child
@lightbulb.option("role", "The role to auto-assign", type=hikari.Role)
@lightbulb.command("add", "Add a role to auto-assign list")
@lightbulb.implements(lightbulb.SlashSubCommand)
async def add_command(ctx: lightbulb.SlashContext) -> None:
    """Add a role to the guild's auto-assign list.

    Roles at or above the bot's highest role are refused since Discord
    would reject the assignment on every join.
    """
    try:
        await defer_ephemeral(ctx)

        if ctx.guild_id is None:
            await ctx.edit_last_response(GUILD_ONLY_MESSAGE)
            return

        guild_id = str(ctx.guild_id)
        role: hikari.Role = ctx.options.role
        role_id = str(role.id)
        context = get_context(ctx)

        async with context.session() as session:
            service = RoleService(session, context.require_platform())

            if role.position >= await service.bot_top_role_position(guild_id):
                await ctx.edit_last_response(
                    f"I cannot assign the {role.name} role because it is higher than my highest role."
                )
                return

            config = await service.configs.get_or_create(guild_id)
            if role_id in config.auto_assign_roles:
                await ctx.edit_last_response(f"{role.name} is already in the auto-assign list.")
                return

            updated_roles = [*config.auto_assign_roles, role_id]
            await service.configs.update(
                guild_id, {"auto_assign_roles": updated_roles}, actor_id=str(ctx.author.id)
            )

        embed = make_embed(
            "Auto-assign Role Added",
            f"✅ {role.name} will now be auto-assigned to new members.",
            GREEN,
        )
        embed.add_field("Role", f"<@&{role_id}>", inline=True)
        embed.add_field("Total Auto Roles", str(len(updated_roles)), inline=True)
        await ctx.edit_last_response(embed=embed)

    except Exception as e:
        logger.error(f"Error in roles add command: {e}")
        await ctx.edit_last_response(ERROR_MESSAGE)


@roles_group.child
@lightbulb.option("role", "The role to remove", type=hikari.Role)
@lightbulb.command("remove", "Remove a role from auto-assign list")
@lightbulb.implements(lightbulb.SlashSubCommand)
async def remove_command(ctx: lightbulb.SlashContext) -> None:
    try:
        await defer_ephemeral(ctx)

        if ctx.guild_id is None:
            await ctx.edit_last_response(GUILD_ONLY_MESSAGE)
            return

        guild_id = str(ctx.guild_id)
        role: hikari.Role = ctx.options.role
        role_id = str(role.id)
        context = get_context(ctx)

        async with context.session() as session:
            service = RoleService(session, context.require_platform())
            config = await service.configs.get_or_create(guild_id)

            if role_id not in config.auto_assign_roles:
                await ctx.edit_last_response(f"{role.name} is not in the auto-assign list.")
                return

            updated_roles = [r for r in config.auto_assign_roles if r != role_id]
            await service.configs.update(
                guild_id, {"auto_assign_roles": updated_roles}, actor_id=str(ctx.author.id)
            )

        embed = make_embed(
            "Auto-assign Role Removed",
            f"❌ {role.name} will no longer be auto-assigned to new members.",
            RED,
        )
        embed.add_field("Role", f"<@&{role_id}>", inline=True)
        embed.add_field("Total Auto Roles", str(len(updated_roles)), inline=True)
        await ctx.edit_last_response(embed=embed)

    except Exception as e:
        logger.error(f"Error in roles remove command: {e}")
        await ctx.edit_last_response(ERROR_MESSAGE)


@roles_group.child
@lightbulb.command("list", "List all auto-assign roles")
@lightbulb.implements(lightbulb.SlashSubCommand)
async def list_command(ctx: lightbulb.SlashContext) -> None:
    try:
        await defer_ephemeral(ctx)

        if ctx.guild_id is None:
            await ctx.edit_last_response(GUILD_ONLY_MESSAGE)
            return

        guild_id = str(ctx.guild_id)
        context = get_context(ctx)
        platform = context.require_platform()

        async with context.session() as session:
            config = await RoleService(session, platform).configs.get_or_create(guild_id)
            auto_roles = list(config.auto_assign_roles)

        embed = make_embed("Auto-assign Roles")
        if not auto_roles:
            embed.description = "No auto-assign roles configured."
        else:
            existing = {role.id for role in await platform.list_roles(guild_id)}
            embed.description = "\n".join(
                f"<@&{role_id}>" if role_id in existing else f"Unknown Role ({role_id})"
                for role_id in auto_roles
            )
            embed.set_footer(f"Total: {len(auto_roles)} roles")

        await ctx.edit_last_response(embed=embed)

    except Exception as e:
        logger.error(f"Error in roles list command: {e}")
        await ctx.edit_last_response(ERROR_MESSAGE)


def load(bot: lightbulb.BotApp) -> None:
    """Load the roles plugin."""
    bot.add_plugin(plugin)


def unload(bot: lightbulb.BotApp) -> None:
    """Unload the roles plugin."""
    bot.remove_plugin(plugin)
