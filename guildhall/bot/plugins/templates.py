"""Message template commands: list, view and send."""

from __future__ import annotations

import logging

import hikari
import lightbulb

from guildhall.bot.services.delivery import DeliveryEngine
from guildhall.bot.utils import ERROR_MESSAGE
from guildhall.bot.utils import GREEN
from guildhall.bot.utils import GUILD_ONLY_MESSAGE
from guildhall.bot.utils import defer_ephemeral
from guildhall.bot.utils import get_context
from guildhall.bot.utils import make_embed
from guildhall.bot.utils import relative_time
from guildhall.bot.utils import truncate
from guildhall.shared.context import AppContext
from guildhall.shared.exceptions import DeliveryError
from guildhall.shared.exceptions import NotFoundError
from guildhall.web.crud import TemplateOperations

plugin = lightbulb.Plugin("templates")

logger = logging.getLogger(__name__)

LIST_LIMIT = 10
AUTOCOMPLETE_LIMIT = 25


async def template_name_choices(context: AppContext, guild_id: str, query: str) -> list[str]:
    """Names of the guild's templates containing ``query``, for autocomplete."""
    async with context.session() as session:
        templates = await TemplateOperations(session).list(guild_id)
    query = query.lower()
    return [t.name for t in templates if query in t.name.lower()][:AUTOCOMPLETE_LIMIT]


@plugin.command
@lightbulb.app_command_permissions(hikari.Permissions.ADMINISTRATOR, dm_enabled=False)
@lightbulb.command("templates", "Manage message templates")
@lightbulb.implements(lightbulb.SlashCommandGroup)
async def templates_group(ctx: lightbulb.Context) -> None:
    """Templates command group."""
    pass


@templates_group.child
@lightbulb.command("list", "List all templates")
@lightbulb.implements(lightbulb.SlashSubCommand)
async def list_command(ctx: lightbulb.SlashContext) -> None:
    try:
        await defer_ephemeral(ctx)

        if ctx.guild_id is None:
            await ctx.edit_last_response(GUILD_ONLY_MESSAGE)
            return

        guild_id = str(ctx.guild_id)
        async with get_context(ctx).session() as session:
            templates = await TemplateOperations(session).list(guild_id)

        guild = ctx.get_guild()
        embed = make_embed(f"Message Templates: {guild.name if guild else guild_id}")
        if not templates:
            embed.description = "No templates found. Create templates on the dashboard."
        else:
            embed.description = "\n".join(
                f"**{template.name}** - Created {relative_time(template.created_at)}"
                for template in templates[:LIST_LIMIT]
            )
            embed.set_footer(f"{len(templates)} templates total")
            if len(templates) > LIST_LIMIT:
                embed.add_field(
                    "Note",
                    f"Showing {LIST_LIMIT} of {len(templates)} templates. View all on the dashboard.",
                )

        await ctx.edit_last_response(embed=embed)

    except Exception as e:
        logger.error(f"Error in templates list command: {e}")
        await ctx.edit_last_response(ERROR_MESSAGE)


@templates_group.child
@lightbulb.option("name", "Template name", autocomplete=True)
@lightbulb.command("view", "View a specific template")
@lightbulb.implements(lightbulb.SlashSubCommand)
async def view_command(ctx: lightbulb.SlashContext) -> None:
    try:
        await defer_ephemeral(ctx)

        if ctx.guild_id is None:
            await ctx.edit_last_response(GUILD_ONLY_MESSAGE)
            return

        name = ctx.options.name
        try:
            async with get_context(ctx).session() as session:
                template = await TemplateOperations(session).get_by_name(str(ctx.guild_id), name)
        except NotFoundError:
            await ctx.edit_last_response(f'Template "{name}" not found.')
            return

        embed = make_embed(f"Template: {template.name}")
        embed.add_field("Content", truncate(template.content) or "*No content*")
        embed.add_field("Embeds", f"{len(template.embeds)} embed(s)" if template.embeds else "None")
        embed.add_field(
            "Components",
            f"{len(template.components)} component(s)" if template.components else "None",
        )
        embed.add_field("Created", relative_time(template.created_at))
        embed.add_field("Created By", f"<@{template.created_by}>")
        if template.scheduled_for:
            embed.add_field("Scheduled For", f"<t:{int(template.scheduled_for.timestamp())}:F>")

        await ctx.edit_last_response(embed=embed)

    except Exception as e:
        logger.error(f"Error in templates view command: {e}")
        await ctx.edit_last_response(ERROR_MESSAGE)


@templates_group.child
@lightbulb.option(
    "channel",
    "Channel to send to",
    type=hikari.TextableGuildChannel,
    channel_types=[hikari.ChannelType.GUILD_TEXT, hikari.ChannelType.GUILD_NEWS],
)
@lightbulb.option("name", "Template name", autocomplete=True)
@lightbulb.command("send", "Send a template to a channel")
@lightbulb.implements(lightbulb.SlashSubCommand)
async def send_command(ctx: lightbulb.SlashContext) -> None:
    """Render a template and post it to the chosen channel."""
    try:
        await defer_ephemeral(ctx)

        if ctx.guild_id is None:
            await ctx.edit_last_response(GUILD_ONLY_MESSAGE)
            return

        guild_id = str(ctx.guild_id)
        name = ctx.options.name
        channel = ctx.options.channel
        context = get_context(ctx)

        try:
            async with context.session() as session:
                template = await TemplateOperations(session).get_by_name(guild_id, name)
                await DeliveryEngine(session, context.require_platform()).send(
                    template.id, guild_id, str(channel.id), actor_id=str(ctx.author.id)
                )
        except NotFoundError:
            await ctx.edit_last_response(f'Template "{name}" not found.')
            return
        except DeliveryError as e:
            logger.error(f"Failed to send template {name}: {e}")
            await ctx.edit_last_response(
                "Failed to send template. Make sure I have permission to send messages in that channel."
            )
            return

        embed = make_embed("Template Sent", f'✅ Template "{name}" sent to <#{channel.id}>.', GREEN)
        await ctx.edit_last_response(embed=embed)

    except Exception as e:
        logger.error(f"Error in templates send command: {e}")
        await ctx.edit_last_response(ERROR_MESSAGE)


@view_command.autocomplete("name")
@send_command.autocomplete("name")
async def template_name_autocomplete(
    opt: hikari.AutocompleteInteractionOption, inter: hikari.AutocompleteInteraction
) -> list[str]:
    if inter.guild_id is None:
        return []
    try:
        return await template_name_choices(
            plugin.bot.d["context"], str(inter.guild_id), str(opt.value or "")
        )
    except Exception as e:
        logger.error(f"Template autocomplete failed: {e}")
        return []


def load(bot: lightbulb.BotApp) -> None:
    """Load the templates plugin."""
    bot.add_plugin(plugin)


def unload(bot: lightbulb.BotApp) -> None:
    """Unload the templates plugin."""
    bot.remove_plugin(plugin)
