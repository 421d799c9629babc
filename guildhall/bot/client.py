"""Discord bot client setup and configuration."""

from __future__ import annotations

import asyncio
import logging
import math

import hikari
import lightbulb

from guildhall.bot.events import handle_dm_message
from guildhall.bot.events import handle_legacy_command
from guildhall.bot.events import handle_member_join
from guildhall.bot.events import handle_member_update
from guildhall.bot.events import presence_text
from guildhall.bot.services.platform import HikariPlatform
from guildhall.shared.config import Settings
from guildhall.shared.config import get_settings
from guildhall.shared.context import AppContext

logger = logging.getLogger(__name__)

PLUGINS = (
    "guildhall.bot.plugins.setup",
    "guildhall.bot.plugins.premium",
    "guildhall.bot.plugins.roles",
    "guildhall.bot.plugins.templates",
    "guildhall.bot.plugins.send",
    "guildhall.bot.plugins.utility",
)

PRESENCE_INTERVAL_SECONDS = 300


def create_bot(settings: Settings | None = None) -> lightbulb.BotApp:
    """Create and configure the Discord bot with Lightbulb v2 syntax.

    Returns:
        BotApp instance
    """
    if settings is None:
        settings = get_settings()

    intents = (
        hikari.Intents.GUILDS
        | hikari.Intents.GUILD_MEMBERS  # Member join and role/nickname updates
        | hikari.Intents.GUILD_MESSAGES  # Legacy ! commands
        | hikari.Intents.DM_MESSAGES
        | hikari.Intents.MESSAGE_CONTENT
    )

    bot = lightbulb.BotApp(
        token=settings.discord_bot_token,
        intents=intents,
        logs={
            "version": 1,
            "incremental": True,
            "loggers": {
                "hikari": {"level": "INFO"},
                "hikari.ratelimits": {"level": "INFO"},
                "lightbulb": {"level": "INFO"},
                "guildhall": {"level": settings.log_level.upper()},
            },
        },
        banner=None,
    )

    return bot


def attach_context(bot: lightbulb.BotApp, context: AppContext) -> None:
    """Expose the application context to plugins and give it a platform."""
    context.platform = HikariPlatform(bot)
    bot.d["context"] = context


async def start_presence_updates(bot: lightbulb.BotApp, settings: Settings) -> None:
    """Keep the "Watching N servers" presence current."""

    async def update_presence():
        while True:
            try:
                guild_count = len(bot.cache.get_guilds_view())
                await bot.update_presence(
                    activity=hikari.Activity(
                        name=presence_text(guild_count, settings),
                        type=hikari.ActivityType.WATCHING,
                    )
                )
                logger.debug(f"Updated presence for {guild_count} guilds")
            except Exception as e:
                logger.error(f"Error updating presence: {e}")

            await asyncio.sleep(PRESENCE_INTERVAL_SECONDS)

    bot.d["presence_task"] = asyncio.create_task(update_presence())


def register_listeners(bot: lightbulb.BotApp) -> None:
    """Subscribe gateway listeners that feed the event handlers."""

    @bot.listen()
    async def on_started(event: hikari.StartedEvent) -> None:
        context: AppContext = bot.d["context"]
        bot_user = event.app.get_me()
        if bot_user:
            logger.info(f"Bot started as {bot_user.username}")
        logger.info(f"Bot is in {len(bot.cache.get_guilds_view())} guilds")
        await start_presence_updates(bot, context.settings)

    @bot.listen()
    async def on_stopping(event: hikari.StoppingEvent) -> None:
        logger.info("Bot is stopping...")
        task = bot.d.get("presence_task")
        if task:
            task.cancel()

    @bot.listen()
    async def on_member_join(event: hikari.MemberCreateEvent) -> None:
        if event.member.is_bot:
            return
        try:
            await handle_member_join(bot.d["context"], str(event.guild_id), str(event.user_id))
            logger.info(f"Member joined: {event.member.username} in guild {event.guild_id}")
        except Exception as e:
            logger.error(f"Error handling member join in guild {event.guild_id}: {e}")

    @bot.listen()
    async def on_member_update(event: hikari.MemberUpdateEvent) -> None:
        old = event.old_member
        member = event.member
        role_ids = set(member.role_ids) | set(old.role_ids if old else [])
        role_names = {}
        for role_id in role_ids:
            role = bot.cache.get_role(role_id)
            if role:
                role_names[str(role_id)] = role.name

        try:
            await handle_member_update(
                bot.d["context"],
                guild_id=str(event.guild_id),
                member_id=str(member.id),
                member_tag=member.username,
                old_role_ids=[str(r) for r in old.role_ids] if old else None,
                new_role_ids=[str(r) for r in member.role_ids],
                old_nickname=old.nickname if old else member.nickname,
                new_nickname=member.nickname,
                role_names=role_names,
            )
        except Exception as e:
            logger.error(f"Error handling member update in guild {event.guild_id}: {e}")

    @bot.listen()
    async def on_message_create(event: hikari.MessageCreateEvent) -> None:
        if event.is_bot or not event.message.content:
            return

        context: AppContext = bot.d["context"]
        content = event.message.content

        if isinstance(event, hikari.DMMessageCreateEvent):
            logger.info(f"DM from {event.author.username}")
            reply = handle_dm_message(context.settings, content)
        else:
            latency = bot.heartbeat_latency
            latency_ms = 0.0 if math.isnan(latency) else latency * 1000
            reply = handle_legacy_command(context.settings, content.strip(), latency_ms)

        if reply:
            try:
                await event.message.respond(reply, reply=True)
            except hikari.HTTPResponseError as e:
                logger.error(f"Failed to reply to message {event.message_id}: {e}")


def load_plugins(bot: lightbulb.BotApp) -> None:
    """Load slash-command plugins."""
    for extension in PLUGINS:
        logger.info(f"Loading {extension}...")
        bot.load_extensions(extension)
    logger.info("✓ All plugins loaded successfully")


def build_bot(context: AppContext) -> lightbulb.BotApp:
    """Create a bot wired to ``context`` with listeners and plugins."""
    bot = create_bot(context.settings)
    attach_context(bot, context)
    register_listeners(bot)
    load_plugins(bot)
    return bot


async def run_bot(context: AppContext) -> None:
    """Run the Discord bot until cancelled."""
    if not context.settings.discord_bot_token:
        logger.error("Discord bot token not provided")
        return

    bot = build_bot(context)

    try:
        await bot.start()
        logger.info("Bot is now running. Press Ctrl+C to stop.")
        await bot.join()
    except asyncio.CancelledError:
        logger.info("Bot shutdown requested")
        raise
    finally:
        if bot.is_alive:
            logger.info("Shutting down bot...")
            await bot.close()
