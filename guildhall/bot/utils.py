"""Helpers shared by the slash-command plugins."""

from __future__ import annotations

from datetime import UTC
from datetime import datetime

import hikari
import lightbulb

from guildhall.shared.context import AppContext

ERROR_MESSAGE = "An error occurred. Please try again."
GUILD_ONLY_MESSAGE = "This command can only be used in a server."

BLURPLE = 0x5865F2
GREEN = 0x00FF00
RED = 0xFF0000


async def defer_ephemeral(ctx: lightbulb.Context) -> None:
    await ctx.respond(
        hikari.ResponseType.DEFERRED_MESSAGE_CREATE,
        flags=hikari.MessageFlag.EPHEMERAL,
    )


def get_context(ctx: lightbulb.Context) -> AppContext:
    return ctx.bot.d["context"]


def make_embed(title: str, description: str | None = None, color: int = BLURPLE) -> hikari.Embed:
    return hikari.Embed(
        title=title,
        description=description,
        color=color,
        timestamp=datetime.now(UTC),
    )


def relative_time(value: datetime) -> str:
    """Discord relative timestamp markup, e.g. "3 days ago"."""
    return f"<t:{int(value.timestamp())}:R>"


def truncate(text: str, limit: int = 1024) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def parse_hex_color(value: str | None, default: int = BLURPLE) -> int:
    if not value:
        return default
    try:
        return int(value.strip().lstrip("#"), 16)
    except ValueError:
        return default
