"""Command line entry point.

    python -m guildhall bot               # Discord bot only
    python -m guildhall api               # dashboard API only
    python -m guildhall all               # bot and API on one event loop
    python -m guildhall purge-audit-logs  # delete audit entries past retention
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

import uvicorn

from guildhall.shared.config import Settings, get_settings
from guildhall.shared.context import AppContext
from guildhall.shared.database import close_database, init_database

logger = logging.getLogger("guildhall")


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_server(context: AppContext) -> uvicorn.Server:
    """Uvicorn server for the API that runs inside the caller's event loop."""
    from guildhall.web.api.app import create_api

    config = uvicorn.Config(
        create_api(context),
        host=context.settings.api_host,
        port=context.settings.api_port,
        log_config=None,
    )
    return uvicorn.Server(config)


async def run(command: str, days: Optional[int] = None) -> int:
    settings = get_settings()
    context = AppContext.from_settings(settings)

    try:
        await init_database(context.engine)

        if command == "purge-audit-logs":
            from guildhall.web.crud import AuditLogOperations

            async with context.session() as session:
                deleted = await AuditLogOperations(session).cleanup_old_logs(
                    days or settings.audit_retention_days
                )
            print(f"Deleted {deleted} audit log entries")
            return 0

        if command == "api":
            await build_server(context).serve()
            return 0

        from guildhall.bot.client import run_bot

        if command == "bot":
            await run_bot(context)
            return 0

        # Both share the context, so API sends go through the live bot
        await asyncio.gather(run_bot(context), build_server(context).serve())
        return 0
    finally:
        await close_database(context.engine)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="guildhall", description="Guildhall Discord bot and dashboard API")
    parser.add_argument(
        "command",
        nargs="?",
        default="all",
        choices=["bot", "api", "all", "purge-audit-logs"],
        help="What to run (default: all)",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Retention window for purge-audit-logs (default: AUDIT_RETENTION_DAYS)",
    )
    args = parser.parse_args(argv)

    configure_logging(get_settings())

    try:
        return asyncio.run(run(args.command, args.days))
    except KeyboardInterrupt:
        logger.info("Shutting down")
        return 0


if __name__ == "__main__":
    sys.exit(main())
