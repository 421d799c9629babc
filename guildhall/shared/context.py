"""Application context shared by the bot, the API and the CLI."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from guildhall.shared.config import Settings
from guildhall.shared.database import create_engine, create_session_factory, get_db_session_context
from guildhall.shared.exceptions import DependencyError

if TYPE_CHECKING:
    from guildhall.bot.services.platform import ChatPlatform
    from guildhall.web.billing import PaymentProcessor


@dataclass
class AppContext:
    """Long-lived collaborators, created once at startup and passed down.

    ``platform`` is attached once the bot exists; API-only processes run
    without one and reject routes that need Discord.
    """

    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    payments: "PaymentProcessor"
    platform: Optional["ChatPlatform"] = None

    @classmethod
    def from_settings(cls, settings: Settings, payments: Any = None) -> "AppContext":
        """Build a context with a fresh engine and the Stripe gateway."""
        if payments is None:
            from guildhall.web.billing import StripeGateway

            payments = StripeGateway(settings.stripe_secret_key, settings.stripe_webhook_secret)

        engine = create_engine(settings)
        return cls(
            settings=settings,
            engine=engine,
            session_factory=create_session_factory(engine),
            payments=payments,
        )

    def require_platform(self) -> "ChatPlatform":
        if self.platform is None:
            raise DependencyError("Discord bot is not connected")
        return self.platform

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Session that commits on success and rolls back on error."""
        async with get_db_session_context(self.session_factory) as session:
            yield session
