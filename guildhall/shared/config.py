"""Application settings loaded from the environment."""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration shared by the bot and the API.

    Values are read from environment variables (case-insensitive) and an
    optional ``.env`` file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment
    environment: str = "development"
    log_level: str = "INFO"

    # Discord
    discord_bot_token: str = ""
    discord_application_id: str = ""

    # Database
    database_url: str = "sqlite+aiosqlite:///./guildhall.db"
    database_echo: bool = False

    # Dashboard / JWT
    dashboard_base_url: str = "https://go.digamber.in"
    dashboard_jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_expiry_minutes: int = 60

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""

    # Comma separated Discord user ids allowed to apply premium overrides
    admin_user_ids: str = ""

    # API server
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    api_docs_enabled: bool = True
    verbose_errors_enabled: bool = False

    # Audit log retention used by the purge command
    audit_retention_days: int = 90

    @property
    def admin_ids(self) -> List[str]:
        return [part.strip() for part in self.admin_user_ids.split(",") if part.strip()]

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev", "local")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")

    @property
    def dashboard_host(self) -> str:
        """Dashboard URL without the scheme, used in bot presence text."""
        return self.dashboard_base_url.split("://", 1)[-1].rstrip("/")

    def dashboard_link(self, guild_id: Optional[str] = None) -> str:
        base = self.dashboard_base_url.rstrip("/")
        if guild_id is None:
            return f"{base}/dashboard"
        return f"{base}/dashboard/{guild_id}"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
