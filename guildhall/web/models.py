"""Database models for the Guildhall application."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean
from sqlalchemy import CheckConstraint
from sqlalchemy import Index
from sqlalchemy import JSON
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy import Uuid
from sqlalchemy.orm import Mapped
from sqlalchemy.orm import mapped_column

from guildhall.shared.database import Base, UTCDateTime


class PremiumTier(StrEnum):
    MONTHLY = "monthly"
    LIFETIME = "lifetime"


class EntitlementStatus(StrEnum):
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    TRIALING = "trialing"
    INCOMPLETE = "incomplete"


# Statuses that grant premium while the period has not ended
LIVE_STATUSES = (EntitlementStatus.ACTIVE.value, EntitlementStatus.TRIALING.value)

# Sentinel stored in place of a processor id for manual grants
ADMIN_OVERRIDE = "admin_override"


class AuditAction(StrEnum):
    ROLE_ADDED = "ROLE_ADDED"
    ROLE_REMOVED = "ROLE_REMOVED"
    NICKNAME_CHANGED = "NICKNAME_CHANGED"
    MESSAGE_SENT = "MESSAGE_SENT"
    TEMPLATE_CREATED = "TEMPLATE_CREATED"
    TEMPLATE_UPDATED = "TEMPLATE_UPDATED"
    TEMPLATE_DELETED = "TEMPLATE_DELETED"
    TEMPLATE_SCHEDULED = "TEMPLATE_SCHEDULED"
    PREMIUM_ACTIVATED = "PREMIUM_ACTIVATED"
    PREMIUM_CANCELED = "PREMIUM_CANCELED"
    PREMIUM_OVERRIDE = "PREMIUM_OVERRIDE"
    CONFIG_UPDATED = "CONFIG_UPDATED"


DEFAULT_WELCOME_MESSAGE = "Welcome {user} to {server}!"


class EntitlementRecord(Base):
    """Premium subscription grant for a guild, purchased by a user.

    Records are never deleted. Cancellation and expiry are status
    transitions; whether a record currently grants premium is decided at
    read time from ``status`` and ``current_period_end``.
    """

    __tablename__ = "premium_subscriptions"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        doc="Unique entitlement identifier"
    )

    user_id: Mapped[str] = mapped_column(
        String,
        nullable=False,
        index=True,
        doc="Discord user ID of the purchaser"
    )
    guild_id: Mapped[str] = mapped_column(
        String,
        nullable=False,
        index=True,
        doc="Discord guild the premium applies to"
    )
    tier: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="Premium tier (monthly or lifetime)"
    )

    external_subscription_id: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
        index=True,
        doc="Stripe subscription ID, or 'admin_override' for manual grants"
    )
    external_customer_id: Mapped[str] = mapped_column(
        String,
        nullable=False,
        index=True,
        doc="Stripe customer ID"
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=EntitlementStatus.ACTIVE.value,
        doc="Subscription status mirrored from the processor"
    )
    current_period_end: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        doc="End of the paid period"
    )
    purchased_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        doc="When the entitlement was granted"
    )
    canceled_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="When the entitlement was canceled"
    )
    extra_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
        doc="Opaque processor or admin metadata"
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("ix_premium_subscriptions_guild_status", "guild_id", "status"),
        Index("ix_premium_subscriptions_period_end", "current_period_end"),
        CheckConstraint(
            "tier IN ('monthly', 'lifetime')",
            name="ck_premium_subscriptions_tier"
        ),
        CheckConstraint(
            "status IN ('active', 'canceled', 'past_due', 'trialing', 'incomplete')",
            name="ck_premium_subscriptions_status"
        ),
    )

    def __init__(self, **kwargs):
        """Initialize EntitlementRecord with default timestamps."""
        now = datetime.now(timezone.utc)
        kwargs.setdefault('id', uuid4())
        kwargs.setdefault('status', EntitlementStatus.ACTIVE.value)
        kwargs.setdefault('purchased_at', now)
        kwargs.setdefault('created_at', now)
        kwargs.setdefault('updated_at', now)
        super().__init__(**kwargs)

    def is_effectively_active(self, now: Optional[datetime] = None) -> bool:
        """Check whether this record grants premium at ``now``."""
        now = now or datetime.now(timezone.utc)
        return self.status in LIVE_STATUSES and self.current_period_end >= now

    def __repr__(self) -> str:
        return (
            f"<EntitlementRecord(guild_id='{self.guild_id}', tier='{self.tier}', "
            f"status='{self.status}')>"
        )


class MessageTemplate(Base):
    """Reusable message definition owned by a guild.

    Stores plain content plus Discord embed and component payloads as JSON.
    Deleting a template only clears ``is_active``.
    """

    __tablename__ = "message_templates"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        doc="Unique template identifier"
    )
    guild_id: Mapped[str] = mapped_column(
        String,
        nullable=False,
        index=True,
        doc="Discord guild (server) snowflake ID"
    )
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        doc="Template name, unique per guild by convention"
    )
    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        doc="Plain text message body"
    )
    embeds: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        doc="Ordered embed definitions"
    )
    components: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        doc="Ordered component rows (buttons and select menus)"
    )
    channel_id: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
        doc="Default channel to deliver the template to"
    )
    scheduled_for: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="When the template is scheduled to be sent"
    )

    created_by: Mapped[str] = mapped_column(
        String,
        nullable=False,
        doc="Discord user ID of the creator"
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
        doc="False once the template has been deleted"
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("ix_message_templates_guild_active", "guild_id", "is_active"),
    )

    def __init__(self, **kwargs):
        """Initialize MessageTemplate with default collections and timestamps."""
        now = datetime.now(timezone.utc)
        kwargs.setdefault('id', uuid4())
        kwargs.setdefault('embeds', [])
        kwargs.setdefault('components', [])
        kwargs.setdefault('is_active', True)
        kwargs.setdefault('created_at', now)
        kwargs.setdefault('updated_at', now)
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<MessageTemplate(guild_id='{self.guild_id}', name='{self.name}')>"


class GuildConfig(Base):
    """Per-guild role, welcome and audit settings."""

    __tablename__ = "guild_configs"

    guild_id: Mapped[str] = mapped_column(
        String,
        primary_key=True,
        doc="Discord guild (server) snowflake ID"
    )

    auto_assign_roles: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        doc="Role IDs given to every new member"
    )
    admin_roles: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        doc="Role IDs treated as bot administrators"
    )
    moderator_roles: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        doc="Role IDs treated as bot moderators"
    )

    welcome_channel_id: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
        doc="Channel where welcome messages are posted"
    )
    welcome_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Welcome text with {user} and {server} placeholders"
    )
    audit_channel_id: Mapped[Optional[str]] = mapped_column(
        String,
        nullable=True,
        doc="Channel where audit notices are posted"
    )

    updated_by: Mapped[str] = mapped_column(
        String,
        nullable=False,
        doc="Discord user ID of the last editor, or 'system'"
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    def __init__(self, **kwargs):
        """Initialize GuildConfig with empty role lists and the default welcome."""
        now = datetime.now(timezone.utc)
        kwargs.setdefault('auto_assign_roles', [])
        kwargs.setdefault('admin_roles', [])
        kwargs.setdefault('moderator_roles', [])
        kwargs.setdefault('welcome_message', DEFAULT_WELCOME_MESSAGE)
        kwargs.setdefault('updated_by', 'system')
        kwargs.setdefault('created_at', now)
        kwargs.setdefault('updated_at', now)
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<GuildConfig(guild_id='{self.guild_id}')>"


class AuditLogEntry(Base):
    """Immutable record of an administrative or automated action.

    References guilds, users and subjects by ID only.
    """

    __tablename__ = "audit_log_entries"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    guild_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(
        String,
        nullable=False,
        index=True,
        doc="Actor; the bot's own ID for automated actions"
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_audit_log_entries_guild_timestamp", "guild_id", "timestamp"),
        Index("ix_audit_log_entries_user_timestamp", "user_id", "timestamp"),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault('id', uuid4())
        kwargs.setdefault('details', {})
        kwargs.setdefault('timestamp', datetime.now(timezone.utc))
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<AuditLogEntry(guild_id='{self.guild_id}', action='{self.action}')>"
