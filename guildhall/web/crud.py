"""Database operations for the Guildhall application.

This module holds the stores for premium entitlements, message templates,
guild configuration and the audit log. Every operation is async, uses
SQLAlchemy 2.0 syntax and works inside the caller's session; committing is
left to the request dependency or the bot's session context.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from pydantic import TypeAdapter
from sqlalchemy import delete, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from guildhall.shared.database import utcnow
from guildhall.shared.exceptions import (
    DatabaseOperationError,
    GuildhallError,
    NotFoundError,
    ValidationError,
)
from guildhall.web.billing import PaymentProcessor, normalize_status
from guildhall.web.models import (
    ADMIN_OVERRIDE,
    LIVE_STATUSES,
    AuditAction,
    AuditLogEntry,
    EntitlementRecord,
    EntitlementStatus,
    GuildConfig,
    MessageTemplate,
    PremiumTier,
)
from guildhall.web.validation import (
    normalize_template_fields,
    parse_datetime,
    validate_template_data,
)

logger = logging.getLogger(__name__)

_JSON_DETAILS = TypeAdapter(Dict[str, Any])

# Far-future period end used for lifetime overrides
LIFETIME_PERIOD_END = datetime(2099, 12, 31, tzinfo=timezone.utc)

TEMPLATE_FIELDS = (
    "name",
    "content",
    "embeds",
    "components",
    "channel_id",
    "scheduled_for",
    "guild_id",
    "created_by",
)
TEMPLATE_UPDATABLE_FIELDS = (
    "name",
    "content",
    "embeds",
    "components",
    "channel_id",
    "scheduled_for",
)
CONFIG_UPDATABLE_FIELDS = (
    "auto_assign_roles",
    "admin_roles",
    "moderator_roles",
    "welcome_channel_id",
    "welcome_message",
    "audit_channel_id",
)


def _coerce_uuid(value: Union[str, UUID]) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class AuditLogOperations:
    """Append-only audit trail of administrative and automated actions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def log(
        self,
        guild_id: str,
        user_id: str,
        action: Union[AuditAction, str],
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None
    ) -> Optional[AuditLogEntry]:
        """Append an audit entry.

        Recording failures are logged and never propagate. The entry is
        written in a savepoint, so a failed write rolls back only itself
        and the caller's transaction stays usable.

        Args:
            guild_id: Discord guild snowflake ID
            user_id: Actor's Discord user ID (the bot's ID for automated actions)
            action: Audit action tag
            details: JSON-serializable detail payload
            ip_address: Requesting client address, if any

        Returns:
            Optional[AuditLogEntry]: The stored entry, or None if recording failed
        """
        try:
            entry = AuditLogEntry(
                guild_id=guild_id,
                user_id=user_id,
                action=str(action),
                details=_JSON_DETAILS.dump_python(details or {}, mode="json"),
                ip_address=ip_address,
            )
            async with self.session.begin_nested():
                self.session.add(entry)
            return entry
        except Exception as e:
            logger.error(f"Failed to record audit entry {action} for guild {guild_id}: {e}")
            return None

    async def get_logs(
        self,
        guild_id: str,
        limit: int = 100,
        skip: int = 0,
        action: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> List[AuditLogEntry]:
        """Get audit entries for a guild, newest first.

        Args:
            guild_id: Discord guild snowflake ID
            limit: Maximum number of entries
            skip: Number of entries to skip
            action: Only return this action tag
            user_id: Only return entries by this actor

        Returns:
            List[AuditLogEntry]: Matching entries

        Raises:
            DatabaseOperationError: If query fails
        """
        try:
            stmt = select(AuditLogEntry).where(AuditLogEntry.guild_id == guild_id)

            if action:
                stmt = stmt.where(AuditLogEntry.action == action)
            if user_id:
                stmt = stmt.where(AuditLogEntry.user_id == user_id)

            stmt = stmt.order_by(desc(AuditLogEntry.timestamp)).offset(skip).limit(limit)
            result = await self.session.execute(stmt)
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get audit logs: {e}") from e

    async def search_logs(
        self,
        guild_id: str,
        term: str,
        limit: int = 50
    ) -> List[AuditLogEntry]:
        """Case-insensitive search over action tags and template/channel IDs."""
        escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        try:
            stmt = (
                select(AuditLogEntry)
                .where(
                    AuditLogEntry.guild_id == guild_id,
                    or_(
                        AuditLogEntry.action.ilike(pattern, escape="\\"),
                        AuditLogEntry.details["templateId"].as_string().ilike(pattern, escape="\\"),
                        AuditLogEntry.details["channelId"].as_string().ilike(pattern, escape="\\"),
                    ),
                )
                .order_by(desc(AuditLogEntry.timestamp))
                .limit(limit)
            )
            result = await self.session.execute(stmt)
            return list(result.scalars().all())

        except Exception as e:
            raise DatabaseOperationError(f"Failed to search audit logs: {e}") from e

    async def cleanup_old_logs(self, days_to_keep: int = 90) -> int:
        """Delete entries older than the retention window.

        Returns:
            int: Number of deleted entries
        """
        cutoff = utcnow() - timedelta(days=days_to_keep)
        try:
            result = await self.session.execute(
                delete(AuditLogEntry).where(AuditLogEntry.timestamp < cutoff)
            )
            deleted = result.rowcount or 0
            logger.info(f"Purged {deleted} audit entries older than {days_to_keep} days")
            return deleted
        except Exception as e:
            raise DatabaseOperationError(f"Failed to clean up audit logs: {e}") from e


class EntitlementOperations:
    """Premium entitlement store.

    Records mirror processor subscriptions. Whether a record grants premium
    is evaluated on read: records whose period has ended are moved to
    ``past_due`` the first time a lookup sees them.
    """

    def __init__(
        self,
        session: AsyncSession,
        payments: PaymentProcessor,
        audit: Optional[AuditLogOperations] = None
    ):
        self.session = session
        self.payments = payments
        self.audit = audit or AuditLogOperations(session)

    async def activate(
        self,
        subscription_id: str,
        customer_id: str,
        user_id: str,
        guild_id: str,
        tier: Union[PremiumTier, str]
    ) -> EntitlementRecord:
        """Create an entitlement from a completed processor checkout.

        The processor is the source of truth for status and period end.

        Args:
            subscription_id: Processor subscription ID
            customer_id: Processor customer ID
            user_id: Purchasing Discord user ID
            guild_id: Discord guild receiving premium
            tier: Premium tier

        Returns:
            EntitlementRecord: Newly created record

        Raises:
            PaymentProcessorError: If the subscription can't be retrieved
            DatabaseOperationError: If the record can't be stored
        """
        subscription = await self.payments.retrieve_subscription(subscription_id)

        try:
            record = EntitlementRecord(
                user_id=user_id,
                guild_id=guild_id,
                tier=str(tier),
                external_subscription_id=subscription_id,
                external_customer_id=customer_id,
                status=subscription.status,
                current_period_end=subscription.current_period_end,
                extra_metadata=subscription.metadata or None,
            )
            self.session.add(record)
            await self.session.flush()
        except Exception as e:
            raise DatabaseOperationError(f"Failed to activate premium: {e}") from e

        await self.audit.log(
            guild_id=guild_id,
            user_id=user_id,
            action=AuditAction.PREMIUM_ACTIVATED,
            details={
                "subscriptionId": subscription_id,
                "tier": str(tier),
                "periodEnd": subscription.current_period_end,
            },
        )
        logger.info(f"Activated {tier} premium for guild {guild_id} (subscription {subscription_id})")
        return record

    async def _find_by_subscription(self, subscription_id: str) -> List[EntitlementRecord]:
        result = await self.session.execute(
            select(EntitlementRecord).where(
                EntitlementRecord.external_subscription_id == subscription_id
            )
        )
        return list(result.scalars().all())

    async def update_status(self, subscription_id: str, status: str) -> int:
        """Overwrite the status of every record for a subscription.

        Repeating the call with the same arguments changes nothing.

        Returns:
            int: Number of records whose status changed
        """
        status = normalize_status(status)
        try:
            records = await self._find_by_subscription(subscription_id)
            if not records:
                logger.info(f"No entitlement found for subscription {subscription_id}, ignoring status {status}")
                return 0

            changed = 0
            now = utcnow()
            for record in records:
                if record.status != status:
                    record.status = status
                    record.updated_at = now
                    changed += 1

            await self.session.flush()
            return changed

        except Exception as e:
            raise DatabaseOperationError(f"Failed to update premium status: {e}") from e

    async def cancel(
        self,
        subscription_id: str,
        reason: Optional[str] = None
    ) -> List[EntitlementRecord]:
        """Cancel the records for a subscription.

        Returns:
            List[EntitlementRecord]: Records that were canceled, empty if none matched
        """
        try:
            records = await self._find_by_subscription(subscription_id)
            now = utcnow()
            for record in records:
                record.status = EntitlementStatus.CANCELED.value
                record.canceled_at = now
                record.updated_at = now
            await self.session.flush()
        except Exception as e:
            raise DatabaseOperationError(f"Failed to cancel premium: {e}") from e

        if not records:
            logger.info(f"No entitlement found for subscription {subscription_id}, nothing to cancel")

        for record in records:
            await self.audit.log(
                guild_id=record.guild_id,
                user_id=record.user_id,
                action=AuditAction.PREMIUM_CANCELED,
                details={"subscriptionId": subscription_id, "reason": reason},
            )
        return records

    async def _sweep(self, records: List[EntitlementRecord]) -> List[EntitlementRecord]:
        """Move ended records to past_due and return the ones still live."""
        now = utcnow()
        live = []
        expired = False
        for record in records:
            if record.is_effectively_active(now):
                live.append(record)
                continue
            record.status = EntitlementStatus.PAST_DUE.value
            record.updated_at = now
            expired = True
            logger.info(f"Entitlement {record.id} for guild {record.guild_id} expired, marked past_due")
        if expired:
            await self.session.flush()
        return live

    def _live_query(self):
        return (
            select(EntitlementRecord)
            .where(EntitlementRecord.status.in_(LIVE_STATUSES))
            .order_by(
                desc(EntitlementRecord.current_period_end),
                desc(EntitlementRecord.purchased_at),
            )
        )

    async def get_active_for_guild(self, guild_id: str) -> Optional[EntitlementRecord]:
        """Get the guild's effective entitlement.

        When several records are live, the one with the latest period end
        wins, then the most recent purchase.

        Args:
            guild_id: Discord guild snowflake ID

        Returns:
            Optional[EntitlementRecord]: The effective record, or None

        Raises:
            DatabaseOperationError: If query fails
        """
        try:
            result = await self.session.execute(
                self._live_query().where(EntitlementRecord.guild_id == guild_id)
            )
            live = await self._sweep(list(result.scalars().all()))
            return live[0] if live else None
        except Exception as e:
            raise DatabaseOperationError(f"Failed to get guild premium: {e}") from e

    async def get_active_for_user(self, user_id: str) -> List[EntitlementRecord]:
        """Get every effective entitlement purchased by a user."""
        try:
            result = await self.session.execute(
                self._live_query().where(EntitlementRecord.user_id == user_id)
            )
            return await self._sweep(list(result.scalars().all()))
        except Exception as e:
            raise DatabaseOperationError(f"Failed to get user premium: {e}") from e

    async def get_user_subscription(
        self,
        user_id: str,
        subscription_id: str
    ) -> Optional[EntitlementRecord]:
        """Find a user's record for a subscription, in any status."""
        result = await self.session.execute(
            select(EntitlementRecord).where(
                EntitlementRecord.user_id == user_id,
                EntitlementRecord.external_subscription_id == subscription_id,
            )
        )
        return result.scalars().first()

    async def is_guild_active(self, guild_id: str) -> bool:
        return await self.get_active_for_guild(guild_id) is not None

    async def override(
        self,
        guild_id: str,
        user_id: str,
        tier: Union[PremiumTier, str],
        admin_actor_id: str
    ) -> EntitlementRecord:
        """Manually grant premium to a guild.

        Every live record for the guild is canceled first so the new grant
        is the only live one. Callers are responsible for checking that
        ``admin_actor_id`` may do this.

        Args:
            guild_id: Discord guild snowflake ID
            user_id: Discord user the grant is attributed to
            tier: Premium tier; lifetime grants run until 2099-12-31
            admin_actor_id: Administrator applying the override

        Returns:
            EntitlementRecord: The new override record

        Raises:
            ValidationError: If tier is unknown
            DatabaseOperationError: If the records can't be stored
        """
        tier = str(tier)
        if tier not in (PremiumTier.MONTHLY.value, PremiumTier.LIFETIME.value):
            raise ValidationError("Invalid premium tier", [f"Unknown tier: {tier}"])

        now = utcnow()
        period_end = LIFETIME_PERIOD_END if tier == PremiumTier.LIFETIME.value else now + timedelta(days=30)

        try:
            result = await self.session.execute(
                select(EntitlementRecord).where(
                    EntitlementRecord.guild_id == guild_id,
                    EntitlementRecord.status.in_(LIVE_STATUSES),
                )
            )
            for existing in result.scalars().all():
                existing.status = EntitlementStatus.CANCELED.value
                existing.canceled_at = now
                existing.updated_at = now

            record = EntitlementRecord(
                user_id=user_id,
                guild_id=guild_id,
                tier=tier,
                external_subscription_id=ADMIN_OVERRIDE,
                external_customer_id=ADMIN_OVERRIDE,
                status=EntitlementStatus.ACTIVE.value,
                current_period_end=period_end,
                purchased_at=now,
                extra_metadata={"adminOverride": True, "adminUserId": admin_actor_id},
            )
            self.session.add(record)
            await self.session.flush()
        except Exception as e:
            raise DatabaseOperationError(f"Failed to override premium: {e}") from e

        await self.audit.log(
            guild_id=guild_id,
            user_id=admin_actor_id,
            action=AuditAction.PREMIUM_OVERRIDE,
            details={"guildId": guild_id, "tier": tier, "targetUserId": user_id},
        )
        logger.info(f"Admin {admin_actor_id} granted {tier} premium to guild {guild_id}")
        return record


class TemplateOperations:
    """Message template store. Templates are soft-deleted only."""

    def __init__(self, session: AsyncSession, audit: Optional[AuditLogOperations] = None):
        self.session = session
        self.audit = audit or AuditLogOperations(session)

    @staticmethod
    def _check(data: Dict[str, Any]) -> None:
        errors = validate_template_data(data)
        if errors:
            raise ValidationError(f"Invalid template data: {', '.join(errors)}", errors)

    async def create(
        self,
        data: Dict[str, Any],
        actor_id: str,
        ip_address: Optional[str] = None
    ) -> MessageTemplate:
        """Create a template.

        Args:
            data: Template fields keyed by attribute name; must include
                guild_id and created_by
            actor_id: Discord user performing the action
            ip_address: Requesting client address, if any

        Returns:
            MessageTemplate: The created template

        Raises:
            ValidationError: With every violation if the data is invalid
            DatabaseOperationError: If the template can't be stored
        """
        fields = {key: data[key] for key in TEMPLATE_FIELDS if key in data}
        self._check(fields)
        fields = normalize_template_fields(fields)

        try:
            template = MessageTemplate(**fields)
            self.session.add(template)
            await self.session.flush()
        except Exception as e:
            raise DatabaseOperationError(f"Failed to create template: {e}") from e

        await self.audit.log(
            guild_id=template.guild_id,
            user_id=actor_id,
            action=AuditAction.TEMPLATE_CREATED,
            details={"templateId": str(template.id), "name": template.name},
            ip_address=ip_address,
        )
        return template

    async def list(
        self,
        guild_id: str,
        created_by: Optional[str] = None
    ) -> List[MessageTemplate]:
        """List a guild's active templates, newest first."""
        try:
            stmt = select(MessageTemplate).where(
                MessageTemplate.guild_id == guild_id,
                MessageTemplate.is_active.is_(True),
            )
            if created_by:
                stmt = stmt.where(MessageTemplate.created_by == created_by)
            stmt = stmt.order_by(desc(MessageTemplate.created_at))
            result = await self.session.execute(stmt)
            return list(result.scalars().all())
        except Exception as e:
            raise DatabaseOperationError(f"Failed to list templates: {e}") from e

    async def get(self, template_id: Union[str, UUID], guild_id: str) -> MessageTemplate:
        """Get an active template belonging to a guild.

        Raises:
            NotFoundError: If missing, deleted, or owned by another guild
            DatabaseOperationError: If query fails
        """
        template_uuid = _coerce_uuid(template_id)
        if template_uuid is None:
            raise NotFoundError("Template not found or inaccessible")

        try:
            result = await self.session.execute(
                select(MessageTemplate).where(
                    MessageTemplate.id == template_uuid,
                    MessageTemplate.guild_id == guild_id,
                    MessageTemplate.is_active.is_(True),
                )
            )
            template = result.scalar_one_or_none()
        except Exception as e:
            raise DatabaseOperationError(f"Failed to get template: {e}") from e

        if template is None:
            raise NotFoundError("Template not found or inaccessible")
        return template

    async def get_by_name(self, guild_id: str, name: str) -> MessageTemplate:
        """Get the newest active template with this name (case-insensitive)."""
        try:
            result = await self.session.execute(
                select(MessageTemplate)
                .where(
                    MessageTemplate.guild_id == guild_id,
                    MessageTemplate.is_active.is_(True),
                    func.lower(MessageTemplate.name) == name.lower(),
                )
                .order_by(desc(MessageTemplate.created_at))
                .limit(1)
            )
            template = result.scalar_one_or_none()
        except Exception as e:
            raise DatabaseOperationError(f"Failed to get template: {e}") from e

        if template is None:
            raise NotFoundError(f"Template '{name}' not found")
        return template

    async def update(
        self,
        template_id: Union[str, UUID],
        guild_id: str,
        updates: Dict[str, Any],
        actor_id: str,
        ip_address: Optional[str] = None
    ) -> MessageTemplate:
        """Merge updates into a template and re-validate the result.

        guild_id and created_by are fixed at creation and ignored here.

        Raises:
            NotFoundError: If the template isn't accessible
            ValidationError: If the merged template is invalid
        """
        template = await self.get(template_id, guild_id)
        changes = {key: updates[key] for key in TEMPLATE_UPDATABLE_FIELDS if key in updates}

        merged = {key: getattr(template, key) for key in TEMPLATE_FIELDS}
        merged.update(changes)
        self._check(merged)
        changes = normalize_template_fields(changes)
        # Only fields the caller actually sent are written back
        changes = {key: value for key, value in changes.items() if key in updates}

        try:
            for key, value in changes.items():
                setattr(template, key, value)
            template.updated_at = utcnow()
            await self.session.flush()
        except Exception as e:
            raise DatabaseOperationError(f"Failed to update template: {e}") from e

        await self.audit.log(
            guild_id=guild_id,
            user_id=actor_id,
            action=AuditAction.TEMPLATE_UPDATED,
            details={"templateId": str(template.id), "updates": changes},
            ip_address=ip_address,
        )
        return template

    async def soft_delete(
        self,
        template_id: Union[str, UUID],
        guild_id: str,
        actor_id: str,
        ip_address: Optional[str] = None
    ) -> MessageTemplate:
        """Deactivate a template.

        Raises:
            NotFoundError: If the template is missing or already deleted
        """
        template = await self.get(template_id, guild_id)
        template.is_active = False
        template.updated_at = utcnow()
        await self.session.flush()

        await self.audit.log(
            guild_id=guild_id,
            user_id=actor_id,
            action=AuditAction.TEMPLATE_DELETED,
            details={"templateId": str(template.id), "name": template.name},
            ip_address=ip_address,
        )
        return template

    async def schedule(
        self,
        template_id: Union[str, UUID],
        scheduled_for: Union[str, datetime],
        guild_id: str,
        actor_id: str,
        ip_address: Optional[str] = None
    ) -> MessageTemplate:
        """Set when a template should be sent.

        Raises:
            ValidationError: If scheduled_for can't be parsed
            NotFoundError: If the template isn't accessible
        """
        when = parse_datetime(scheduled_for)
        if when is None:
            raise ValidationError("Invalid scheduled date", ["Invalid scheduled date"])

        template = await self.get(template_id, guild_id)
        template.scheduled_for = when
        template.updated_at = utcnow()
        await self.session.flush()

        await self.audit.log(
            guild_id=guild_id,
            user_id=actor_id,
            action=AuditAction.TEMPLATE_SCHEDULED,
            details={"templateId": str(template.id), "scheduledFor": when},
            ip_address=ip_address,
        )
        return template


class GuildConfigOperations:
    """Per-guild configuration, created with defaults on first read."""

    def __init__(self, session: AsyncSession, audit: Optional[AuditLogOperations] = None):
        self.session = session
        self.audit = audit or AuditLogOperations(session)

    async def get_or_create(self, guild_id: str) -> GuildConfig:
        """Get a guild's config, creating the default one if needed.

        Raises:
            DatabaseOperationError: If query or creation fails
        """
        try:
            config = await self.session.get(GuildConfig, guild_id)
            if config is None:
                config = GuildConfig(guild_id=guild_id)
                self.session.add(config)
                await self.session.flush()
                logger.info(f"Created default config for guild {guild_id}")
            return config
        except Exception as e:
            raise DatabaseOperationError(f"Failed to get guild config: {e}") from e

    async def update(
        self,
        guild_id: str,
        updates: Dict[str, Any],
        actor_id: str,
        ip_address: Optional[str] = None
    ) -> GuildConfig:
        """Apply updates to a guild's config, creating it if needed.

        Args:
            guild_id: Discord guild snowflake ID
            updates: Fields to change; unknown keys are ignored
            actor_id: Discord user performing the update
            ip_address: Requesting client address, if any

        Returns:
            GuildConfig: Updated configuration
        """
        config = await self.get_or_create(guild_id)
        changes = {key: updates[key] for key in CONFIG_UPDATABLE_FIELDS if key in updates}

        try:
            for key, value in changes.items():
                setattr(config, key, list(value) if isinstance(value, (list, tuple)) else value)
            config.updated_by = actor_id
            config.updated_at = utcnow()
            await self.session.flush()
        except GuildhallError:
            raise
        except Exception as e:
            raise DatabaseOperationError(f"Failed to update guild config: {e}") from e

        await self.audit.log(
            guild_id=guild_id,
            user_id=actor_id,
            action=AuditAction.CONFIG_UPDATED,
            details={"updates": changes},
            ip_address=ip_address,
        )
        return config
