"""In-memory stand-ins for Discord and Stripe used across the test suite."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

import hikari

from guildhall.bot.services.delivery import MessagePayload
from guildhall.bot.services.platform import ChannelInfo, GuildInfo, MemberInfo, RoleInfo
from guildhall.shared.exceptions import DeliveryError, PaymentProcessorError, WebhookSignatureError
from guildhall.web.billing import CheckoutSession, ProcessorSubscription

GUILD_ID = "111111111111111111"
OTHER_GUILD_ID = "999999999999999999"
USER_ID = "222222222222222222"
ADMIN_ID = "333333333333333333"
CHANNEL_ID = "444444444444444444"
BOT_ID = "555555555555555555"
ROLE_ID = "666666666666666666"
MOD_ROLE_ID = "777777777777777777"
STRANGER_ID = "888888888888888888"

VALID_SIGNATURE = "t=1,v1=valid"


class FakePlatform:
    """ChatPlatform backed by dictionaries."""

    def __init__(self) -> None:
        self.guilds: Dict[str, GuildInfo] = {}
        self.channels: Dict[str, ChannelInfo] = {}
        self.members: Dict[tuple, MemberInfo] = {}
        self.roles: Dict[str, List[RoleInfo]] = {}
        self.sent: List[tuple] = []
        self.texts: List[tuple] = []
        self.dms: List[tuple] = []
        self.fail_sends = False
        self._next_message_id = 1000

    @property
    def bot_user_id(self) -> Optional[str]:
        return BOT_ID

    def guild_count(self) -> int:
        return len(self.guilds)

    def add_guild(self, guild_id: str = GUILD_ID, name: str = "Test Guild") -> GuildInfo:
        guild = GuildInfo(id=guild_id, name=name, owner_id=ADMIN_ID)
        self.guilds[guild_id] = guild
        self.roles.setdefault(guild_id, [RoleInfo(id=guild_id, name="@everyone", position=0)])
        return guild

    def add_channel(
        self, channel_id: str = CHANNEL_ID, guild_id: str = GUILD_ID, name: str = "general", is_text: bool = True
    ) -> ChannelInfo:
        channel = ChannelInfo(id=channel_id, name=name, guild_id=guild_id, is_text=is_text)
        self.channels[channel_id] = channel
        return channel

    def add_role(self, role: RoleInfo, guild_id: str = GUILD_ID) -> RoleInfo:
        self.roles.setdefault(guild_id, []).append(role)
        return role

    def add_member(
        self,
        user_id: str,
        guild_id: str = GUILD_ID,
        role_ids: Optional[List[str]] = None,
        permissions: hikari.Permissions = hikari.Permissions.NONE,
    ) -> MemberInfo:
        member = MemberInfo(
            id=user_id,
            tag=f"user{user_id[-4:]}",
            role_ids=list(role_ids or []),
            permissions=permissions,
        )
        self.members[(guild_id, user_id)] = member
        return member

    def _message_id(self) -> str:
        self._next_message_id += 1
        return str(self._next_message_id)

    async def fetch_guild(self, guild_id: str) -> Optional[GuildInfo]:
        return self.guilds.get(guild_id)

    async def fetch_channel(self, channel_id: str) -> Optional[ChannelInfo]:
        return self.channels.get(channel_id)

    async def fetch_member(self, guild_id: str, user_id: str) -> Optional[MemberInfo]:
        return self.members.get((guild_id, user_id))

    async def list_roles(self, guild_id: str) -> List[RoleInfo]:
        return list(self.roles.get(guild_id, []))

    async def list_text_channels(self, guild_id: str) -> List[ChannelInfo]:
        return [c for c in self.channels.values() if c.guild_id == guild_id and c.is_text]

    async def add_roles(
        self, guild_id: str, member_id: str, role_ids: List[str], reason: Optional[str] = None
    ) -> None:
        member = self.members[(guild_id, member_id)]
        member.role_ids.extend(role_ids)

    async def remove_role(
        self, guild_id: str, member_id: str, role_id: str, reason: Optional[str] = None
    ) -> None:
        member = self.members[(guild_id, member_id)]
        member.role_ids.remove(role_id)

    async def send_message(self, channel_id: str, payload: MessagePayload) -> str:
        if self.fail_sends:
            raise DeliveryError(f"Failed to send message to channel {channel_id}: Missing Access")
        self.sent.append((channel_id, payload))
        return self._message_id()

    async def send_text(self, channel_id: str, content: str) -> str:
        if self.fail_sends:
            raise DeliveryError(f"Failed to send message to channel {channel_id}: Missing Access")
        self.texts.append((channel_id, content))
        return self._message_id()

    async def send_direct_message(self, user_id: str, content: str) -> str:
        self.dms.append((user_id, content))
        return self._message_id()


class FakePayments:
    """PaymentProcessor that keeps subscriptions in memory.

    ``construct_event`` accepts only ``VALID_SIGNATURE`` and parses the
    payload as JSON.
    """

    def __init__(self) -> None:
        self.subscriptions: Dict[str, ProcessorSubscription] = {}
        self.canceled: List[str] = []
        self.checkouts: List[Dict[str, Any]] = []
        self.fail_retrieve = False

    def add_subscription(
        self,
        subscription_id: str,
        status: str = "active",
        interval: Optional[str] = "month",
        period_end: Optional[datetime] = None,
        customer_id: str = "cus_test",
    ) -> ProcessorSubscription:
        subscription = ProcessorSubscription(
            id=subscription_id,
            status=status,
            customer_id=customer_id,
            current_period_end=period_end or datetime.now(timezone.utc) + timedelta(days=30),
            interval=interval,
            metadata={},
        )
        self.subscriptions[subscription_id] = subscription
        return subscription

    async def retrieve_subscription(self, subscription_id: str) -> ProcessorSubscription:
        if self.fail_retrieve or subscription_id not in self.subscriptions:
            raise PaymentProcessorError(f"Failed to retrieve subscription {subscription_id}: No such subscription")
        return self.subscriptions[subscription_id]

    async def cancel_subscription(self, subscription_id: str) -> None:
        self.canceled.append(subscription_id)

    async def create_checkout_session(
        self, price_id: str, success_url: str, cancel_url: str, metadata: Dict[str, str]
    ) -> CheckoutSession:
        self.checkouts.append(
            {"price_id": price_id, "success_url": success_url, "cancel_url": cancel_url, "metadata": metadata}
        )
        return CheckoutSession(id=f"cs_test_{len(self.checkouts)}", url="https://checkout.stripe.test/pay")

    def construct_event(self, payload: bytes, signature: str) -> Mapping[str, Any]:
        if signature != VALID_SIGNATURE:
            raise WebhookSignatureError("Invalid signature: no signatures found matching the expected signature")
        return json.loads(payload)


def stripe_event(event_type: str, obj: Dict[str, Any], event_id: str = "evt_test") -> Dict[str, Any]:
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def checkout_completed(
    subscription_id: str = "sub_123",
    customer_id: str = "cus_test",
    guild_id: Optional[str] = GUILD_ID,
    user_id: Optional[str] = USER_ID,
) -> Dict[str, Any]:
    metadata = {}
    if guild_id:
        metadata["guildId"] = guild_id
    if user_id:
        metadata["userId"] = user_id
    return stripe_event(
        "checkout.session.completed",
        {
            "id": "cs_test_1",
            "subscription": subscription_id,
            "customer": customer_id,
            "metadata": metadata,
        },
    )
