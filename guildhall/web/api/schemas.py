"""Pydantic schemas for the dashboard API.

Every JSON body uses camelCase keys. Response models read straight from ORM
objects (``from_attributes``) and are wrapped in the
``{success, data, error}`` envelope by ``envelope()``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# Envelope

def envelope(data: Any = None) -> Dict[str, Any]:
    """Wrap a successful payload, serializing models with camelCase keys."""
    return {"success": True, "data": jsonable_encoder(data, by_alias=True)}


def error_envelope(message: str, errors: Optional[List[str]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "error": message}
    if errors:
        body["errors"] = errors
    return body


# Auth

class TokenRequest(CamelModel):
    user_id: str = Field(min_length=1)
    discord_id: str = Field(min_length=1)


class TokenResponse(CamelModel):
    token: str


class BotInfoResponse(CamelModel):
    id: Optional[str]
    connected: bool
    guild_count: Optional[int] = None
    invite_url: str


# Templates

class EmbedField(CamelModel):
    name: str
    value: str
    inline: bool = False


class EmbedFooter(CamelModel):
    text: str
    icon_url: Optional[str] = None


class EmbedSpec(CamelModel):
    """One embed; unknown keys are kept so newer dashboard fields survive."""

    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    description: Optional[str] = None
    color: Optional[Union[int, str]] = None
    fields: List[EmbedField] = Field(default_factory=list)
    thumbnail: Optional[Union[str, Dict[str, Any]]] = None
    image: Optional[Union[str, Dict[str, Any]]] = None
    footer: Optional[Union[EmbedFooter, str]] = None
    timestamp: Optional[Union[bool, str]] = None


def normalize_embed(embed: Any) -> Any:
    """Canonical stored shape for an embed that fits ``EmbedSpec``.

    Anything else is returned untouched for the template store to report.
    """
    if not isinstance(embed, dict):
        return embed
    try:
        return EmbedSpec.model_validate(embed).model_dump(exclude_none=True)
    except PydanticValidationError:
        return embed


class TemplateBase(CamelModel):
    # Shapes are checked by the template store alongside every other field
    embeds: Optional[Any] = None
    # Rows are stored as sent; unsupported component types are dropped at render time
    components: Optional[Any] = None
    channel_id: Optional[str] = None
    scheduled_for: Optional[Any] = None

    def to_store(self, exclude_unset: bool = False) -> Dict[str, Any]:
        """Field dict keyed by model attribute name, well-formed embeds normalized."""
        data = self.model_dump(exclude_unset=exclude_unset)
        if isinstance(data.get("embeds"), list):
            data["embeds"] = [normalize_embed(embed) for embed in data["embeds"]]
        return data


class TemplateCreate(TemplateBase):
    # Empty defaults let the store report every missing field at once
    name: str = ""
    content: str = ""


class TemplateUpdate(TemplateBase):
    name: Optional[str] = None
    content: Optional[str] = None


class SendTemplateRequest(CamelModel):
    channel_id: str = Field(min_length=1)


class ScheduleTemplateRequest(CamelModel):
    scheduled_for: Optional[str] = None


class TemplateResponse(CamelModel):
    id: UUID
    guild_id: str
    name: str
    content: str
    embeds: List[Dict[str, Any]]
    components: List[Dict[str, Any]]
    channel_id: Optional[str]
    scheduled_for: Optional[datetime]
    created_by: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


class SendResult(CamelModel):
    message_id: str
    channel_id: str


# Premium

class CheckoutRequest(CamelModel):
    price_id: str = Field(min_length=1)
    guild_id: str = Field(min_length=1)
    success_url: str = Field(min_length=1)
    cancel_url: str = Field(min_length=1)


class CheckoutResponse(CamelModel):
    session_id: str
    url: str


class CancelSubscriptionRequest(CamelModel):
    reason: Optional[str] = None


class OverrideRequest(CamelModel):
    guild_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    tier: Literal["monthly", "lifetime"]


class EntitlementResponse(CamelModel):
    id: UUID
    user_id: str
    guild_id: str
    tier: str
    status: str
    external_subscription_id: Optional[str]
    current_period_end: datetime
    purchased_at: datetime
    canceled_at: Optional[datetime]


class GuildPremiumResponse(CamelModel):
    is_premium: bool
    subscription: Optional[EntitlementResponse] = None


# Guild configuration

class GuildConfigUpdate(CamelModel):
    auto_assign_roles: Optional[List[str]] = None
    admin_roles: Optional[List[str]] = None
    moderator_roles: Optional[List[str]] = None
    welcome_channel_id: Optional[str] = None
    welcome_message: Optional[str] = None
    audit_channel_id: Optional[str] = None


class GuildConfigResponse(CamelModel):
    guild_id: str
    auto_assign_roles: List[str]
    admin_roles: List[str]
    moderator_roles: List[str]
    welcome_channel_id: Optional[str]
    welcome_message: Optional[str]
    audit_channel_id: Optional[str]
    updated_by: str
    created_at: datetime
    updated_at: datetime


class UserPermissionsResponse(CamelModel):
    is_admin: bool
    is_moderator: bool


class RoleResponse(CamelModel):
    id: str
    name: str
    color: int
    position: int


class ChannelResponse(CamelModel):
    id: str
    name: str
    position: int


class AuditLogResponse(CamelModel):
    id: UUID
    guild_id: str
    user_id: str
    action: str
    details: Dict[str, Any]
    timestamp: datetime
    ip_address: Optional[str]
