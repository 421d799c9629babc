"""Dashboard session tokens (HS256 JWTs)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

from guildhall.shared.config import Settings
from guildhall.shared.exceptions import InvalidTokenError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity carried by a dashboard token."""
    user_id: str
    discord_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"userId": self.user_id, "discordId": self.discord_id}


def issue_token(settings: Settings, user_id: str, discord_id: str) -> str:
    """Sign a token for a dashboard user, valid for ``jwt_expiry_minutes``."""
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user_id,
        "discordId": discord_id,
        "iat": now,
        "exp": now + timedelta(minutes=settings.jwt_expiry_minutes),
    }
    return jwt.encode(payload, settings.dashboard_jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(settings: Settings, token: str) -> AuthenticatedUser:
    """Decode and verify a dashboard token.

    Raises:
        InvalidTokenError: If the signature, claims or expiry don't check out
    """
    try:
        payload: Dict[str, Any] = jwt.decode(
            token,
            settings.dashboard_jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise InvalidTokenError("Invalid or expired token") from e
    except jwt.InvalidTokenError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise InvalidTokenError("Invalid or expired token") from e

    user_id = payload.get("userId")
    discord_id = payload.get("discordId")
    if not user_id or not discord_id:
        raise InvalidTokenError("Invalid or expired token")

    return AuthenticatedUser(user_id=str(user_id), discord_id=str(discord_id))
