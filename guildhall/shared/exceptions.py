"""Exception hierarchy shared by the bot and the web API.

Store and service methods raise these; the API layer translates them into
the JSON response envelope using ``status_code`` and ``error_type``.
"""

from __future__ import annotations

from typing import List, Optional


class GuildhallError(Exception):
    """Base exception for all application errors."""

    status_code = 500
    error_type = "internal_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(GuildhallError):
    """Raised when input fails validation.

    Carries every violated constraint, not just the first one found.
    """

    status_code = 400
    error_type = "validation_error"

    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class NotFoundError(GuildhallError):
    """Raised when a requested record is missing or inaccessible."""

    status_code = 404
    error_type = "not_found_error"


class AuthenticationError(GuildhallError):
    """Raised when a credential is missing, invalid or expired."""

    status_code = 401
    error_type = "authentication_error"


class InvalidTokenError(AuthenticationError):
    """Raised when a bearer token is present but invalid or expired."""

    status_code = 403
    error_type = "invalid_token"


class PermissionDeniedError(GuildhallError):
    """Raised when an authenticated caller may not perform an action."""

    status_code = 403
    error_type = "permission_denied"


class PremiumRequiredError(PermissionDeniedError):
    """Raised when a feature requires an active guild premium entitlement."""

    error_type = "premium_required"


class DependencyError(GuildhallError):
    """Raised when an external platform or processor call fails."""

    status_code = 500
    error_type = "dependency_error"


class DeliveryError(DependencyError):
    """Raised when the chat platform rejects a message send."""

    status_code = 400
    error_type = "delivery_error"


class PaymentProcessorError(DependencyError):
    """Raised when a payment processor call fails."""

    error_type = "payment_processor_error"


class WebhookSignatureError(GuildhallError):
    """Raised when a webhook payload fails signature verification."""

    status_code = 400
    error_type = "webhook_signature_error"


class DatabaseOperationError(GuildhallError):
    """Raised when a database operation fails unexpectedly."""

    error_type = "database_error"
