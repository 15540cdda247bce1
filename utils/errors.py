"""
Error taxonomy for the integration service.

Every error carries an HTTP status and a user-safe message so the API layer
can translate it without inspecting internals.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class IntegrationError(Exception):
    """Base class for all integration errors."""

    status_code: int = 500
    default_user_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        user_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.user_message = user_message or self.default_user_message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "message": self.user_message}


class ValidationError(IntegrationError):
    status_code = 400
    default_user_message = "Invalid request"

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("user_message", message)
        super().__init__(message, **kwargs)


class NotConnectedError(IntegrationError):
    status_code = 404
    default_user_message = "Integration is not connected"


class ReauthRequiredError(IntegrationError):
    status_code = 401
    default_user_message = "Reauthorization required. Please reconnect your account."


class OAuthExchangeError(IntegrationError):
    status_code = 502
    default_user_message = "The provider rejected the authorization request"

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        body: str = "",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status = status
        self.body = body


class DecryptionError(IntegrationError):
    status_code = 500
    default_user_message = "Stored credentials could not be read. Please reconnect your account."


class CSRFValidationError(IntegrationError):
    status_code = 400
    default_user_message = "Invalid or expired authorization state"


class RateLimitExceededError(IntegrationError):
    status_code = 429
    default_user_message = "Rate limit exceeded"

    def __init__(self, message: str, *, result: Any = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.result = result


class ProviderAPIError(IntegrationError):
    """A provider call failed. ``retryable`` separates transient faults (5xx,
    network, timeout) from permanent ones (4xx)."""

    status_code = 503
    default_user_message = "The provider is currently unavailable"

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        retryable: Optional[bool] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status = status
        if retryable is None:
            retryable = status is None or status >= 500 or status == 429
        self.retryable = retryable


class SyncInProgressError(IntegrationError):
    status_code = 409
    default_user_message = "A sync for this integration is already running"


class ProviderConfigurationError(IntegrationError):
    """Raised at startup when an enabled provider is missing configuration."""


class EncryptionKeyError(IntegrationError):
    """Raised at startup when the master encryption key is malformed."""
