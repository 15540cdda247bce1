"""
Input validators used by the API layer and at startup.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import Iterable

from utils.errors import ProviderConfigurationError, ValidationError
from utils.schemas import ALL_PROVIDERS

logger = logging.getLogger(__name__)

_STATE_RE = re.compile(r"^[a-f0-9]{64}$")
_CODE_RE = re.compile(r"^[A-Za-z0-9_\-./~]+$")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")

MAX_CODE_LENGTH = 512


def validate_provider(provider: str, allowed: Iterable[str] = ALL_PROVIDERS) -> str:
    if provider not in set(allowed):
        raise ValidationError(f"Unsupported provider: {provider}", provider=provider)
    return provider


def validate_state_format(state: str) -> bool:
    """A state token is 64 lowercase hex characters."""
    return bool(state) and bool(_STATE_RE.match(state))


def validate_authorization_code(code: str) -> bool:
    return bool(code) and len(code) <= MAX_CODE_LENGTH and bool(_CODE_RE.match(code))


def validate_user_id(user_id: str) -> str:
    try:
        return str(uuid.UUID(str(user_id)))
    except ValueError as exc:
        raise ValidationError("Invalid user id") from exc


def sanitize_string(value: str, max_length: int = 500) -> str:
    """Strip control characters and clamp length for values echoed to users."""
    return _CONTROL_CHARS_RE.sub("", value or "").strip()[:max_length]


def validate_enabled_providers(enabled: Iterable[str]) -> None:
    """Called once at startup; every enabled provider must be a known one."""
    unknown = [p for p in enabled if p not in ALL_PROVIDERS]
    if unknown:
        raise ProviderConfigurationError(f"Startup validation failed: unknown providers enabled: {unknown}")
    logger.info("Enabled providers validated: %s", ", ".join(enabled))
