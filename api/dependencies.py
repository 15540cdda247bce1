"""
FastAPI dependencies (shared across routes).
"""

from __future__ import annotations

from fastapi import Request

from core.services import IntegrationServices
from utils.errors import ValidationError
from utils.validators import validate_provider


def get_services(request: Request) -> IntegrationServices:
    """Services are built once at startup and hung on ``app.state``."""
    return request.app.state.services


def enabled_provider(provider: str, request: Request) -> str:
    """Path-parameter guard: the provider must be known and enabled."""
    services = get_services(request)
    validate_provider(provider)
    if services.oauth.registry.get(provider) is None:
        raise ValidationError(f"Provider '{provider}' is not enabled", provider=provider)
    return provider
