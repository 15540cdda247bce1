"""
FastAPI dependencies for authentication.

Provides ``get_current_user_id`` for user routes and ``require_cron_secret``
for scheduler routes.  Both read secrets from the settings the app was built
with (``app.state.services.settings``).
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from auth.jwt import verify_cron_secret, verify_token
from utils.validators import validate_user_id

_bearer_scheme = HTTPBearer()


async def get_current_user_id(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """
    Extract and verify the Bearer token, returning the authenticated
    ``user_id`` (UUID string).
    """
    settings = request.app.state.services.settings
    return validate_user_id(verify_token(credentials.credentials, secret=settings.jwt_secret))


async def require_cron_secret(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> None:
    verify_cron_secret(authorization, request.app.state.services.settings.cron_secret)
