"""
JWT-style token creation and verification.

Tokens are base64-encoded JSON payloads signed with HMAC-SHA256.
The signing secret is passed in by the caller; when omitted it falls back to
``config.jwt_secret`` (env var: ``JWT_SECRET``).  The cron shared secret
(``CRON_SECRET``) is checked here as well.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import b64decode, b64encode
from typing import Optional

from fastapi import HTTPException, status

from config.settings import config


def _sign(raw: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


def create_token(user_id: str, expires_in: Optional[int] = None, *, secret: Optional[str] = None) -> str:
    """Create a signed token containing ``user_id`` and expiry."""
    payload = {
        "user_id": user_id,
        "exp": int(time.time()) + (expires_in or config.jwt_expiry_seconds),
    }
    raw = json.dumps(payload).encode()
    return b64encode(raw).decode() + "." + _sign(raw, secret or config.jwt_secret)


def verify_token(token: str, *, secret: Optional[str] = None) -> str:
    """
    Verify token and return ``user_id``.

    Raises ``HTTPException(401)`` on invalid or expired tokens.
    """
    try:
        parts = token.split(".", 1)
        if len(parts) != 2:
            raise ValueError("bad format")
        raw = b64decode(parts[0])
        if not hmac.compare_digest(parts[1], _sign(raw, secret or config.jwt_secret)):
            raise ValueError("bad signature")
        payload = json.loads(raw)
        if payload.get("exp", 0) < time.time():
            raise ValueError("token expired")
        return payload["user_id"]
    except (ValueError, KeyError, TypeError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or expired token: {exc}",
        )


def verify_cron_secret(authorization: Optional[str], secret: str) -> None:
    """Constant-time check of ``Authorization: Bearer <CRON_SECRET>``."""
    expected = f"Bearer {secret}"
    if not secret or not authorization or not hmac.compare_digest(
        authorization.encode(), expected.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
