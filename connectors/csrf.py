"""
CSRF state tokens for the OAuth authorization round trip.

Tokens are random 256-bit values held in process memory, bound to one
(user, provider) pair, valid for ``oauth_state_ttl_seconds`` and consumed by
the first validation attempt whatever its outcome.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizationState:
    token: str
    user_id: str
    provider: str
    issued_at: float
    expires_at: float


class CSRFStateGuard:
    def __init__(self, ttl_seconds: int = 600, *, clock: Callable[[], float] = time.time) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._states: Dict[str, AuthorizationState] = {}
        self._lock = threading.Lock()

    def _purge_expired(self, now: float) -> None:
        expired = [token for token, st in self._states.items() if st.expires_at <= now]
        for token in expired:
            del self._states[token]

    def generate_state_token(self, user_id: str, provider: str) -> str:
        now = self._clock()
        token = secrets.token_hex(32)
        with self._lock:
            self._purge_expired(now)
            self._states[token] = AuthorizationState(
                token=token,
                user_id=user_id,
                provider=provider,
                issued_at=now,
                expires_at=now + self._ttl,
            )
        return token

    def validate_state_token(self, state: str, user_id: str, provider: str) -> bool:
        with self._lock:
            entry = self._states.pop(state, None)
        if entry is None:
            logger.warning("Unknown or already used OAuth state for %s", provider)
            return False
        if entry.expires_at <= self._clock():
            logger.warning("Expired OAuth state for %s/%s", user_id, provider)
            return False
        if entry.user_id != user_id or entry.provider != provider:
            logger.warning("OAuth state issued for another user or provider (%s)", provider)
            return False
        return True

    def cleanup_user_tokens(self, user_id: str) -> int:
        with self._lock:
            tokens = [token for token, st in self._states.items() if st.user_id == user_id]
            for token in tokens:
                del self._states[token]
        return len(tokens)

    def __len__(self) -> int:
        return len(self._states)
