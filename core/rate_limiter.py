"""
Fixed-window rate limiting for user-triggered actions.

Counters live in process memory keyed by ``action:user_id``.  A window opens
on the first request and resets once ``window_seconds`` have elapsed.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from config.settings import Settings, config
from utils.errors import RateLimitExceededError

logger = logging.getLogger(__name__)


class RateLimitPolicy(str, Enum):
    SYNC = "sync"
    SUMMARY = "summary"
    GENERAL = "general"


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds
    retry_after: Optional[int] = None


@dataclass
class _Window:
    started_at: float
    count: int


class RateLimiter:
    def __init__(self, settings: Settings = config, *, clock: Callable[[], float] = time.time) -> None:
        self._window = settings.rate_limit_window_seconds
        self._limits: Dict[RateLimitPolicy, int] = {
            RateLimitPolicy.SYNC: settings.rate_limit_sync,
            RateLimitPolicy.SUMMARY: settings.rate_limit_summary,
            RateLimitPolicy.GENERAL: settings.rate_limit_general,
        }
        self._clock = clock
        self._records: Dict[str, _Window] = {}
        self._last_purge = clock()
        self._lock = threading.Lock()

    @staticmethod
    def _key(policy: RateLimitPolicy, user_id: str) -> str:
        return f"{policy.value}:{user_id}"

    def limit_for(self, policy: RateLimitPolicy) -> int:
        return self._limits[policy]

    def _purge_expired(self, now: float) -> int:
        """Drop expired windows. Caller holds the lock."""
        stale = [k for k, rec in self._records.items() if now - rec.started_at >= self._window]
        for k in stale:
            del self._records[k]
        self._last_purge = now
        return len(stale)

    def check(self, policy: RateLimitPolicy, user_id: str) -> RateLimitResult:
        """Count one request against the window and report whether it is allowed."""
        limit = self._limits[policy]
        key = self._key(policy, user_id)
        now = self._clock()
        with self._lock:
            # At most one sweep per window
            if now - self._last_purge >= self._window:
                self._purge_expired(now)
            record = self._records.get(key)
            if record is None or now - record.started_at >= self._window:
                record = _Window(started_at=now, count=0)
                self._records[key] = record
            reset_at = record.started_at + self._window
            if record.count >= limit:
                retry_after = max(1, math.ceil(reset_at - now))
                logger.warning("Rate limit hit: %s (%d/%d)", key, record.count, limit)
                return RateLimitResult(False, limit, 0, reset_at, retry_after)
            record.count += 1
            return RateLimitResult(True, limit, limit - record.count, reset_at)

    def enforce(self, policy: RateLimitPolicy, user_id: str) -> RateLimitResult:
        result = self.check(policy, user_id)
        if not result.allowed:
            raise RateLimitExceededError(
                f"Rate limit exceeded for {policy.value}",
                result=result,
                user_message=f"Too many requests. Try again in {result.retry_after} seconds.",
            )
        return result

    def get_status(self, policy: RateLimitPolicy, user_id: str) -> RateLimitResult:
        """Current standing without counting a request."""
        limit = self._limits[policy]
        now = self._clock()
        with self._lock:
            record = self._records.get(self._key(policy, user_id))
        if record is None or now - record.started_at >= self._window:
            return RateLimitResult(True, limit, limit, now + self._window)
        remaining = max(0, limit - record.count)
        return RateLimitResult(remaining > 0, limit, remaining, record.started_at + self._window)

    def reset(self, policy: RateLimitPolicy, user_id: str) -> None:
        with self._lock:
            self._records.pop(self._key(policy, user_id), None)

    def cleanup(self) -> int:
        """Drop windows that have already expired."""
        now = self._clock()
        with self._lock:
            return self._purge_expired(now)

    def __len__(self) -> int:
        return len(self._records)


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(int(result.reset_at)),
    }
    if result.retry_after is not None:
        headers["Retry-After"] = str(result.retry_after)
    return headers
