"""
auth/throttle.py -- Per-identity login failure throttle.

Buckets are keyed by "ip:normalized_email", so repeated failures from one
origin slow that origin down without locking the legitimate user out from
somewhere else. State is process-local and non-persistent: a restart resets
every counter. This is a best-effort brake, not a security boundary.

This complements the coarse per-IP request cap in api/limiter.py (slowapi),
which counts every request. LoginThrottle counts only failures and is cleared
by a successful login.

The throttle is an injected object (one per app, held on app.state) rather
than a module-level map, so tests get a fresh instance with a fake clock.
All bucket mutations happen under one lock; uvicorn may run sync handlers in
a thread pool.
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

WINDOW_SECONDS = 10 * 60
MAX_ATTEMPTS = 8
BLOCK_SECONDS = 10 * 60


@dataclass
class _Bucket:
    count: int
    window_start: float
    blocked_until: float = 0.0


@dataclass(frozen=True)
class ThrottleState:
    allowed: bool
    retry_after_seconds: int = 0


def throttle_key(ip_address: str | None, email: str) -> str:
    """Build the bucket key for an (IP, normalized email) pair."""
    return f"{ip_address or 'unknown'}:{email}"


class LoginThrottle:
    """Sliding failure bucket per key.

    Usage:
        throttle = LoginThrottle()
        state = throttle.check_allowed(key)
        if not state.allowed: ... 429, Retry-After: state.retry_after_seconds
        throttle.record_failure(key)   # on bad credentials
        throttle.record_success(key)   # on successful login
    """

    def __init__(
        self,
        max_attempts: int = MAX_ATTEMPTS,
        window_seconds: float = WINDOW_SECONDS,
        block_seconds: float = BLOCK_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.block_seconds = block_seconds
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def check_allowed(self, key: str) -> ThrottleState:
        """Deny while the key is blocked; reset a bucket whose window has lapsed."""
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                return ThrottleState(allowed=True)
            now = self._clock()
            if bucket.blocked_until > now:
                return ThrottleState(
                    allowed=False,
                    retry_after_seconds=max(1, math.ceil(bucket.blocked_until - now)),
                )
            if now - bucket.window_start > self.window_seconds:
                self._buckets[key] = _Bucket(count=0, window_start=now)
            return ThrottleState(allowed=True)

    def record_failure(self, key: str) -> None:
        """Count a failed attempt; block the key once the threshold is reached."""
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)
            if bucket is None or now - bucket.window_start > self.window_seconds:
                bucket = _Bucket(count=0, window_start=now)
                self._buckets[key] = bucket
            bucket.count += 1
            if bucket.count >= self.max_attempts:
                bucket.blocked_until = now + self.block_seconds

    def record_success(self, key: str) -> None:
        """Forget the key entirely."""
        with self._lock:
            self._buckets.pop(key, None)
