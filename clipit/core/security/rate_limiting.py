"""
Rate Limiting Module

Thread-safe in-memory fixed-window rate limiter.
Limits are per process; with several workers each keeps its own counters.
"""

import time
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, Optional, Tuple

from fastapi import Request

from clipit.core.security.constants import (
    CHUNK_RATE_LIMIT,
    CHUNK_UPLOAD_PATH,
    DEFAULT_RATE_LIMIT,
    DEFAULT_RATE_WINDOW,
)
from clipit.core.security.utils import get_client_ip


@dataclass
class RateLimitEntry:
    """Tracks rate limit state for a single key."""
    count: int = 0
    window_start: float = field(default_factory=time.time)


class RateLimiter:
    """Thread-safe in-memory rate limiter."""

    def __init__(self, limit: int = DEFAULT_RATE_LIMIT, window: int = DEFAULT_RATE_WINDOW):
        self.limit = limit
        self.window = window
        self._entries: Dict[str, RateLimitEntry] = defaultdict(RateLimitEntry)
        self._lock = Lock()
        self._cleanup_counter = 0
        self._cleanup_threshold = 1000  # Cleanup every N checks

    def _cleanup_expired(self) -> None:
        """Remove expired entries to prevent memory growth."""
        now = time.time()
        expired_keys = [
            key for key, entry in self._entries.items()
            if now - entry.window_start > self.window * 2
        ]
        for key in expired_keys:
            del self._entries[key]

    def is_allowed(self, key: str) -> Tuple[bool, int, int]:
        """
        Check if request is allowed under rate limit.

        Returns:
            Tuple of (allowed, remaining, reset_seconds)
        """
        now = time.time()

        with self._lock:
            self._cleanup_counter += 1
            if self._cleanup_counter >= self._cleanup_threshold:
                self._cleanup_expired()
                self._cleanup_counter = 0

            entry = self._entries[key]

            if now - entry.window_start > self.window:
                entry.count = 0
                entry.window_start = now

            reset_time = max(int(entry.window_start + self.window - now), 1)
            if entry.count >= self.limit:
                return False, 0, reset_time

            entry.count += 1
            return True, self.limit - entry.count, reset_time

    def get_key_for_request(self, request: Request, user_id: Optional[str] = None) -> str:
        """Generate rate limit key from request."""
        if user_id:
            return f"user:{user_id}"
        return f"ip:{get_client_ip(request)}"

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()


_api_limiter = RateLimiter(limit=DEFAULT_RATE_LIMIT, window=DEFAULT_RATE_WINDOW)
_chunk_limiter = RateLimiter(limit=CHUNK_RATE_LIMIT, window=DEFAULT_RATE_WINDOW)


def get_api_rate_limiter() -> RateLimiter:
    """Get the global API rate limiter."""
    return _api_limiter


def get_chunk_rate_limiter() -> RateLimiter:
    """Get the limiter for chunk submissions, which arrive in bursts."""
    return _chunk_limiter


def limiter_for_path(path: str) -> RateLimiter:
    if path == CHUNK_UPLOAD_PATH:
        return _chunk_limiter
    return _api_limiter
