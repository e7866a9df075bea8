"""In-memory request throttling for login and import endpoints.

Hits are counted per `(scope, client)` over a sliding window, so the
routes sharing a scope (register + login, bulk + upload) share one
budget per client address. State lives in the process; a multi-worker
deployment gets one budget per worker.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0

    def headers(self) -> dict:
        out = {"X-RateLimit-Limit": str(self.limit), "X-RateLimit-Remaining": str(self.remaining)}
        if not self.allowed:
            out["Retry-After"] = str(self.retry_after)
        return out


class RateLimitExceeded(Exception):
    def __init__(self, scope: str, result: RateLimitResult):
        super().__init__(f"rate limit exceeded; retry after {result.retry_after}s")
        self.scope = scope
        self.result = result


class InMemoryRateLimiter:
    """Sliding-window counter keyed by scope and client."""

    def __init__(self):
        self._hits = defaultdict(deque)
        self._lock = threading.Lock()

    def hit(self, scope: str, client: str, limit: int, window_seconds: int) -> RateLimitResult:
        """Record one request; a rejected request does not use up budget."""
        now = time.monotonic()
        with self._lock:
            q = self._hits[(scope, client)]
            while q and q[0] <= now - window_seconds:
                q.popleft()
            if len(q) >= limit:
                retry_after = max(1, int(q[0] + window_seconds - now))
                return RateLimitResult(False, limit, 0, retry_after)
            q.append(now)
            return RateLimitResult(True, limit, limit - len(q))

    def check(self, scope: str, client: str, limit: int, window_seconds: int) -> RateLimitResult:
        """Like `hit` but raises `RateLimitExceeded` when over the limit."""
        result = self.hit(scope, client, limit, window_seconds)
        if not result.allowed:
            raise RateLimitExceeded(scope, result)
        return result

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
