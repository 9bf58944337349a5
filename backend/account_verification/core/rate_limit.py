"""In-memory rate limiting dependency."""

from __future__ import annotations

import time
from collections import deque
from threading import Lock
from typing import Deque

from fastapi import Request, Response

from account_verification.core.config import settings
from account_verification.core.exceptions import RateLimitExceeded


class SlidingWindowLimiter:
    def __init__(self) -> None:
        self._store: dict[str, Deque[float]] = {}
        self._lock = Lock()

    def hit(self, key: str, *, limit: int, window_seconds: int) -> tuple[bool, int, int]:
        if limit <= 0:
            return True, limit, 0
        now = time.time()
        cutoff = now - window_seconds
        with self._lock:
            queue = self._store.get(key)
            if queue is None:
                queue = deque()
                self._store[key] = queue
            while queue and queue[0] <= cutoff:
                queue.popleft()
            if len(queue) >= limit:
                retry_after = max(int(queue[0] + window_seconds - now), 1)
                return False, 0, retry_after
            queue.append(now)
            remaining = max(limit - len(queue), 0)
            return True, remaining, 0

    def reset(self) -> None:
        with self._lock:
            self._store.clear()


_limiter = SlidingWindowLimiter()


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _scope_limit(scope: str) -> int:
    if scope == "verify":
        return settings.RATE_LIMIT_VERIFY_MAX_REQUESTS
    if scope == "resend":
        return settings.RATE_LIMIT_RESEND_MAX_REQUESTS
    return settings.RATE_LIMIT_MAX_REQUESTS


def enforce_limit(key: str, scope: str, response: Response | None = None) -> None:
    if not settings.RATE_LIMIT_ENABLED:
        return
    limit = _scope_limit(scope)
    ok, remaining, retry_after = _limiter.hit(
        f"{scope}:{key}",
        limit=limit,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    )
    if response is not None:
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(max(remaining, 0))
        response.headers["X-RateLimit-Window"] = str(settings.RATE_LIMIT_WINDOW_SECONDS)
    if not ok:
        raise RateLimitExceeded(
            retry_after=retry_after,
            limit=limit,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        )


def rate_limit(scope: str = "default"):
    def _dependency(request: Request, response: Response) -> None:
        enforce_limit(_client_ip(request), scope, response)

    return _dependency


def reset_rate_limits() -> None:
    _limiter.reset()
