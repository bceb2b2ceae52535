"""
Rate Limiting Middleware

Sliding-window limits per client on login, registration and the lifecycle
write endpoints. Counters live in process memory, so each worker of a
multi-worker deployment keeps its own.
"""
from collections import defaultdict, deque
from typing import Deque, Dict, NamedTuple, Optional, Tuple
import logging
import threading
import time

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from backoffice.core.config import settings

logger = logging.getLogger(__name__)

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}


class Rule(NamedTuple):
    limit: int
    window: int  # seconds


def default_rules() -> Dict[str, Rule]:
    """Path prefix -> rule; the first matching prefix wins"""
    lifecycle = Rule(settings.RATE_LIMIT_LIFECYCLE, 60)
    return {
        "/api/v1/auth/login": Rule(settings.RATE_LIMIT_LOGIN, 60),
        "/api/v1/auth/register": Rule(settings.RATE_LIMIT_REGISTER, 300),
        "/api/v1/sales": lifecycle,
        "/api/v1/purchases": lifecycle,
        "/api/v1/invoice": lifecycle,
        "/api/v1/refunds": lifecycle,
    }


class RateLimiter:
    """Thread-safe in-memory limiter, one bucket per (client, rule prefix)"""

    def __init__(self, rules: Optional[Dict[str, Rule]] = None, clock=time.monotonic):
        self.rules = rules if rules is not None else default_rules()
        self.fallback = Rule(settings.RATE_LIMIT_DEFAULT, 60)
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    @staticmethod
    def client_id(request: Request) -> str:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    def match(self, path: str) -> Tuple[str, Rule]:
        for prefix, rule in self.rules.items():
            if path.startswith(prefix):
                return prefix, rule
        return "*", self.fallback

    def check(self, request: Request) -> Tuple[bool, Optional[Dict[str, int]]]:
        """
        Record the request and report whether it is within its limit.

        Reads are never limited except on auth paths.
        """
        path = request.url.path
        if request.method in SAFE_METHODS and not path.startswith("/api/v1/auth"):
            return True, None

        prefix, rule = self.match(path)
        key = f"{self.client_id(request)}|{prefix}"
        now = self._clock()

        with self._lock:
            hits = self._hits[key]
            while hits and hits[0] <= now - rule.window:
                hits.popleft()

            if len(hits) >= rule.limit:
                retry_after = max(1, int(hits[0] + rule.window - now))
                logger.warning("Rate limit hit for %s (%d/%ds)", key, rule.limit, rule.window)
                return False, {"limit": rule.limit, "remaining": 0, "retry_after": retry_after}

            hits.append(now)
            return True, {"limit": rule.limit, "remaining": rule.limit - len(hits)}

    def reset(self):
        with self._lock:
            self._hits.clear()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Applies a RateLimiter to /api/ requests while RATE_LIMIT_ENABLED is set"""

    def __init__(self, app, rate_limiter: Optional[RateLimiter] = None):
        super().__init__(app)
        self.rate_limiter = rate_limiter or RateLimiter()

    async def dispatch(self, request: Request, call_next):
        if not settings.RATE_LIMIT_ENABLED or not request.url.path.startswith("/api/"):
            return await call_next(request)

        allowed, info = self.rate_limiter.check(request)
        if not allowed:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "message": "Too many requests. Please try again later.",
                    "retry_after": info["retry_after"],
                },
                headers={
                    "Retry-After": str(info["retry_after"]),
                    "X-RateLimit-Limit": str(info["limit"]),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        if info:
            response.headers["X-RateLimit-Limit"] = str(info["limit"])
            response.headers["X-RateLimit-Remaining"] = str(info["remaining"])
        return response
