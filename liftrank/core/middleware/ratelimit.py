import hashlib
import time
from typing import Callable, Dict, NamedTuple, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from liftrank.core.config import settings
from liftrank.core.errors import RateLimitError, app_error_handler
from liftrank.core.logging import get_request_id
from liftrank.core.metrics import normalize_path, ratelimit_block_total
from liftrank.core.ratelimit import InMemoryRateLimiter, RateLimitConfig, build_rate_limit_config

# Admin operations trigger full re-ranks; they get the smallest budget
ADMIN_PATHS = frozenset({"/api/recalculate-rankings", "/api/updateRankingWeights"})

_WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class RoutePolicy(NamedTuple):
    category: str
    per_minute: int
    burst: int


def _scaled(value: int, factor: float) -> int:
    return max(1, int(value * factor))


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client token buckets for /api routes: reads, metric writes and admin operations."""

    def __init__(self, app, *, config: Optional[RateLimitConfig] = None, time_fn: Optional[Callable[[], float]] = None):
        super().__init__(app)
        self.config = config or build_rate_limit_config(settings)
        self.limiter = InMemoryRateLimiter(self.config, time_fn=time_fn or time.monotonic)
        per_minute, burst = self.config.per_minute_default, self.config.burst_default
        self.policies: Dict[str, RoutePolicy] = {
            "read": RoutePolicy("read", per_minute, burst),
            "write": RoutePolicy("write", _scaled(per_minute, 0.5), _scaled(burst, 0.5)),
            "admin": RoutePolicy("admin", _scaled(per_minute, 0.1), _scaled(burst, 0.1)),
        }

    def policy_for(self, request: Request) -> Optional[RoutePolicy]:
        path = request.url.path
        if not path.startswith("/api/"):
            return None
        if path in ADMIN_PATHS:
            return self.policies["admin"]
        if request.method.upper() in _WRITE_METHODS:
            return self.policies["write"]
        return self.policies["read"]

    @staticmethod
    def client_key(request: Request) -> str:
        user_id = request.headers.get("X-User-Id")
        if user_id:
            return f"user:{user_id}"
        auth = request.headers.get("Authorization")
        if auth:
            # Bucket by token digest; the raw token never lands in memory keys
            return "token:" + hashlib.sha256(auth.encode()).hexdigest()[:16]
        ip = request.headers.get("x-forwarded-for") or (request.client.host if request.client else "unknown")
        return f"ip:{ip.split(',')[0].strip()}"

    async def dispatch(self, request: Request, call_next):
        if not self.config.enabled:
            return await call_next(request)
        policy = self.policy_for(request)
        if policy is None:
            return await call_next(request)

        key = f"{self.client_key(request)}:{policy.category}"
        if self.limiter.allow(key, per_minute=policy.per_minute, burst=policy.burst):
            return await call_next(request)

        ratelimit_block_total.inc(labels={"scope": normalize_path(request.url.path)})
        response = await app_error_handler(
            request,
            RateLimitError(
                "Rate limit exceeded for this endpoint",
                request_id=getattr(request.state, "request_id", None) or get_request_id(),
            ),
        )
        response.headers["Retry-After"] = str(self.limiter.retry_after(key, per_minute=policy.per_minute, burst=policy.burst))
        response.headers["X-RateLimit-Limit"] = str(policy.per_minute)
        response.headers["X-RateLimit-Remaining"] = "0"
        return response
