"""
Token-bucket rate limiting primitives.

Buckets live in process memory, one per client key and route class, so limits
are per API replica. Disabled unless RATE_LIMIT_ENABLED is set.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple


@dataclass
class RateLimitConfig:
    enabled: bool = False
    per_minute_default: int = 120
    burst_default: int = 30


class TokenBucket:
    """`capacity` tokens, refilled continuously at `refill_rate_per_sec`."""

    def __init__(self, capacity: int, refill_rate_per_sec: float, time_fn: Callable[[], float] = time.monotonic):
        self.capacity = max(1, capacity)
        self.refill_rate = max(0.0, refill_rate_per_sec)
        self.time_fn = time_fn
        self.tokens = float(self.capacity)
        self.updated_at = time_fn()

    def _refill(self) -> None:
        now = self.time_fn()
        if now > self.updated_at:
            self.tokens = min(float(self.capacity), self.tokens + (now - self.updated_at) * self.refill_rate)
            self.updated_at = now

    def allow(self, cost: float = 1.0) -> bool:
        self._refill()
        if self.tokens < cost:
            return False
        self.tokens -= cost
        return True

    def retry_after(self, cost: float = 1.0) -> int:
        """Whole seconds until `cost` tokens are available again (at least 1)."""
        missing = max(0.0, cost - self.tokens)
        if self.refill_rate <= 0:
            return 60
        return max(1, math.ceil(missing / self.refill_rate))


class InMemoryRateLimiter:
    def __init__(self, config: RateLimitConfig, time_fn: Callable[[], float] = time.monotonic):
        self.config = config
        self.time_fn = time_fn
        self._buckets: Dict[Tuple[str, int, int], TokenBucket] = {}
        self._lock = threading.Lock()

    def bucket(self, key: str, *, per_minute: int, burst: int) -> TokenBucket:
        # A policy change gets a fresh bucket rather than resizing the old one
        bucket_key = (key, per_minute, burst)
        bucket = self._buckets.get(bucket_key)
        if bucket is None:
            bucket = TokenBucket(burst, per_minute / 60.0, self.time_fn)
            self._buckets[bucket_key] = bucket
        return bucket

    def allow(self, key: str, *, per_minute: int, burst: int) -> bool:
        with self._lock:
            return self.bucket(key, per_minute=per_minute, burst=burst).allow()

    def retry_after(self, key: str, *, per_minute: int, burst: int) -> int:
        with self._lock:
            return self.bucket(key, per_minute=per_minute, burst=burst).retry_after()


def build_rate_limit_config(settings_obj) -> RateLimitConfig:
    return RateLimitConfig(
        enabled=bool(settings_obj.RATE_LIMIT_ENABLED),
        per_minute_default=max(1, int(settings_obj.RATE_LIMIT_PER_MINUTE_DEFAULT)),
        burst_default=max(1, int(settings_obj.RATE_LIMIT_BURST_DEFAULT)),
    )
