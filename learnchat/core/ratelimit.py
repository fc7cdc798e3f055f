"""
Sliding-window rate limiter.

- Keyed by category + user id (or IP).
- Counter storage is injectable: in-memory for a single process, Redis
  sorted sets when several workers share limits.
- Disabled unless RATE_LIMIT_ENABLED is set.
"""

import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Optional

from redis import Redis

from learnchat.core.errors import ConfigError
from learnchat.core.metrics import ratelimit_tracked_keys

DEFAULT_LIMITS = {
    "chat": 60,
    "learning": 30,
    "conversation": 20,
    "api": 100,
    "auth": 5,
    "admin": 30,
}


@dataclass
class RateLimitConfig:
    enabled: bool = False
    backend: str = "memory"
    window_seconds: int = 60
    limits: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_LIMITS))

    def limit_for(self, category: str) -> int:
        return self.limits.get(category, self.limits.get("api", DEFAULT_LIMITS["api"]))


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_after: float

    @property
    def retry_after(self) -> int:
        return max(1, int(self.reset_after + 0.999))


class CounterStore:
    """Records a hit for `key` and reports the hits inside the window."""

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        raise NotImplementedError


class InMemoryCounterStore(CounterStore):
    def __init__(self, time_fn: Callable[[], float] = time.monotonic, sweep_interval: float = 60.0):
        self.time_fn = time_fn
        self.sweep_interval = sweep_interval
        self.hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = self.time_fn()

    def _sweep(self, now: float, window_seconds: int) -> None:
        if now - self._last_sweep < self.sweep_interval:
            return
        for key in [k for k, q in self.hits.items() if not q or q[-1] <= now - window_seconds]:
            del self.hits[key]
        self._last_sweep = now
        ratelimit_tracked_keys.set(len(self.hits))

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        with self._lock:
            now = self.time_fn()
            self._sweep(now, window_seconds)
            window = self.hits.setdefault(key, deque())
            cutoff = now - window_seconds
            while window and window[0] <= cutoff:
                window.popleft()

            if len(window) >= limit:
                reset_after = window[0] + window_seconds - now
                return RateLimitResult(allowed=False, limit=limit, remaining=0, reset_after=reset_after)

            window.append(now)
            reset_after = window[0] + window_seconds - now
            return RateLimitResult(allowed=True, limit=limit, remaining=limit - len(window), reset_after=reset_after)


class RedisCounterStore(CounterStore):
    """Sliding window on a sorted set per key (score = timestamp)."""

    def __init__(self, client, prefix: str = "learnchat:ratelimit:", time_fn: Callable[[], float] = time.time):
        self.client = client
        self.prefix = prefix
        self.time_fn = time_fn

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisCounterStore":
        return cls(Redis.from_url(url), **kwargs)

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        now = self.time_fn()
        redis_key = f"{self.prefix}{key}"
        member = f"{now}:{uuid.uuid4().hex}"

        pipe = self.client.pipeline()
        pipe.zremrangebyscore(redis_key, 0, now - window_seconds)
        pipe.zadd(redis_key, {member: now})
        pipe.zcard(redis_key)
        pipe.zrange(redis_key, 0, 0, withscores=True)
        pipe.expire(redis_key, window_seconds)
        _, _, count, oldest, _ = pipe.execute()

        oldest_score = oldest[0][1] if oldest else now
        reset_after = max(0.0, oldest_score + window_seconds - now)
        if count > limit:
            # Rejected hits do not consume the window
            self.client.zrem(redis_key, member)
            return RateLimitResult(allowed=False, limit=limit, remaining=0, reset_after=reset_after)
        return RateLimitResult(allowed=True, limit=limit, remaining=limit - count, reset_after=reset_after)


class RateLimiter:
    def __init__(self, config: RateLimitConfig, store: Optional[CounterStore] = None):
        self.config = config
        self.store = store or InMemoryCounterStore()

    def check(self, category: str, identifier: str) -> RateLimitResult:
        limit = self.config.limit_for(category)
        return self.store.hit(f"{category}:{identifier}", limit, self.config.window_seconds)


def build_rate_limit_config_from_env(env: dict, defaults: Optional[RateLimitConfig] = None) -> RateLimitConfig:
    base = defaults or RateLimitConfig()

    def _bool(name: str, default: bool) -> bool:
        raw = env.get(name)
        if raw is None:
            return default
        return str(raw).lower() in {"1", "true", "yes", "on"}

    def _int(name: str, default: int) -> int:
        raw = env.get(name)
        if raw is None:
            return default
        try:
            value = int(raw)
        except (TypeError, ValueError):
            return default
        return value if value > 0 else default

    limits = {
        category: _int(f"RATE_LIMIT_{category.upper()}", base.limits.get(category, default))
        for category, default in DEFAULT_LIMITS.items()
    }
    return RateLimitConfig(
        enabled=_bool("RATE_LIMIT_ENABLED", base.enabled),
        backend=str(env.get("RATE_LIMIT_BACKEND", base.backend)).lower(),
        window_seconds=_int("RATE_LIMIT_WINDOW_SECONDS", base.window_seconds),
        limits=limits,
    )


def build_rate_limit_config(settings_obj) -> RateLimitConfig:
    return RateLimitConfig(
        enabled=settings_obj.RATE_LIMIT_ENABLED,
        backend=settings_obj.RATE_LIMIT_BACKEND,
        window_seconds=settings_obj.RATE_LIMIT_WINDOW_SECONDS,
        limits={
            "chat": settings_obj.RATE_LIMIT_CHAT,
            "learning": settings_obj.RATE_LIMIT_LEARNING,
            "conversation": settings_obj.RATE_LIMIT_CONVERSATION,
            "api": settings_obj.RATE_LIMIT_API,
            "auth": settings_obj.RATE_LIMIT_AUTH,
            "admin": settings_obj.RATE_LIMIT_ADMIN,
        },
    )


def build_counter_store(config: RateLimitConfig, redis_url: Optional[str] = None, time_fn: Optional[Callable[[], float]] = None) -> CounterStore:
    if config.backend == "redis":
        if not redis_url:
            raise ConfigError("RATE_LIMIT_BACKEND=redis requires REDIS_URL")
        return RedisCounterStore.from_url(redis_url)
    return InMemoryCounterStore(time_fn=time_fn or time.monotonic)
