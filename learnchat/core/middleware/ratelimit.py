import os
import re
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from learnchat.core.errors import RateLimitError, app_error_handler
from learnchat.core.logging import get_request_id
from learnchat.core.metrics import normalize_path, ratelimit_block_total
from learnchat.core.ratelimit import (
    CounterStore,
    RateLimitConfig,
    RateLimiter,
    build_counter_store,
    build_rate_limit_config_from_env,
)

_TURN_PATH = re.compile(r"^/v1/conversations/[^/]+/turns/?$")
_MUTATING = {"POST", "PUT", "PATCH", "DELETE"}


def category_for_request(method: str, path: str) -> Optional[str]:
    """Preset for a request; None means the path is not limited."""
    method = method.upper()
    if not path.startswith("/v1/"):
        return None
    if _TURN_PATH.match(path) and method == "POST":
        return "chat"
    if path.rstrip("/") == "/v1/conversations" and method == "POST":
        return "conversation"
    if path.startswith("/v1/artifacts") and method in _MUTATING:
        return "learning"
    if path.startswith("/v1/admin"):
        return "admin"
    return "api"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window rate limiting per preset (opt-in via env)."""

    def __init__(
        self,
        app,
        *,
        config: Optional[RateLimitConfig] = None,
        env: Optional[dict] = None,
        store: Optional[CounterStore] = None,
        redis_url: Optional[str] = None,
        time_fn: Optional[Callable[[], float]] = None,
    ):
        super().__init__(app)
        source = env if env is not None else os.environ
        self.config = config or build_rate_limit_config_from_env(source)
        if store is None and self.config.enabled:
            store = build_counter_store(self.config, redis_url=redis_url or source.get("REDIS_URL"), time_fn=time_fn)
        self.limiter = RateLimiter(self.config, store)
        if hasattr(app, "state"):
            setattr(app.state, "rate_limiter", self.limiter)

    def _client_key(self, request: Request) -> str:
        user_id = request.headers.get("X-User-Id")
        if not user_id:
            auth = request.headers.get("Authorization")
            if auth:
                # Prefix only; the token itself never ends up in a key
                user_id = auth[:16]
        if user_id:
            return f"user:{user_id}"

        ip = request.headers.get("x-forwarded-for") or (request.client.host if request.client else "unknown")
        return f"ip:{ip.split(',')[0].strip()}"

    async def dispatch(self, request: Request, call_next):
        if not self.config.enabled:
            return await call_next(request)

        category = category_for_request(request.method, request.url.path)
        if category is None:
            return await call_next(request)

        result = self.limiter.check(category, self._client_key(request))
        if result.allowed:
            response = await call_next(request)
            response.headers["X-RateLimit-Limit"] = str(result.limit)
            response.headers["X-RateLimit-Remaining"] = str(result.remaining)
            response.headers["X-RateLimit-Reset"] = str(result.retry_after)
            return response

        rid = getattr(request.state, "request_id", None) or get_request_id()
        ratelimit_block_total.inc(labels={"scope": category})

        response = await app_error_handler(
            request,
            RateLimitError(
                f"Rate limit exceeded for {normalize_path(request.url.path)}",
                request_id=rid,
                details={"retryAfter": result.retry_after},
            ),
        )
        response.headers["Retry-After"] = str(result.retry_after)
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = "0"
        response.headers["X-RateLimit-Reset"] = str(result.retry_after)
        return response
