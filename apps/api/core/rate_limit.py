"""
Rate Limiting Middleware

Fixed-window counters in Redis, per caller and endpoint. The caller is
the trusted uid set by the authorization middleware, or the client IP.
Fails open when Redis is unavailable.
"""
import time
import logging
from typing import Callable, Dict, Optional, Tuple

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.exceptions import ErrorCode, error_body

logger = logging.getLogger(__name__)

EXEMPT_PATHS = {"/health", "/ping", "/api/public/health", "/docs", "/openapi.json", "/redoc"}


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limiting middleware using fixed windows."""

    def __init__(
        self,
        app,
        redis_client: Callable[[], Optional[object]],
        default_limit: int = 60,
        window: int = 60,
        endpoint_limits: Optional[Dict[str, int]] = None,
    ):
        super().__init__(app)
        self.redis_client = redis_client
        self.default_limit = default_limit
        self.window = window  # Time window in seconds

        # Per-endpoint limits (requests per window); exact match first, then prefix
        self.endpoint_limits = endpoint_limits if endpoint_limits is not None else {
            "/api/admin/setup-admin": 5,
            "/api/protected/ai/": 10,
            "/api/admin/": 30,
        }

    async def dispatch(self, request: Request, call_next):
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        user_id = self._get_user_id(request)
        limit = self._get_endpoint_limit(request.url.path)

        allowed, remaining, reset_time = self._check_rate_limit(
            user_id=user_id,
            endpoint=request.url.path,
            limit=limit,
            window=self.window
        )

        if not allowed:
            logger.warning(
                f"Rate limit exceeded for {user_id} on {request.url.path}",
                extra={"extra_fields": {"caller": user_id, "path": request.url.path, "limit": limit}},
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content=error_body(ErrorCode.RATE_LIMITED, "Rate limit exceeded"),
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": str(remaining),
                    "X-RateLimit-Reset": str(reset_time),
                    "Retry-After": str(max(0, int(reset_time - time.time())))
                }
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(reset_time)

        return response

    def _get_user_id(self, request: Request) -> str:
        """Trusted uid when the request was authenticated, else the client IP."""
        identity = getattr(request.state, "identity", None)
        if identity is not None:
            return f"user:{identity.id}"
        client_ip = request.client.host if request.client else "unknown"
        return f"ip:{client_ip}"

    def _get_endpoint_limit(self, path: str) -> int:
        if path in self.endpoint_limits:
            return self.endpoint_limits[path]

        for endpoint, limit in self.endpoint_limits.items():
            if path.startswith(endpoint):
                return limit

        return self.default_limit

    def _check_rate_limit(
        self,
        user_id: str,
        endpoint: str,
        limit: int,
        window: int
    ) -> Tuple[bool, int, int]:
        """
        Count this request against the current window.

        Returns:
            (allowed, remaining, reset_time)
        """
        redis_client = self.redis_client()

        if not redis_client:
            logger.warning("Redis unavailable, skipping rate limit check")
            return True, limit, int(time.time()) + window

        key = f"rate_limit:{user_id}:{endpoint}"

        try:
            count = redis_client.incr(key)
            if count == 1:
                redis_client.expire(key, window)
            ttl = redis_client.ttl(key)
            reset_time = int(time.time()) + (ttl if ttl > 0 else window)

            if count > limit:
                return False, 0, reset_time
            return True, max(0, limit - count), reset_time

        except Exception as e:
            # Fail open
            logger.error(f"Rate limit check error: {e}")
            return True, limit, int(time.time()) + window
