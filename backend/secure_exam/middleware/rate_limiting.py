import time
import json
import logging
import uuid
from fastapi import Request, Response
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Callable, Optional

from ..core.cache import get_redis

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window request limit per client address on the API prefix.

    Each client owns one Redis sorted set of request timestamps. The key
    expires one window after the client's last request, so idle clients
    leave nothing behind. If Redis is unreachable requests are let through.
    """

    def __init__(
        self,
        app,
        requests_per_window: int = 200,
        window_seconds: float = 15 * 60,
        path_prefix: str = "/api/",
        exempt_paths: tuple = ("/api/v1/health",),
        redis_client=None,
        key_prefix: str = "ratelimit",
        clock: Optional[Callable[[], float]] = None,
    ):
        super().__init__(app)
        self.requests_per_window = requests_per_window
        self.window_seconds = window_seconds
        self.path_prefix = path_prefix
        self.exempt_paths = exempt_paths
        self.redis = redis_client if redis_client is not None else get_redis()
        self.key_prefix = key_prefix
        self.clock = clock or time.time

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if not path.startswith(self.path_prefix) or path in self.exempt_paths:
            return await call_next(request)

        client_ip = self._get_client_ip(request)
        now = self.clock()
        try:
            result = await self._check_and_record(client_ip, now)
        except (RedisError, OSError) as e:
            logger.error(f"Rate limit store unavailable, allowing request from {client_ip}: {e}")
            return await call_next(request)

        if not result["allowed"]:
            logger.warning(f"Rate limit exceeded for {client_ip} on {path}")
            response = Response(
                content=json.dumps({
                    "error": "Too many requests, please try again later.",
                    "status": "rate_limited",
                    "retry_after": result["retry_after"],
                }),
                status_code=429,
                media_type="application/json",
            )
            response.headers["Retry-After"] = str(result["retry_after"])
            response.headers["X-RateLimit-Limit"] = str(self.requests_per_window)
            response.headers["X-RateLimit-Remaining"] = "0"
            response.headers["X-RateLimit-Reset"] = str(result["reset_time"])
            return response

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(self.requests_per_window)
        response.headers["X-RateLimit-Remaining"] = str(result["remaining"])
        response.headers["X-RateLimit-Reset"] = str(result["reset_time"])
        return response

    def _key(self, client_ip: str) -> str:
        return f"{self.key_prefix}:{client_ip}"

    async def _check_and_record(self, client_ip: str, now: float) -> dict:
        key = self._key(client_ip)
        window_start = now - self.window_seconds

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, "-inf", window_start)
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            _, count, oldest = await pipe.execute()

        first_seen = oldest[0][1] if oldest else now
        reset_time = int(first_seen + self.window_seconds)

        if count >= self.requests_per_window:
            return {
                "allowed": False,
                "retry_after": max(int(first_seen + self.window_seconds - now) + 1, 1),
                "reset_time": reset_time,
            }

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zadd(key, {f"{now}-{uuid.uuid4().hex}": now})
            pipe.pexpire(key, max(int(self.window_seconds * 1000), 1))
            await pipe.execute()

        return {
            "allowed": True,
            "remaining": max(self.requests_per_window - count - 1, 0),
            "reset_time": reset_time,
        }

    def _get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        return request.client.host if request.client else "unknown"
