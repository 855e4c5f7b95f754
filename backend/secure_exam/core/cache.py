import redis.asyncio as aioredis

from .config import settings

_client = None


def get_redis() -> aioredis.Redis:
    """Shared async Redis client; connections are opened lazily on first command."""
    global _client
    if _client is None:
        _client = aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.redis_socket_timeout,
            socket_timeout=settings.redis_socket_timeout,
            retry_on_timeout=True,
            health_check_interval=30,
        )
    return _client
