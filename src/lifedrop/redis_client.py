"""Optional Redis connection.

Redis backs rate limiting, login lockout and e-mail throttling. With an
empty ``redis_url`` the client is never created and callers skip those
features.
"""

import redis.asyncio as redis

_client: redis.Redis | None = None


async def init_redis(url: str) -> None:
    global _client  # noqa: PLW0603
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_optional_redis() -> redis.Redis | None:
    """The shared client, or None when Redis is not configured."""
    return _client
