"""Redis: connection handling and the revoked-session list."""

from __future__ import annotations

import redis.asyncio as redis

from app.core.config import get_settings

settings = get_settings()

REVOKED_KEY_PREFIX = "orgboard:session:revoked:"

_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Lazily create the shared client; connections are opened on first command."""
    global _client
    if _client is None:
        _client = redis.from_url(settings.redis_url, decode_responses=True)
    return _client


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


async def mark_revoked(jti: str, ttl_seconds: int) -> None:
    """Remember a revoked session id until its token would have expired anyway."""
    client = await get_redis()
    await client.setex(f"{REVOKED_KEY_PREFIX}{jti}", max(ttl_seconds, 1), "1")


async def is_revoked(jti: str) -> bool:
    client = await get_redis()
    return await client.exists(f"{REVOKED_KEY_PREFIX}{jti}") > 0
