from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as aioredis
from redis import Redis

BLACKLIST_PREFIX = "auth:blacklist:"
OAUTH_STATE_PREFIX = "auth:oauth:state:"
BLACKLIST_MARKER = "blacklisted"


def _ttl_seconds(expires_at: datetime) -> int:
    """Compute a TTL from an absolute expiry, clamped to at least 1 second."""

    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    else:
        expires_at = expires_at.astimezone(timezone.utc)
    return max(1, int((expires_at - datetime.now(timezone.utc)).total_seconds()))


def _parse_oauth_state(cached: Optional[str]) -> Optional[datetime]:
    if cached is None:
        return None
    try:
        data = json.loads(cached)
    except (json.JSONDecodeError, TypeError):
        return None
    expires_raw = data.get("expires_at") if isinstance(data, dict) else None
    if not isinstance(expires_raw, str):
        return None
    try:
        return datetime.fromisoformat(expires_raw)
    except (ValueError, TypeError):
        return None


class RedisCache:
    """Thin Redis wrapper for the token blacklist and OAuth state."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving traffic."""

        # A short-lived sync client keeps the async client off the startup loop.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def blacklist_token(self, token: str, ttl_seconds: int) -> None:
        if ttl_seconds > 0:
            await self.client.set(f"{BLACKLIST_PREFIX}{token}", BLACKLIST_MARKER, ex=ttl_seconds)

    async def is_token_blacklisted(self, token: str) -> bool:
        return bool(await self.client.exists(f"{BLACKLIST_PREFIX}{token}"))

    async def set_oauth_state(self, state: str, expires_at: datetime) -> None:
        payload = {"expires_at": expires_at.astimezone(timezone.utc).isoformat()}
        await self.client.set(
            f"{OAUTH_STATE_PREFIX}{state}", json.dumps(payload), ex=_ttl_seconds(expires_at)
        )

    async def pop_oauth_state(self, state: str) -> Optional[datetime]:
        """Atomically read and delete an OAuth state so it cannot be replayed.

        Returns the stored expiry, or ``None`` when the state is unknown.
        """

        cached = await self.client.getdel(f"{OAUTH_STATE_PREFIX}{state}")
        return _parse_oauth_state(cached)

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.aclose()


class _SyncClientAdapter:
    """Adapter that wraps a sync Redis client with async method signatures.

    Lets ``await cache.client.method()`` work with either client uniformly.
    """

    def __init__(self, sync_client: Redis):
        self._sync = sync_client

    async def get(self, key: str) -> Optional[str]:
        return self._sync.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        return self._sync.set(key, value, ex=ex)

    async def getdel(self, key: str) -> Optional[str]:
        return self._sync.getdel(key)

    async def delete(self, key: str) -> int:
        return self._sync.delete(key)

    async def exists(self, key: str) -> int:
        return self._sync.exists(key)

    async def ping(self) -> bool:
        return self._sync.ping()


class SyncRedisCache(RedisCache):
    """Synchronous Redis wrapper for use in tests.

    Uses a synchronous client internally to avoid event loop binding issues
    under pytest and TestClient, while exposing the same async methods as
    RedisCache.
    """

    def __init__(self, redis_url: str, *, socket_timeout: float = RedisCache.DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self._sync_client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self.client = _SyncClientAdapter(self._sync_client)

    def verify_connection(self) -> None:
        self._sync_client.ping()

    async def close(self) -> None:
        self._sync_client.close()


__all__ = ["RedisCache", "SyncRedisCache", "BLACKLIST_PREFIX", "OAUTH_STATE_PREFIX"]
