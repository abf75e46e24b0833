"""
Storage - Cache Layer.

============================================================
RESPONSIBILITY
============================================================
Key/value cache-aside store over Redis.

- get / set with optional TTL (None means no expiry)
- Atomic counters for alert ids and rate limiting
- Membership sets for subscriptions
- Broadcast channel for alert payloads

============================================================
DESIGN PRINCIPLES
============================================================
- One long-lived client per process, passed explicitly
- Payloads are opaque bytes; JSON helpers serialize
  deterministically so equal values give equal bytes
- Redis failures surface as CacheError

============================================================
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional, Set, Tuple

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.config import RedisConfig, RetryConfig
from core.exceptions import CacheError
from core.retry import connect_with_backoff


logger = logging.getLogger(__name__)


def encode_json(value: Any) -> bytes:
    """Deterministic JSON encoding."""
    return json.dumps(value, sort_keys=True, separators=(",", ":")).encode("utf-8")


def decode_json(payload: bytes) -> Any:
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    return json.loads(payload)


# ============================================================
# CACHE LAYER
# ============================================================

class CacheLayer:
    """
    Thin async facade over a Redis client.

    Accepts any client exposing the redis.asyncio command surface.
    """

    def __init__(self, client: aioredis.Redis):
        self._client = client

    @property
    def client(self) -> aioredis.Redis:
        return self._client

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            raise CacheError("ping", cause=e)

    async def close(self) -> None:
        await self._client.aclose()

    # --------------------------------------------------------
    # KEY / VALUE
    # --------------------------------------------------------

    async def get(self, key: str) -> Tuple[bool, Optional[bytes]]:
        """Return (found, payload)."""
        try:
            payload = await self._client.get(key)
        except RedisError as e:
            raise CacheError("get", key=key, cause=e)
        if payload is None:
            return False, None
        return True, payload

    async def set(self, key: str, payload: bytes, ttl: Optional[int] = None) -> None:
        try:
            if ttl:
                await self._client.set(key, payload, ex=ttl)
            else:
                await self._client.set(key, payload)
        except RedisError as e:
            raise CacheError("set", key=key, cause=e)

    async def get_json(self, key: str) -> Tuple[bool, Any]:
        found, payload = await self.get(key)
        if not found:
            return False, None
        try:
            return True, decode_json(payload)
        except ValueError as e:
            raise CacheError("decode", key=key, cause=e)

    async def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        await self.set(key, encode_json(value), ttl)

    # --------------------------------------------------------
    # COUNTERS
    # --------------------------------------------------------

    async def increment(self, key: str, expire_seconds: Optional[int] = None) -> int:
        """
        Atomically increment a counter and return the new value.

        When ``expire_seconds`` is given, the increment that creates
        the counter (returns 1) arms the expiry.
        """
        try:
            value = await self._client.incr(key)
            if expire_seconds and value == 1:
                await self._client.expire(key, expire_seconds)
        except RedisError as e:
            raise CacheError("increment", key=key, cause=e)
        return int(value)

    # --------------------------------------------------------
    # SETS
    # --------------------------------------------------------

    async def add_member(self, key: str, member: Any) -> None:
        try:
            await self._client.sadd(key, member)
        except RedisError as e:
            raise CacheError("sadd", key=key, cause=e)

    async def remove_member(self, key: str, member: Any) -> None:
        try:
            await self._client.srem(key, member)
        except RedisError as e:
            raise CacheError("srem", key=key, cause=e)

    async def members(self, key: str) -> Set[str]:
        try:
            raw = await self._client.smembers(key)
        except RedisError as e:
            raise CacheError("smembers", key=key, cause=e)
        return {m.decode("utf-8") if isinstance(m, bytes) else str(m) for m in raw}

    async def is_member(self, key: str, member: Any) -> bool:
        try:
            return bool(await self._client.sismember(key, member))
        except RedisError as e:
            raise CacheError("sismember", key=key, cause=e)

    async def scan_keys(self, pattern: str) -> List[str]:
        try:
            keys = [k async for k in self._client.scan_iter(match=pattern)]
        except RedisError as e:
            raise CacheError("scan", key=pattern, cause=e)
        return [k.decode("utf-8") if isinstance(k, bytes) else k for k in keys]

    # --------------------------------------------------------
    # BROADCAST CHANNEL
    # --------------------------------------------------------

    async def publish(self, channel: str, payload: bytes) -> int:
        try:
            return await self._client.publish(channel, payload)
        except RedisError as e:
            raise CacheError("publish", key=channel, cause=e)

    @asynccontextmanager
    async def subscribe(self, channel: str) -> AsyncIterator["ChannelSubscription"]:
        pubsub = self._client.pubsub()
        try:
            await pubsub.subscribe(channel)
        except RedisError as e:
            raise CacheError("subscribe", key=channel, cause=e)
        try:
            yield ChannelSubscription(pubsub)
        finally:
            try:
                await pubsub.unsubscribe(channel)
            finally:
                await pubsub.aclose()


class ChannelSubscription:
    """Wait-with-timeout wrapper around a pubsub handle."""

    def __init__(self, pubsub: Any):
        self._pubsub = pubsub

    async def next_message(self, timeout: float) -> Optional[bytes]:
        """Return the next payload, or None when ``timeout`` elapses."""
        try:
            message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=timeout)
        except RedisError as e:
            raise CacheError("get_message", cause=e)
        if message is None or message.get("type") != "message":
            return None
        return message["data"]


# ============================================================
# CONNECTION
# ============================================================

async def connect_cache(
    config: RedisConfig,
    retry: Optional[RetryConfig] = None,
) -> CacheLayer:
    """Create the process-wide cache handle, retrying the initial ping."""

    async def _connect() -> CacheLayer:
        client = aioredis.from_url(config.url, decode_responses=False)
        try:
            await client.ping()
        except Exception:
            await client.aclose()
            raise
        return CacheLayer(client)

    cache = await connect_with_backoff(_connect, "redis", retry)
    logger.info("Cache connection established")
    return cache
