"""
Storage Module - key-value backends for cart persistence.

Provides:
- ``RedisStore``: durable store over the async Upstash Redis client
- ``MemoryStore``: process-local store, used for ephemeral session data
- ``get_redis()``: singleton Upstash client built from environment
"""

import os
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from upstash_redis.asyncio import Redis as AsyncRedis

import httpx

from momentcart.logging import get_logger

logger = get_logger(__name__)


# Upstash Redis - standard env var names per docs
UPSTASH_REDIS_REST_URL = os.environ.get("UPSTASH_REDIS_REST_URL", "")
UPSTASH_REDIS_REST_TOKEN = os.environ.get("UPSTASH_REDIS_REST_TOKEN", "")

_redis_client: Optional[AsyncRedis] = None


def get_redis() -> AsyncRedis:
    """
    Get async Upstash Redis client (singleton).

    Uses standard Upstash env var names:
    - UPSTASH_REDIS_REST_URL
    - UPSTASH_REDIS_REST_TOKEN
    """
    global _redis_client

    if _redis_client is None:
        if not UPSTASH_REDIS_REST_URL or not UPSTASH_REDIS_REST_TOKEN:
            raise ValueError("UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN must be set")
        _redis_client = AsyncRedis(url=UPSTASH_REDIS_REST_URL, token=UPSTASH_REDIS_REST_TOKEN)

    return _redis_client


class KeyValueStore(Protocol):
    """Minimal async key-value contract used by the persistence adapter."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


class MemoryStore:
    """
    In-process key-value store.

    Contents live only as long as the instance, which makes it the
    backend for session-scoped data. Honors ``ex`` expiry on read.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._clock = clock

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> None:
        expires_at = self._clock() + ex if ex else None
        self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def raw(self) -> Dict[str, str]:
        """Snapshot of stored values (ignores expiry)."""
        return {key: value for key, (value, _) in self._data.items()}


class RedisStore:
    """
    Durable store backed by Upstash Redis.

    Transient transport failures are retried with exponential backoff;
    the last error is re-raised to the caller.
    """

    def __init__(
        self,
        client: Optional[AsyncRedis] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        backoff_multiplier: float = 2.0,
    ):
        self._client = client
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.backoff_multiplier = backoff_multiplier

    @property
    def client(self) -> AsyncRedis:
        """Get Redis client (lazy initialization)."""
        if self._client is None:
            self._client = get_redis()
        return self._client

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_delay, exp_base=self.backoff_multiplier, max=10),
            retry=retry_if_exception_type((httpx.TransportError, ConnectionError, TimeoutError)),
            reraise=True,
        )

    async def get(self, key: str) -> Optional[str]:
        async for attempt in self._retrying():
            with attempt:
                return await self.client.get(key)
        return None

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> None:
        async for attempt in self._retrying():
            with attempt:
                if ex:
                    await self.client.set(key, value, ex=ex)
                else:
                    await self.client.set(key, value)

    async def delete(self, key: str) -> None:
        async for attempt in self._retrying():
            with attempt:
                await self.client.delete(key)


def create_default_store(
    max_retries: int = 3,
    retry_delay: float = 1.0,
    backoff_multiplier: float = 2.0,
) -> KeyValueStore:
    """
    Pick the durable store from environment.

    Redis when Upstash credentials are present, otherwise an in-memory
    store (non-durable, logged as a warning).
    """
    if UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN:
        return RedisStore(
            max_retries=max_retries,
            retry_delay=retry_delay,
            backoff_multiplier=backoff_multiplier,
        )
    logger.warning("Upstash Redis not configured, cart data will not survive restarts")
    return MemoryStore()
