"""
Cache storage backends.

The storage backend is the only state shared across worker invocations.
Each backend keeps named namespaces of key -> CachedEntry, remembers the
write order inside a namespace (for trimming), and lists namespace names.
Writes are last-write-wins per key; there are no transactions.
"""

import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Dict, List, Optional

import redis.asyncio as redis
import structlog
from redis.asyncio import Redis

from ..config import OfflineCacheSettings, StorageBackendType, get_settings
from ..exceptions import StorageError
from .models import CachedEntry

logger = structlog.get_logger(__name__)


class StorageBackend(ABC):
    """Persistent key -> response storage partitioned by namespace name."""

    @abstractmethod
    async def create_namespace(self, name: str) -> bool:
        """Create a namespace; returns False if it already existed."""

    @abstractmethod
    async def has_namespace(self, name: str) -> bool:
        """Check whether a namespace exists."""

    @abstractmethod
    async def list_namespaces(self) -> List[str]:
        """List namespace names in creation order."""

    @abstractmethod
    async def drop_namespace(self, name: str) -> bool:
        """Delete a namespace and every entry in it."""

    @abstractmethod
    async def get(self, name: str, key: str) -> Optional[CachedEntry]:
        """Read one entry."""

    @abstractmethod
    async def put(self, name: str, key: str, entry: CachedEntry) -> None:
        """Write one entry, overwriting any previous one for the key."""

    @abstractmethod
    async def put_many(self, name: str, entries: Dict[str, CachedEntry]) -> None:
        """Write several entries in one call."""

    @abstractmethod
    async def keys(self, name: str) -> List[str]:
        """Keys of a namespace, oldest write first."""

    @abstractmethod
    async def delete(self, name: str, key: str) -> bool:
        """Delete one entry."""

    async def close(self) -> None:
        """Release backend resources."""


class MemoryStorageBackend(StorageBackend):
    """In-process storage; does not survive a restart."""

    def __init__(self):
        self._namespaces: Dict[str, "OrderedDict[str, CachedEntry]"] = {}

    async def create_namespace(self, name: str) -> bool:
        if name in self._namespaces:
            return False
        self._namespaces[name] = OrderedDict()
        return True

    async def has_namespace(self, name: str) -> bool:
        return name in self._namespaces

    async def list_namespaces(self) -> List[str]:
        return list(self._namespaces)

    async def drop_namespace(self, name: str) -> bool:
        return self._namespaces.pop(name, None) is not None

    async def get(self, name: str, key: str) -> Optional[CachedEntry]:
        entry = self._namespaces.get(name, {}).get(key)
        return entry.copy() if entry else None

    async def put(self, name: str, key: str, entry: CachedEntry) -> None:
        namespace = self._namespaces.setdefault(name, OrderedDict())
        # Re-insert so iteration order follows write order
        namespace.pop(key, None)
        namespace[key] = entry.copy()

    async def put_many(self, name: str, entries: Dict[str, CachedEntry]) -> None:
        for key, entry in entries.items():
            await self.put(name, key, entry)

    async def keys(self, name: str) -> List[str]:
        return list(self._namespaces.get(name, {}))

    async def delete(self, name: str, key: str) -> bool:
        namespace = self._namespaces.get(name)
        if namespace is None or key not in namespace:
            return False
        del namespace[key]
        return True


class RedisStorageBackend(StorageBackend):
    """
    Redis-based storage.

    Layout under ``key_prefix``:
    - ``<prefix>:namespaces``         sorted set of namespace names by creation time
    - ``<prefix>:ns:<name>:entries``  hash of request key -> serialized entry
    - ``<prefix>:ns:<name>:order``    sorted set of request key by stored_at
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        db: int = 0,
        key_prefix: str = "offline-cache",
        client: Optional[Redis] = None,
    ):
        self.redis_url = redis_url
        self.db = db
        self.key_prefix = key_prefix
        self.redis_client: Optional[Redis] = client

    def _names_key(self) -> str:
        return f"{self.key_prefix}:namespaces"

    def _entries_key(self, name: str) -> str:
        return f"{self.key_prefix}:ns:{name}:entries"

    def _order_key(self, name: str) -> str:
        return f"{self.key_prefix}:ns:{name}:order"

    async def connect(self) -> Redis:
        """Connect to Redis."""
        if self.redis_client is None:
            try:
                self.redis_client = redis.from_url(
                    self.redis_url,
                    db=self.db,
                    decode_responses=True,
                )
                await self.redis_client.ping()
                logger.info("Connected to Redis cache storage", redis_url=self.redis_url)
            except redis.RedisError as e:
                self.redis_client = None
                raise StorageError(f"Failed to connect to Redis: {e}") from e
        return self.redis_client

    async def close(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("Disconnected from Redis cache storage")

    async def create_namespace(self, name: str) -> bool:
        client = await self.connect()
        try:
            added = await client.zadd(self._names_key(), {name: time.time()}, nx=True)
            return bool(added)
        except redis.RedisError as e:
            raise StorageError(f"Redis create namespace error for {name}: {e}") from e

    async def has_namespace(self, name: str) -> bool:
        client = await self.connect()
        try:
            return await client.zscore(self._names_key(), name) is not None
        except redis.RedisError as e:
            raise StorageError(f"Redis namespace lookup error for {name}: {e}") from e

    async def list_namespaces(self) -> List[str]:
        client = await self.connect()
        try:
            return list(await client.zrange(self._names_key(), 0, -1))
        except redis.RedisError as e:
            raise StorageError(f"Redis list namespaces error: {e}") from e

    async def drop_namespace(self, name: str) -> bool:
        client = await self.connect()
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.zrem(self._names_key(), name)
                pipe.delete(self._entries_key(name), self._order_key(name))
                removed, _ = await pipe.execute()
            return removed > 0
        except redis.RedisError as e:
            raise StorageError(f"Redis drop namespace error for {name}: {e}") from e

    async def get(self, name: str, key: str) -> Optional[CachedEntry]:
        client = await self.connect()
        try:
            data = await client.hget(self._entries_key(name), key)
        except redis.RedisError as e:
            raise StorageError(f"Redis get error for key {key}: {e}") from e
        if data is None:
            return None
        try:
            return CachedEntry.from_json(data)
        except (ValueError, KeyError, TypeError) as e:
            raise StorageError(f"Corrupt cache entry for key {key}: {e}") from e

    async def put(self, name: str, key: str, entry: CachedEntry) -> None:
        await self.put_many(name, {key: entry})

    async def put_many(self, name: str, entries: Dict[str, CachedEntry]) -> None:
        if not entries:
            return
        client = await self.connect()
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.zadd(self._names_key(), {name: time.time()}, nx=True)
                pipe.hset(
                    self._entries_key(name),
                    mapping={key: entry.to_json() for key, entry in entries.items()},
                )
                pipe.zadd(
                    self._order_key(name),
                    {key: entry.stored_at for key, entry in entries.items()},
                )
                await pipe.execute()
        except redis.RedisError as e:
            raise StorageError(f"Redis put error in {name}: {e}") from e

    async def keys(self, name: str) -> List[str]:
        client = await self.connect()
        try:
            return list(await client.zrange(self._order_key(name), 0, -1))
        except redis.RedisError as e:
            raise StorageError(f"Redis keys error for {name}: {e}") from e

    async def delete(self, name: str, key: str) -> bool:
        client = await self.connect()
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.hdel(self._entries_key(name), key)
                pipe.zrem(self._order_key(name), key)
                removed, _ = await pipe.execute()
            return removed > 0
        except redis.RedisError as e:
            raise StorageError(f"Redis delete error for key {key}: {e}") from e


def create_storage_backend(settings: Optional[OfflineCacheSettings] = None) -> StorageBackend:
    """Build the backend selected by settings."""
    settings = settings or get_settings()
    if settings.storage_backend == StorageBackendType.REDIS:
        return RedisStorageBackend(
            redis_url=settings.redis_url,
            db=settings.redis_db,
            key_prefix=settings.redis_key_prefix,
        )
    return MemoryStorageBackend()
