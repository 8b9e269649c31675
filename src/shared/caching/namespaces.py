"""
Versioned cache namespace registry.

Three logical namespaces exist per deployed version: static (precached core
assets), dynamic (runtime HTML and API data) and image (runtime images).
Each name carries the version token, so a deploy produces a fresh set of
namespaces and the old ones become garbage once the new version activates.

Storage failures never escape the registry's runtime operations: reads
degrade to "absent" and writes to no-ops, after logging.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from ..exceptions import StorageError
from .models import CachedEntry, Response
from .storage import StorageBackend

logger = structlog.get_logger(__name__)


class CacheKind(str, Enum):
    """Logical namespace kinds."""
    STATIC = "static"
    DYNAMIC = "dynamic"
    IMAGE = "image"


@dataclass(frozen=True)
class CacheNamespace:
    """A named, versioned logical cache."""
    kind: CacheKind
    version: str
    prefix: str = ""

    @property
    def name(self) -> str:
        base = f"{self.kind.value}-{self.version}"
        return f"{self.prefix}-{base}" if self.prefix else base


class CacheNamespaceRegistry:
    """Opens, reads, writes and evicts namespaces for one worker version."""

    def __init__(
        self,
        backend: StorageBackend,
        version: str,
        prefix: str = "",
        max_entries: Optional[Dict[str, Optional[int]]] = None,
        max_ages: Optional[Dict[str, Optional[int]]] = None,
    ):
        self.backend = backend
        self.version = version
        self.prefix = prefix
        self.max_entries = max_entries or {}
        self.max_ages = max_ages or {}

        self.stats = {
            'reads': 0,
            'hits': 0,
            'misses': 0,
            'writes': 0,
            'trimmed': 0,
            'storage_errors': 0
        }

    def namespace(self, kind: CacheKind) -> CacheNamespace:
        """The current namespace for a kind (no storage access)."""
        return CacheNamespace(kind=CacheKind(kind), version=self.version, prefix=self.prefix)

    def allow_list(self) -> List[str]:
        """Names of the namespaces current for this version."""
        return [self.namespace(kind).name for kind in CacheKind]

    async def open(self, kind: CacheKind) -> CacheNamespace:
        """Open (creating if needed) the current namespace for a kind."""
        namespace = self.namespace(kind)
        try:
            created = await self.backend.create_namespace(namespace.name)
            if created:
                logger.debug("Cache namespace created", namespace=namespace.name)
        except StorageError as e:
            self.stats['storage_errors'] += 1
            logger.error("Failed to open cache namespace", namespace=namespace.name, error=str(e))
        return namespace

    async def exists(self, name: str) -> bool:
        try:
            return await self.backend.has_namespace(name)
        except StorageError as e:
            self.stats['storage_errors'] += 1
            logger.error("Failed to check cache namespace", namespace=name, error=str(e))
            return False

    async def match(self, namespace: CacheNamespace, key: str) -> Optional[CachedEntry]:
        """Read an entry; storage failures read as absent."""
        self.stats['reads'] += 1
        try:
            entry = await self.backend.get(namespace.name, key)
        except StorageError as e:
            self.stats['storage_errors'] += 1
            logger.error("Cache read failed, treating as miss",
                         namespace=namespace.name, key=key, error=str(e))
            return None

        if entry is None:
            self.stats['misses'] += 1
        else:
            self.stats['hits'] += 1
        return entry

    async def put(self, namespace: CacheNamespace, key: str, response: Response) -> bool:
        """Write through one response; storage failures are no-ops."""
        entry = CachedEntry(request_key=key, response=response.clone(), stored_at=time.time())
        try:
            await self.backend.put(namespace.name, key, entry)
        except StorageError as e:
            self.stats['storage_errors'] += 1
            logger.error("Cache write failed, skipping",
                         namespace=namespace.name, key=key, error=str(e))
            return False

        self.stats['writes'] += 1
        await self.trim(namespace)
        return True

    async def put_all(self, namespace: CacheNamespace, responses: Dict[str, Response]) -> None:
        """
        Bulk write used by precaching.

        Unlike put(), failures propagate as StorageError so that the caller
        can reject the whole operation.
        """
        now = time.time()
        entries = {
            key: CachedEntry(request_key=key, response=response.clone(), stored_at=now)
            for key, response in responses.items()
        }
        await self.backend.put_many(namespace.name, entries)
        self.stats['writes'] += len(entries)

    async def keys(self, namespace: CacheNamespace) -> List[str]:
        try:
            return await self.backend.keys(namespace.name)
        except StorageError as e:
            self.stats['storage_errors'] += 1
            logger.error("Failed to list cache keys", namespace=namespace.name, error=str(e))
            return []

    def is_expired(self, namespace: CacheNamespace, entry: CachedEntry, now: Optional[float] = None) -> bool:
        return entry.is_expired(self.max_ages.get(namespace.kind.value), now)

    async def expired_keys(self, namespace: CacheNamespace, keys: List[str], now: Optional[float] = None) -> List[str]:
        """Keys whose entries are older than the kind's max age."""
        if self.max_ages.get(namespace.kind.value) is None:
            return []
        now = now if now is not None else time.time()
        expired = []
        for key in keys:
            try:
                entry = await self.backend.get(namespace.name, key)
            except StorageError as e:
                self.stats['storage_errors'] += 1
                logger.error("Failed to read cache entry for expiry", namespace=namespace.name, key=key, error=str(e))
                continue
            if entry is not None and self.is_expired(namespace, entry, now):
                expired.append(key)
        return expired

    async def trim(self, namespace: CacheNamespace) -> int:
        """
        Evict expired entries, then the oldest entries above the kind's max
        entry count. Reads never check expiry; eviction happens only here.
        """
        keys = await self.keys(namespace)
        victims = await self.expired_keys(namespace, keys)

        max_size = self.max_entries.get(namespace.kind.value)
        remaining = [key for key in keys if key not in victims]
        if max_size and len(remaining) > max_size:
            victims.extend(remaining[:len(remaining) - max_size])
        if not victims:
            return 0

        removed = 0
        for key in victims:
            try:
                if await self.backend.delete(namespace.name, key):
                    removed += 1
            except StorageError as e:
                self.stats['storage_errors'] += 1
                logger.error("Failed to trim cache entry", namespace=namespace.name, key=key, error=str(e))

        self.stats['trimmed'] += removed
        logger.info("Trimmed cache namespace", namespace=namespace.name, removed=removed)
        return removed

    async def list_namespaces(self) -> List[str]:
        try:
            return await self.backend.list_namespaces()
        except StorageError as e:
            self.stats['storage_errors'] += 1
            logger.error("Failed to list cache namespaces", error=str(e))
            return []

    async def delete(self, name: str) -> bool:
        """Destroy a namespace with all of its entries."""
        try:
            deleted = await self.backend.drop_namespace(name)
        except StorageError as e:
            self.stats['storage_errors'] += 1
            logger.error("Failed to delete cache namespace", namespace=name, error=str(e))
            return False

        if deleted:
            logger.info("Deleted cache namespace", namespace=name)
        return deleted

    async def clear_all(self) -> List[str]:
        """Delete every namespace, current or not."""
        cleared = []
        for name in await self.list_namespaces():
            if await self.delete(name):
                cleared.append(name)
        logger.info("All caches cleared", count=len(cleared))
        return cleared

    async def status(self) -> Dict[str, Dict[str, Any]]:
        """Entry count and limit for every namespace in storage."""
        limits = {self.namespace(kind).name: self.max_entries.get(kind.value) for kind in CacheKind}
        result = {}
        for name in await self.list_namespaces():
            try:
                size = len(await self.backend.keys(name))
            except StorageError as e:
                self.stats['storage_errors'] += 1
                logger.error("Failed to size cache namespace", namespace=name, error=str(e))
                size = None
            result[name] = {
                'size': size,
                'max_size': limits.get(name) or 'unlimited'
            }
        return result

    def get_stats(self) -> Dict[str, Any]:
        total_reads = self.stats['hits'] + self.stats['misses']
        hit_rate = self.stats['hits'] / total_reads if total_reads > 0 else 0
        return {
            **self.stats,
            'hit_rate': hit_rate
        }
