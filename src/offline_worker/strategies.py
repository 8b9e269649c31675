"""
Offline Worker - Caching Strategies

Three cache-consistency policies, each run against one cache namespace:

- CacheFirst: serve from storage, touch the network only on a miss.
- NetworkFirst: prefer a fresh network response, fall back to storage.
- StaleWhileRevalidate: serve from storage at once and refresh it in the
  background.

Network failures propagate as NetworkError; the dispatcher decides what to
do with them. Only 200 responses are written through.
"""
import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

import structlog

from ..shared.caching.models import CachedEntry, Request, Response
from ..shared.caching.namespaces import CacheNamespace, CacheNamespaceRegistry
from ..shared.exceptions import NetworkError
from .network import Fetcher

logger = structlog.get_logger(__name__)

WaitUntil = Callable[[Any], None]


class Strategy(str, Enum):
    """Cache-consistency policies."""
    CACHE_FIRST = "cache_first"
    NETWORK_FIRST = "network_first"
    STALE_WHILE_REVALIDATE = "stale_while_revalidate"


class CachingStrategy(ABC):
    """Shared plumbing for strategy executors."""

    strategy: Strategy

    def __init__(self, registry: CacheNamespaceRegistry, network: Fetcher):
        self.registry = registry
        self.network = network

        self.stats = {
            'cache_hits': 0,
            'cache_misses': 0,
            'network_requests': 0,
            'network_errors': 0
        }

    @abstractmethod
    async def handle(
        self,
        request: Request,
        namespace: CacheNamespace,
        timeout: Optional[float] = None,
        wait_until: Optional[WaitUntil] = None,
    ) -> Response:
        """Produce a response for the request or raise NetworkError."""

    async def _fetch(self, request: Request, timeout: Optional[float]) -> Response:
        self.stats['network_requests'] += 1
        try:
            return await self.network.fetch(request, timeout=timeout)
        except NetworkError:
            self.stats['network_errors'] += 1
            raise

    async def _fetch_and_store(
        self,
        request: Request,
        namespace: CacheNamespace,
        timeout: Optional[float],
    ) -> Response:
        response = await self._fetch(request, timeout)
        if response.status == 200:
            await self.registry.put(namespace, request.cache_key(), response)
        return response

    async def _lookup(self, request: Request, namespace: CacheNamespace) -> Optional[CachedEntry]:
        entry = await self.registry.match(namespace, request.cache_key())
        if entry is None:
            self.stats['cache_misses'] += 1
        else:
            self.stats['cache_hits'] += 1
        return entry


class CacheFirst(CachingStrategy):
    strategy = Strategy.CACHE_FIRST

    async def handle(self, request, namespace, timeout=None, wait_until=None):
        entry = await self._lookup(request, namespace)
        if entry is not None:
            return entry.response
        return await self._fetch_and_store(request, namespace, timeout)


class NetworkFirst(CachingStrategy):
    strategy = Strategy.NETWORK_FIRST

    async def handle(self, request, namespace, timeout=None, wait_until=None):
        try:
            return await self._fetch_and_store(request, namespace, timeout)
        except NetworkError:
            logger.info("Network failed, trying cache", url=request.url, namespace=namespace.name)
            entry = await self._lookup(request, namespace)
            if entry is None:
                raise
            return entry.response


class StaleWhileRevalidate(CachingStrategy):
    """
    Serve the cached entry immediately and refresh it in the background.

    Concurrent refreshes of the same key are not coordinated: whichever
    network response completes last owns the cache slot, even if it was
    issued earlier.
    """

    strategy = Strategy.STALE_WHILE_REVALIDATE

    def __init__(self, registry: CacheNamespaceRegistry, network: Fetcher):
        super().__init__(registry, network)
        self._background: Set[asyncio.Task] = set()
        self.stats['refresh_failures'] = 0

    async def handle(self, request, namespace, timeout=None, wait_until=None):
        entry = await self._lookup(request, namespace)

        refresh = asyncio.create_task(self._fetch_and_store(request, namespace, timeout))
        self._track(refresh, request)
        if wait_until is not None:
            wait_until(self._quiet(refresh))

        if entry is not None:
            return entry.response
        return await asyncio.shield(refresh)

    def _track(self, task: asyncio.Task, request: Request) -> None:
        self._background.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._background.discard(finished)
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                self.stats['refresh_failures'] += 1
                logger.warning("Background revalidation failed", url=request.url, error=str(error))

        task.add_done_callback(_done)

    @staticmethod
    async def _quiet(task: asyncio.Task) -> None:
        # Refresh errors are logged by the done callback, never re-raised
        await asyncio.gather(task, return_exceptions=True)

    @property
    def in_flight(self) -> int:
        return len(self._background)

    async def drain(self) -> None:
        """Wait for background refreshes started so far."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


def build_strategies(registry: CacheNamespaceRegistry, network: Fetcher) -> Dict[Strategy, CachingStrategy]:
    return {
        Strategy.CACHE_FIRST: CacheFirst(registry, network),
        Strategy.NETWORK_FIRST: NetworkFirst(registry, network),
        Strategy.STALE_WHILE_REVALIDATE: StaleWhileRevalidate(registry, network),
    }
