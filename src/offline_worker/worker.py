"""
Offline Worker - Worker

The lifecycle object the host wires up. One instance per deployed version,
constructed once at startup; it owns the namespace registry, the strategy
dispatcher, the lifecycle manager and the control channel for that version
and exposes the on_install / on_activate / on_fetch / on_message hooks.
"""
from typing import Any, Dict, List, Optional, Tuple

import structlog

from ..shared.caching.models import Request, Response
from ..shared.caching.namespaces import CacheKind, CacheNamespaceRegistry
from ..shared.caching.storage import StorageBackend, create_storage_backend
from ..shared.config import OfflineCacheSettings, get_settings
from ..shared.exceptions import NetworkError
from ..shared.logging_config import RequestContext
from .classifier import is_cache_eligible
from .clients import ClientRegistry
from .control_channel import ControlChannel
from .dispatcher import StrategyDispatcher
from .events import ActivateEvent, FetchEvent, InstallEvent, MessageEvent
from .fallback import FallbackGenerator
from .lifecycle import LifecycleManager, WorkerState
from .network import Fetcher, NetworkClient

logger = structlog.get_logger(__name__)


class OfflineWorker:
    """Offline resource cache for one deployed version."""

    def __init__(
        self,
        settings: OfflineCacheSettings,
        network: Fetcher,
        storage: StorageBackend,
        clients: Optional[ClientRegistry] = None,
    ):
        self.settings = settings
        self.network = network
        self.storage = storage
        self.clients = clients or ClientRegistry()

        self.registry = CacheNamespaceRegistry(
            storage,
            version=settings.cache_version,
            prefix=settings.cache_prefix,
            max_entries=settings.max_entries(),
            max_ages=settings.max_ages(),
        )
        self.fallback = FallbackGenerator()
        self.dispatcher = StrategyDispatcher(
            self.registry,
            network,
            origin=settings.origin,
            api_prefixes=settings.api_prefixes,
            fallback=self.fallback,
            network_timeout=settings.network_timeout,
            api_network_timeout=settings.api_network_timeout,
            precache_assets=settings.precache_assets,
        )
        self.lifecycle = LifecycleManager(
            self.registry,
            network,
            origin=settings.origin,
            precache_assets=settings.precache_assets,
            clients=self.clients,
            network_timeout=settings.network_timeout,
        )
        self.control = ControlChannel(self)

    @property
    def version(self) -> str:
        return self.settings.cache_version

    @property
    def state(self) -> WorkerState:
        return self.lifecycle.state

    # Hooks wired up by the host

    def on_install(self, event: InstallEvent) -> None:
        event.wait_until(self.lifecycle.install())

    def on_activate(self, event: ActivateEvent) -> None:
        event.wait_until(self.lifecycle.activate())

    def on_fetch(self, event: FetchEvent) -> None:
        if not is_cache_eligible(event.request, self.settings.origin):
            return
        event.respond_with(self.handle_fetch(event.request, event))

    def on_message(self, event: MessageEvent) -> None:
        port = event.ports[0] if event.ports else None
        event.wait_until(self.control.handle(event.data, port))

    # Request handling

    async def handle_fetch(self, request: Request, event: Optional[FetchEvent] = None) -> Response:
        with RequestContext(version=self.version):
            wait_until = event.wait_until if event is not None else None
            response = await self.dispatcher.resolve(request, wait_until=wait_until)
            if response is None:
                # Not cache-eligible; on_fetch normally filters these out
                return await self.network.fetch(request)
            return response

    # Control channel target

    def skip_waiting(self) -> None:
        self.lifecycle.skip_waiting()

    async def cache_urls(self, urls: List[str]) -> Tuple[List[str], List[str]]:
        """Fetch and add URLs to the dynamic namespace."""
        namespace = await self.registry.open(CacheKind.DYNAMIC)
        cached, failed = [], []

        for url in urls:
            request = Request(url=self._absolute(url))
            if not is_cache_eligible(request, self.settings.origin):
                failed.append(url)
                continue
            try:
                response = await self.network.fetch(request, timeout=self.settings.network_timeout)
            except NetworkError as e:
                logger.warning("Failed to fetch URL for caching", url=url, error=str(e))
                failed.append(url)
                continue
            if response.status != 200 or not await self.registry.put(namespace, request.cache_key(), response):
                failed.append(url)
                continue
            cached.append(url)

        logger.info("Ad hoc URLs cached", cached=len(cached), failed=len(failed))
        return cached, failed

    async def cache_status(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "state": self.state.value,
            "caches": await self.registry.status(),
            "stats": self.get_stats(),
        }

    async def clear_caches(self) -> List[str]:
        return await self.registry.clear_all()

    def _absolute(self, url: str) -> str:
        if url.startswith(("http://", "https://")):
            return url
        return f"{self.settings.origin}/{url.lstrip('/')}"

    def get_stats(self) -> Dict[str, Any]:
        return {
            "dispatcher": self.dispatcher.get_stats(),
            "registry": self.registry.get_stats(),
            "control": dict(self.control.stats),
        }


def create_worker(
    settings: Optional[OfflineCacheSettings] = None,
    network: Optional[Fetcher] = None,
    storage: Optional[StorageBackend] = None,
    clients: Optional[ClientRegistry] = None,
) -> OfflineWorker:
    """Build a worker from settings with the default network and storage."""
    settings = settings or get_settings()
    network = network or NetworkClient(settings.origin, timeout=settings.network_timeout)
    storage = storage or create_storage_backend(settings)
    return OfflineWorker(settings, network=network, storage=storage, clients=clients)
