"""
Offline Worker - Lifecycle Manager

Drives one worker version through
PARSED -> INSTALLING -> INSTALLED (waiting) -> ACTIVATING -> ACTIVATED,
or to REDUNDANT when installation fails or a newer version takes over.

Install precaches the fixed asset list atomically: either every asset is
fetched and written into the new static namespace, or the namespace this
install created is discarded and the install is rejected. Activate evicts
every namespace outside the current allow-list and claims open clients.
"""
import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import structlog

from ..shared.caching.models import Request, Response, cache_key
from ..shared.caching.namespaces import CacheKind, CacheNamespaceRegistry
from ..shared.exceptions import InstallError, NetworkError, StorageError
from .clients import ClientRegistry
from .network import Fetcher

logger = structlog.get_logger(__name__)


class WorkerState(str, Enum):
    """Worker lifecycle states."""
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


class LifecycleManager:
    """Install, activate and skip-waiting for one worker version."""

    def __init__(
        self,
        registry: CacheNamespaceRegistry,
        network: Fetcher,
        origin: str,
        precache_assets: List[str],
        clients: Optional[ClientRegistry] = None,
        network_timeout: Optional[float] = None,
    ):
        self.registry = registry
        self.network = network
        self.origin = origin.rstrip('/')
        self.precache_assets = list(precache_assets)
        self.clients = clients or ClientRegistry()
        self.network_timeout = network_timeout

        self.state = WorkerState.PARSED
        self.skip_waiting_requested = False
        self.installed_at: Optional[datetime] = None
        self.activated_at: Optional[datetime] = None
        self.evicted: List[str] = []

    @property
    def version(self) -> str:
        return self.registry.version

    @property
    def is_waiting(self) -> bool:
        return self.state == WorkerState.INSTALLED

    def _asset_url(self, asset: str) -> str:
        if asset.startswith(("http://", "https://")):
            return asset
        return f"{self.origin}/{asset.lstrip('/')}"

    async def _fetch_asset(self, url: str) -> Tuple[str, Response]:
        response = await self.network.fetch(Request(url=url), timeout=self.network_timeout)
        if response.status != 200:
            raise NetworkError(f"Precache fetch returned {response.status} for {url}", url=url)
        return url, response

    async def install(self) -> int:
        """
        Precache every asset into the new static namespace.

        Returns the number of cached assets. Raises InstallError if any
        asset cannot be fetched or written.
        """
        if self.state != WorkerState.PARSED:
            raise InstallError(f"Cannot install worker in state {self.state.value}")

        self.state = WorkerState.INSTALLING
        namespace = self.registry.namespace(CacheKind.STATIC)
        existed = await self.registry.exists(namespace.name)
        await self.registry.open(CacheKind.STATIC)

        logger.info("Worker installing", version=self.version,
                    namespace=namespace.name, assets=len(self.precache_assets))

        urls = [self._asset_url(asset) for asset in self.precache_assets]
        results = await asyncio.gather(*(self._fetch_asset(url) for url in urls), return_exceptions=True)

        failed = [url for url, result in zip(urls, results) if isinstance(result, BaseException)]
        try:
            if failed:
                raise InstallError(f"Failed to precache {len(failed)} of {len(urls)} assets", failed)
            await self.registry.put_all(
                namespace,
                {cache_key("GET", url): response for url, response in results},
            )
        except (InstallError, StorageError) as e:
            if not existed:
                await self.registry.delete(namespace.name)
            self.state = WorkerState.REDUNDANT
            logger.error("Worker install failed", version=self.version, error=str(e), failed_assets=failed)
            if isinstance(e, InstallError):
                raise
            raise InstallError(f"Failed to write precache: {e}", urls) from e

        self.state = WorkerState.INSTALLED
        self.installed_at = datetime.now(timezone.utc)
        logger.info("Worker installed", version=self.version, cached=len(urls))
        return len(urls)

    def skip_waiting(self) -> None:
        """Ask the host to activate this worker without waiting for old clients."""
        self.skip_waiting_requested = True
        logger.info("Skip waiting requested", version=self.version, state=self.state.value)

    async def activate(self) -> List[str]:
        """Evict stale namespaces and claim clients; returns evicted names."""
        if self.state != WorkerState.INSTALLED:
            raise RuntimeError(f"Cannot activate worker in state {self.state.value}")

        self.state = WorkerState.ACTIVATING
        allowed = set(self.registry.allow_list())

        stale = [name for name in await self.registry.list_namespaces() if name not in allowed]
        results = await asyncio.gather(*(self.registry.delete(name) for name in stale))
        self.evicted = [name for name, deleted in zip(stale, results) if deleted]
        for name in self.evicted:
            logger.info("Deleted old cache", namespace=name)

        await self.clients.claim(self.version)

        self.state = WorkerState.ACTIVATED
        self.activated_at = datetime.now(timezone.utc)
        logger.info("Worker activated", version=self.version, evicted=len(self.evicted))
        return self.evicted

    def make_redundant(self) -> None:
        self.state = WorkerState.REDUNDANT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "state": self.state.value,
            "skip_waiting_requested": self.skip_waiting_requested,
            "installed_at": self.installed_at.isoformat() if self.installed_at else None,
            "activated_at": self.activated_at.isoformat() if self.activated_at else None,
            "evicted": list(self.evicted),
        }
