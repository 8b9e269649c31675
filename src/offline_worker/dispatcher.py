"""
Offline Worker - Strategy Dispatcher

Routes an intercepted request to its strategy executor:
classification -> strategy via a static table, classification -> target
namespace, then the executor. When the executor gives up with a network
error, the fallback generator supplies the response, so every handled
request gets one.
"""
from typing import Any, Dict, FrozenSet, Iterable, Optional

import structlog

from ..shared.caching.models import Request, Response
from ..shared.caching.namespaces import CacheKind, CacheNamespaceRegistry
from ..shared.exceptions import NetworkError
from .classifier import Classification, classify, is_cache_eligible, is_image_request, precache_paths
from .fallback import FallbackGenerator
from .network import Fetcher
from .strategies import CachingStrategy, Strategy, WaitUntil, build_strategies

logger = structlog.get_logger(__name__)


STRATEGY_ASSIGNMENT: Dict[Classification, Strategy] = {
    Classification.STATIC_ASSET: Strategy.CACHE_FIRST,
    Classification.DOCUMENT: Strategy.NETWORK_FIRST,
    Classification.API_DATA: Strategy.NETWORK_FIRST,
    Classification.OTHER: Strategy.STALE_WHILE_REVALIDATE,
}


def target_kind(
    request: Request,
    classification: Classification,
    precached: FrozenSet[str] = frozenset(),
) -> CacheKind:
    """Namespace kind a classified request reads and writes."""
    if classification == Classification.STATIC_ASSET:
        if request.path in precached:
            return CacheKind.STATIC
        return CacheKind.IMAGE if is_image_request(request) else CacheKind.STATIC
    return CacheKind.DYNAMIC


class StrategyDispatcher:
    """Classifies requests and runs the assigned strategy."""

    def __init__(
        self,
        registry: CacheNamespaceRegistry,
        network: Fetcher,
        origin: str,
        api_prefixes: Iterable[str] = ("/api/",),
        fallback: Optional[FallbackGenerator] = None,
        network_timeout: Optional[float] = None,
        api_network_timeout: Optional[float] = None,
        precache_assets: Iterable[str] = (),
    ):
        self.registry = registry
        self.network = network
        self.origin = origin
        self.api_prefixes = tuple(api_prefixes)
        self.fallback = fallback or FallbackGenerator()
        self.network_timeout = network_timeout
        self.api_network_timeout = api_network_timeout
        self.precached = precache_paths(precache_assets)
        self.strategies: Dict[Strategy, CachingStrategy] = build_strategies(registry, network)

        self.stats = {
            'handled': 0,
            'bypassed': 0,
            'fallbacks': 0,
            'errors': 0
        }

    def strategy_for(self, classification: Classification) -> CachingStrategy:
        return self.strategies[STRATEGY_ASSIGNMENT[classification]]

    async def resolve(self, request: Request, wait_until: Optional[WaitUntil] = None) -> Optional[Response]:
        """
        Handle a request.

        Returns None when the request is not cache-eligible; the caller must
        then send it to the network unchanged.
        """
        if not is_cache_eligible(request, self.origin):
            self.stats['bypassed'] += 1
            return None

        self.stats['handled'] += 1
        classification = classify(request, self.api_prefixes, self.precached)
        executor = self.strategy_for(classification)
        namespace = self.registry.namespace(target_kind(request, classification, self.precached))
        timeout = self.api_network_timeout if classification == Classification.API_DATA else self.network_timeout

        logger.debug("Dispatching request",
                     url=request.url,
                     classification=classification.value,
                     strategy=executor.strategy.value,
                     namespace=namespace.name)

        try:
            return await executor.handle(request, namespace, timeout=timeout, wait_until=wait_until)
        except NetworkError as e:
            self.stats['errors'] += 1
            self.stats['fallbacks'] += 1
            logger.warning("Request failed, serving fallback",
                           url=request.url,
                           classification=classification.value,
                           error=str(e))
            return self.fallback.generate(request, classification)

    def get_stats(self) -> Dict[str, Any]:
        totals = {
            'cache_hits': 0,
            'cache_misses': 0,
            'network_requests': 0,
        }
        for executor in self.strategies.values():
            for key in totals:
                totals[key] += executor.stats[key]
        return {
            **self.stats,
            **totals,
            'strategies': {strategy.value: dict(executor.stats) for strategy, executor in self.strategies.items()},
            'fallback': dict(self.fallback.stats)
        }
