"""
Offline Worker - background request interception with offline caching.

Intercepts same-origin GET requests, routes them through cache-first,
network-first or stale-while-revalidate strategies over versioned cache
namespaces, and synthesizes offline responses when cache and network both
fail.
"""

from .classifier import Classification, classify, is_cache_eligible
from .clients import Client, ClientRegistry
from .control_channel import ControlChannel, MessageChannel, MessagePort, parse_message
from .dispatcher import STRATEGY_ASSIGNMENT, StrategyDispatcher
from .events import ActivateEvent, ExtendableEvent, FetchEvent, InstallEvent, MessageEvent
from .fallback import OFFLINE_MARKER, FallbackGenerator
from .host import WorkerRegistration
from .lifecycle import LifecycleManager, WorkerState
from .network import Fetcher, NetworkClient
from .strategies import CacheFirst, NetworkFirst, StaleWhileRevalidate, Strategy
from .worker import OfflineWorker, create_worker

__all__ = [
    # Classification
    'Classification',
    'classify',
    'is_cache_eligible',

    # Strategies
    'Strategy',
    'CacheFirst',
    'NetworkFirst',
    'StaleWhileRevalidate',
    'STRATEGY_ASSIGNMENT',
    'StrategyDispatcher',

    # Lifecycle
    'WorkerState',
    'LifecycleManager',
    'Client',
    'ClientRegistry',

    # Events
    'ExtendableEvent',
    'InstallEvent',
    'ActivateEvent',
    'FetchEvent',
    'MessageEvent',

    # Fallback
    'FallbackGenerator',
    'OFFLINE_MARKER',

    # Control channel
    'ControlChannel',
    'MessageChannel',
    'MessagePort',
    'parse_message',

    # Network
    'Fetcher',
    'NetworkClient',

    # Worker and host
    'OfflineWorker',
    'create_worker',
    'WorkerRegistration'
]
