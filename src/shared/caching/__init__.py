"""
Versioned cache storage for the offline worker.

This package provides:
- Fully-read HTTP snapshot types (Request, Response, CachedEntry)
- Storage backends (in-memory and Redis)
- The versioned namespace registry (static, dynamic, image)
"""

from .models import (
    Request,
    Response,
    CachedEntry,
    cache_key
)

from .storage import (
    StorageBackend,
    MemoryStorageBackend,
    RedisStorageBackend,
    create_storage_backend
)

from .namespaces import (
    CacheKind,
    CacheNamespace,
    CacheNamespaceRegistry
)

__all__ = [
    # Snapshots
    'Request',
    'Response',
    'CachedEntry',
    'cache_key',

    # Storage backends
    'StorageBackend',
    'MemoryStorageBackend',
    'RedisStorageBackend',
    'create_storage_backend',

    # Namespaces
    'CacheKind',
    'CacheNamespace',
    'CacheNamespaceRegistry'
]
