"""
Shared fixtures for offline worker tests.
"""
import pytest

from src.shared.caching.namespaces import CacheNamespaceRegistry
from src.shared.caching.storage import MemoryStorageBackend
from src.offline_worker.worker import OfflineWorker
from tests.helpers import PRECACHE, FakeNetwork, make_settings


@pytest.fixture
def network():
    fake = FakeNetwork()
    for path in PRECACHE:
        fake.add(path, body=f"precached {path}".encode())
    return fake


@pytest.fixture
def storage():
    return MemoryStorageBackend()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def registry(storage):
    return CacheNamespaceRegistry(
        storage,
        version="v1",
        max_entries={"static": 50, "dynamic": 3, "image": 200},
        max_ages={"static": 3600, "dynamic": 60, "image": 3600},
    )


@pytest.fixture
def worker(settings, network, storage):
    return OfflineWorker(settings, network=network, storage=storage)
