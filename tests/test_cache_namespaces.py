"""
Unit tests for cache storage backends and the versioned namespace registry.
"""
import time
from unittest.mock import AsyncMock, MagicMock

import pytest
import redis.asyncio as redis

from src.shared.caching.models import CachedEntry, Response, cache_key
from src.shared.caching.namespaces import CacheKind, CacheNamespace, CacheNamespaceRegistry
from src.shared.caching.storage import (
    MemoryStorageBackend, RedisStorageBackend, create_storage_backend
)
from src.shared.exceptions import StorageError
from tests.helpers import make_settings, url


def _response(body: bytes = b"body", status: int = 200) -> Response:
    return Response(status=status, body=body, headers={"Content-Type": "text/css", "X-Id": "1"})


class FailingBackend(MemoryStorageBackend):
    """Memory backend whose every call fails."""

    async def create_namespace(self, name):
        raise StorageError("disk full")

    async def get(self, name, key):
        raise StorageError("disk full")

    async def put(self, name, key, entry):
        raise StorageError("disk full")

    async def put_many(self, name, entries):
        raise StorageError("disk full")

    async def list_namespaces(self):
        raise StorageError("disk full")


class TestCacheNamespace:

    def test_name_includes_kind_and_version(self):
        assert CacheNamespace(CacheKind.STATIC, "v1").name == "static-v1"

    def test_prefix(self):
        assert CacheNamespace(CacheKind.IMAGE, "v2", prefix="portfolio").name == "portfolio-image-v2"

    def test_allow_list(self, registry):
        assert registry.allow_list() == ["static-v1", "dynamic-v1", "image-v1"]


class TestCacheKey:

    def test_method_and_url(self):
        assert cache_key("get", url("/a?x=1")) == f"GET {url('/a?x=1')}"

    def test_fragment_stripped(self):
        assert cache_key("GET", url("/a#top")) == cache_key("GET", url("/a"))

    def test_empty_path_normalized(self):
        assert cache_key("GET", "http://localhost:8000") == cache_key("GET", url("/"))


class TestRegistry:

    @pytest.mark.asyncio
    async def test_put_then_match_returns_exact_snapshot(self, registry):
        ns = await registry.open(CacheKind.STATIC)
        original = _response(b"\x00\x01binary")

        assert await registry.put(ns, "GET /a", original)
        entry = await registry.match(ns, "GET /a")

        assert entry.response == original
        assert entry.request_key == "GET /a"

    @pytest.mark.asyncio
    async def test_put_overwrites_same_key(self, registry):
        ns = await registry.open(CacheKind.DYNAMIC)
        await registry.put(ns, "GET /a", _response(b"old"))
        await registry.put(ns, "GET /a", _response(b"new"))

        entry = await registry.match(ns, "GET /a")
        assert entry.response.body == b"new"
        assert await registry.keys(ns) == ["GET /a"]

    @pytest.mark.asyncio
    async def test_namespaces_are_independent(self, registry):
        static = await registry.open(CacheKind.STATIC)
        dynamic = await registry.open(CacheKind.DYNAMIC)
        await registry.put(static, "GET /a", _response(b"static"))

        assert await registry.match(dynamic, "GET /a") is None
        await registry.put(dynamic, "GET /a", _response(b"dynamic"))
        assert (await registry.match(static, "GET /a")).response.body == b"static"

    @pytest.mark.asyncio
    async def test_stored_snapshot_is_not_aliased(self, registry):
        ns = await registry.open(CacheKind.STATIC)
        response = _response()
        await registry.put(ns, "GET /a", response)
        response.headers["X-Id"] = "changed"

        entry = await registry.match(ns, "GET /a")
        assert entry.response.headers["X-Id"] == "1"

    @pytest.mark.asyncio
    async def test_dynamic_namespace_created_lazily_on_write(self, registry):
        assert await registry.list_namespaces() == []
        await registry.put(registry.namespace(CacheKind.DYNAMIC), "GET /a", _response())
        assert await registry.list_namespaces() == ["dynamic-v1"]

    @pytest.mark.asyncio
    async def test_trim_drops_oldest(self, registry):
        ns = await registry.open(CacheKind.DYNAMIC)
        for i in range(5):
            await registry.put(ns, f"GET /{i}", _response())

        assert await registry.keys(ns) == ["GET /2", "GET /3", "GET /4"]
        assert registry.stats['trimmed'] == 2

    @pytest.mark.asyncio
    async def test_put_all_does_not_trim(self, registry):
        ns = await registry.open(CacheKind.DYNAMIC)
        await registry.put_all(ns, {f"GET /{i}": _response() for i in range(5)})
        assert len(await registry.keys(ns)) == 5

    @pytest.mark.asyncio
    async def test_expiry_per_kind(self, registry):
        ns = registry.namespace(CacheKind.DYNAMIC)
        fresh = CachedEntry("GET /a", _response(), stored_at=time.time())
        old = CachedEntry("GET /a", _response(), stored_at=time.time() - 120)

        assert not registry.is_expired(ns, fresh)
        assert registry.is_expired(ns, old)
        assert not registry.is_expired(registry.namespace(CacheKind.STATIC), old)

    @pytest.mark.asyncio
    async def test_match_returns_expired_entry(self, registry):
        ns = await registry.open(CacheKind.DYNAMIC)
        await registry.backend.put(ns.name, "GET /old", CachedEntry("GET /old", _response(), stored_at=time.time() - 120))

        entry = await registry.match(ns, "GET /old")

        assert entry is not None
        assert registry.is_expired(ns, entry)

    @pytest.mark.asyncio
    async def test_write_evicts_expired_entries(self, registry):
        ns = await registry.open(CacheKind.DYNAMIC)
        await registry.backend.put(ns.name, "GET /old", CachedEntry("GET /old", _response(), stored_at=time.time() - 120))
        await registry.backend.put(ns.name, "GET /recent", CachedEntry("GET /recent", _response(), stored_at=time.time()))

        await registry.put(ns, "GET /new", _response())

        assert await registry.keys(ns) == ["GET /recent", "GET /new"]
        assert registry.stats['trimmed'] == 1

    @pytest.mark.asyncio
    async def test_delete_and_clear_all(self, registry):
        for kind in CacheKind:
            await registry.open(kind)
        assert await registry.delete("static-v1")
        assert not await registry.delete("static-v1")

        cleared = await registry.clear_all()
        assert sorted(cleared) == ["dynamic-v1", "image-v1"]
        assert await registry.list_namespaces() == []

    @pytest.mark.asyncio
    async def test_status(self, registry):
        ns = await registry.open(CacheKind.DYNAMIC)
        await registry.put(ns, "GET /a", _response())
        await registry.backend.create_namespace("static-v0")

        status = await registry.status()
        assert status["dynamic-v1"] == {"size": 1, "max_size": 3}
        assert status["static-v0"] == {"size": 0, "max_size": "unlimited"}


class TestRegistryStorageFailures:
    """Storage errors degrade to misses and no-ops."""

    @pytest.fixture
    def failing_registry(self):
        return CacheNamespaceRegistry(FailingBackend(), version="v1")

    @pytest.mark.asyncio
    async def test_read_failure_is_miss(self, failing_registry):
        ns = await failing_registry.open(CacheKind.STATIC)
        assert await failing_registry.match(ns, "GET /a") is None
        assert failing_registry.stats['storage_errors'] == 2

    @pytest.mark.asyncio
    async def test_write_failure_is_noop(self, failing_registry):
        ns = failing_registry.namespace(CacheKind.STATIC)
        assert await failing_registry.put(ns, "GET /a", _response()) is False

    @pytest.mark.asyncio
    async def test_bulk_write_failure_propagates(self, failing_registry):
        ns = failing_registry.namespace(CacheKind.STATIC)
        with pytest.raises(StorageError):
            await failing_registry.put_all(ns, {"GET /a": _response()})

    @pytest.mark.asyncio
    async def test_list_failure_is_empty(self, failing_registry):
        assert await failing_registry.list_namespaces() == []


class TestCachedEntrySerialization:

    def test_json_preserves_binary_body_and_headers(self):
        entry = CachedEntry("GET /img", Response(status=200, body=bytes(range(256)),
                                                 headers={"Content-Type": "image/png"}), stored_at=12.5)
        restored = CachedEntry.from_json(entry.to_json())

        assert restored.response == entry.response
        assert restored.stored_at == 12.5


def _pipeline(results):
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=results)
    pipe.__aenter__ = AsyncMock(return_value=pipe)
    pipe.__aexit__ = AsyncMock(return_value=None)
    return pipe


class TestRedisStorageBackend:
    """Redis backend against a mocked client."""

    @pytest.fixture
    def client(self):
        return AsyncMock()

    @pytest.fixture
    def backend(self, client):
        return RedisStorageBackend(key_prefix="test", client=client)

    @pytest.mark.asyncio
    async def test_get_deserializes_entry(self, backend, client):
        entry = CachedEntry("GET /a", _response(b"css"), stored_at=1.0)
        client.hget.return_value = entry.to_json()

        result = await backend.get("static-v1", "GET /a")

        client.hget.assert_awaited_once_with("test:ns:static-v1:entries", "GET /a")
        assert result.response.body == b"css"

    @pytest.mark.asyncio
    async def test_get_missing(self, backend, client):
        client.hget.return_value = None
        assert await backend.get("static-v1", "GET /a") is None

    @pytest.mark.asyncio
    async def test_corrupt_entry_raises_storage_error(self, backend, client):
        client.hget.return_value = "{not json"
        with pytest.raises(StorageError):
            await backend.get("static-v1", "GET /a")

    @pytest.mark.asyncio
    async def test_put_many_uses_pipeline(self, backend, client):
        pipe = _pipeline([1, 1, 1])
        client.pipeline = MagicMock(return_value=pipe)
        entry = CachedEntry("GET /a", _response(), stored_at=5.0)

        await backend.put_many("dynamic-v1", {"GET /a": entry})

        pipe.hset.assert_called_once_with("test:ns:dynamic-v1:entries", mapping={"GET /a": entry.to_json()})
        pipe.zadd.assert_any_call("test:ns:dynamic-v1:order", {"GET /a": 5.0})
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_drop_namespace(self, backend, client):
        client.pipeline = MagicMock(return_value=_pipeline([1, 2]))
        assert await backend.drop_namespace("static-v0") is True

    @pytest.mark.asyncio
    async def test_list_namespaces(self, backend, client):
        client.zrange.return_value = ["static-v1", "dynamic-v1"]
        assert await backend.list_namespaces() == ["static-v1", "dynamic-v1"]
        client.zrange.assert_awaited_once_with("test:namespaces", 0, -1)

    @pytest.mark.asyncio
    async def test_redis_errors_become_storage_errors(self, backend, client):
        client.zrange.side_effect = redis.ConnectionError("down")
        with pytest.raises(StorageError):
            await backend.list_namespaces()

    @pytest.mark.asyncio
    async def test_close(self, backend, client):
        await backend.close()
        client.aclose.assert_awaited_once()
        assert backend.redis_client is None


class TestCreateStorageBackend:

    def test_memory(self):
        assert isinstance(create_storage_backend(make_settings()), MemoryStorageBackend)

    def test_redis(self):
        backend = create_storage_backend(make_settings(storage_backend="redis", redis_key_prefix="site"))
        assert isinstance(backend, RedisStorageBackend)
        assert backend.key_prefix == "site"
