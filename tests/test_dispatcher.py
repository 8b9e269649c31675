"""
Unit tests for strategy dispatch and offline fallbacks.
"""
import pytest

from src.shared.caching.models import Request, Response
from src.shared.caching.namespaces import CacheKind
from src.offline_worker.classifier import Classification
from src.offline_worker.dispatcher import STRATEGY_ASSIGNMENT, StrategyDispatcher, target_kind
from src.offline_worker.fallback import OFFLINE_MARKER, FallbackGenerator
from src.offline_worker.strategies import Strategy
from tests.helpers import ORIGIN, FakeNetwork, asset, document, url


@pytest.fixture
def fake():
    return FakeNetwork()


@pytest.fixture
def dispatcher(registry, fake):
    return StrategyDispatcher(registry, fake, origin=ORIGIN, network_timeout=5.0, api_network_timeout=1.0)


class TestStrategyAssignment:

    def test_every_classification_has_a_strategy(self):
        assert set(STRATEGY_ASSIGNMENT) == set(Classification)

    def test_table(self):
        assert STRATEGY_ASSIGNMENT[Classification.STATIC_ASSET] == Strategy.CACHE_FIRST
        assert STRATEGY_ASSIGNMENT[Classification.DOCUMENT] == Strategy.NETWORK_FIRST
        assert STRATEGY_ASSIGNMENT[Classification.API_DATA] == Strategy.NETWORK_FIRST
        assert STRATEGY_ASSIGNMENT[Classification.OTHER] == Strategy.STALE_WHILE_REVALIDATE

    def test_target_namespaces(self):
        assert target_kind(asset("/a.css", "style"), Classification.STATIC_ASSET) == CacheKind.STATIC
        assert target_kind(asset("/a.png", "image"), Classification.STATIC_ASSET) == CacheKind.IMAGE
        assert target_kind(document("/"), Classification.DOCUMENT) == CacheKind.DYNAMIC
        assert target_kind(Request(url=url("/api/x")), Classification.API_DATA) == CacheKind.DYNAMIC


class TestResolve:

    @pytest.mark.asyncio
    async def test_not_handled_for_post(self, dispatcher, fake):
        result = await dispatcher.resolve(Request(url=url("/api/customers"), method="POST"))
        assert result is None
        assert fake.calls == []
        assert dispatcher.stats['bypassed'] == 1

    @pytest.mark.asyncio
    async def test_not_handled_cross_origin(self, dispatcher):
        assert await dispatcher.resolve(Request(url="https://fonts.example.com/a.woff2", destination="font")) is None

    @pytest.mark.asyncio
    async def test_static_asset_cold_then_warm(self, dispatcher, fake, registry):
        fake.add("/assets/main.css", body=b"body{}", content_type="text/css")
        request = asset("/assets/main.css", "style")

        first = await dispatcher.resolve(request)
        second = await dispatcher.resolve(request)

        assert first.body == second.body == b"body{}"
        assert fake.calls_for("/assets/main.css") == 1
        assert await registry.match(registry.namespace(CacheKind.STATIC), request.cache_key()) is not None

    @pytest.mark.asyncio
    async def test_images_go_to_image_namespace(self, dispatcher, fake, registry):
        fake.add("/assets/images/avatar.jpg", body=b"jpeg", content_type="image/jpeg")
        request = asset("/assets/images/avatar.jpg", "image")

        await dispatcher.resolve(request)

        assert await registry.match(registry.namespace(CacheKind.IMAGE), request.cache_key()) is not None
        assert await registry.match(registry.namespace(CacheKind.STATIC), request.cache_key()) is None

    @pytest.mark.asyncio
    async def test_precached_file_served_from_static_namespace(self, registry):
        net = FakeNetwork()
        dispatcher = StrategyDispatcher(registry, net, origin=ORIGIN, precache_assets=["/manifest.json"])
        request = Request(url=url("/manifest.json"), destination="manifest")
        ns = await registry.open(CacheKind.STATIC)
        await registry.put_all(ns, {request.cache_key(): Response(status=200, body=b"{}")})
        net.offline = True

        response = await dispatcher.resolve(request)

        assert response.body == b"{}"
        assert net.calls == []

    def test_precached_image_targets_static(self):
        request = asset("/assets/images/logo.png", "image")
        precached = frozenset({"/assets/images/logo.png"})
        assert target_kind(request, Classification.STATIC_ASSET, precached) == CacheKind.STATIC

    @pytest.mark.asyncio
    async def test_api_requests_use_short_timeout(self, registry):
        seen = []

        class RecordingNetwork(FakeNetwork):
            async def fetch(self, request, timeout=None):
                seen.append(timeout)
                return await super().fetch(request, timeout)

        net = RecordingNetwork()
        net.add("/api/products", body=b"[]")
        dispatcher = StrategyDispatcher(registry, net, origin=ORIGIN, network_timeout=5.0, api_network_timeout=1.0)

        await dispatcher.resolve(Request(url=url("/api/products")))
        await dispatcher.resolve(document("/"))

        assert seen == [1.0, 5.0]

    @pytest.mark.asyncio
    async def test_document_offline_without_cache_gets_offline_page(self, dispatcher, fake):
        fake.offline = True

        response = await dispatcher.resolve(document("/index.html"))

        assert response.status == 200
        assert response.content_type.startswith("text/html")
        assert OFFLINE_MARKER in response.text()
        assert dispatcher.stats['fallbacks'] == 1

    @pytest.mark.asyncio
    async def test_document_offline_with_snapshot(self, dispatcher, fake):
        fake.add("/about.html", body=b"<p>about</p>", content_type="text/html")
        await dispatcher.resolve(document("/about.html"))
        fake.offline = True

        response = await dispatcher.resolve(document("/about.html"))

        assert response.body == b"<p>about</p>"

    @pytest.mark.asyncio
    async def test_image_offline_gets_placeholder(self, dispatcher, fake):
        fake.offline = True
        response = await dispatcher.resolve(asset("/assets/images/x.png", "image"))
        assert response.status == 200
        assert response.content_type == "image/svg+xml"

    @pytest.mark.asyncio
    async def test_api_offline_gets_404(self, dispatcher, fake):
        fake.offline = True
        response = await dispatcher.resolve(Request(url=url("/api/payments")))
        assert response.status == 404

    @pytest.mark.asyncio
    async def test_stats(self, dispatcher, fake):
        fake.add("/assets/main.css")
        await dispatcher.resolve(asset("/assets/main.css", "style"))
        await dispatcher.resolve(asset("/assets/main.css", "style"))

        stats = dispatcher.get_stats()
        assert stats['handled'] == 2
        assert stats['cache_hits'] == 1
        assert stats['cache_misses'] == 1
        assert stats['network_requests'] == 1


class TestFallbackGenerator:

    def test_document_page_escapes_path(self):
        response = FallbackGenerator().generate(document("/<script>"), Classification.DOCUMENT)
        assert "<script>" not in response.text()
        assert OFFLINE_MARKER in response.text()

    def test_stylesheet_gets_404(self):
        response = FallbackGenerator().generate(asset("/a.css", "style"), Classification.STATIC_ASSET)
        assert response.status == 404
        assert response.body == b"Not available offline"

    def test_never_raises_on_broken_request(self):
        generator = FallbackGenerator()
        response = generator.generate(object(), Classification.DOCUMENT)  # type: ignore[arg-type]
        assert response.status == 404
        assert generator.stats['not_found'] == 1
