"""
Test helpers: a scripted network and request builders.
"""
import asyncio
from typing import Dict, List, Optional, Union

from src.shared.caching.models import Request, Response
from src.shared.config import OfflineCacheSettings
from src.shared.exceptions import NetworkError

ORIGIN = "http://localhost:8000"

PRECACHE = [
    "/",
    "/index.html",
    "/assets/css/styles.css",
    "/assets/js/app.js",
    "/manifest.json",
]


def url(path: str) -> str:
    return f"{ORIGIN}{path}"


class FakeNetwork:
    """Scripted network that records every fetch."""

    def __init__(self, routes: Optional[Dict[str, Union[Response, Exception]]] = None):
        self.routes: Dict[str, Union[Response, Exception, List[Response]]] = dict(routes or {})
        self.delays: Dict[str, float] = {}
        self.calls: List[str] = []
        self.offline = False

    def add(self, path: str, body: bytes = b"ok", status: int = 200,
            content_type: str = "text/plain", delay: float = 0.0) -> None:
        full = path if path.startswith("http") else url(path)
        self.routes[full] = Response(status=status, body=body, headers={"Content-Type": content_type}, url=full)
        if delay:
            self.delays[full] = delay

    def fail(self, path: str) -> None:
        full = path if path.startswith("http") else url(path)
        self.routes[full] = NetworkError("connection refused", url=full)

    def calls_for(self, path: str) -> int:
        full = path if path.startswith("http") else url(path)
        return self.calls.count(full)

    async def fetch(self, request: Request, timeout: Optional[float] = None) -> Response:
        full = request.url if request.url.startswith("http") else url(request.url)
        self.calls.append(full)

        delay = self.delays.get(full)
        if delay:
            await asyncio.sleep(delay)

        if self.offline:
            raise NetworkError("network unreachable", url=full)

        route = self.routes.get(full)
        if route is None:
            return Response(status=404, status_text="Not Found", body=b"missing", url=full)
        if isinstance(route, Exception):
            raise route
        if isinstance(route, list):
            return route.pop(0).clone() if len(route) > 1 else route[0].clone()
        return route.clone()


def make_settings(version: str = "v1", **overrides) -> OfflineCacheSettings:
    values = dict(
        origin=ORIGIN,
        cache_version=version,
        precache_assets=list(PRECACHE),
        storage_backend="memory",
    )
    values.update(overrides)
    return OfflineCacheSettings(**values)


def document(path: str) -> Request:
    return Request(url=url(path), destination="document", mode="navigate")


def asset(path: str, destination: str) -> Request:
    return Request(url=url(path), destination=destination)
