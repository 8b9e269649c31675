"""
Offline Worker - Request Classifier

Maps an intercepted request to exactly one Classification. Pure and total:
the same request always yields the same value and nothing here raises.
"""
from enum import Enum
from typing import FrozenSet, Iterable
from urllib.parse import urlsplit

from ..shared.caching.models import Request


class Classification(str, Enum):
    """Request categories used for strategy routing."""
    STATIC_ASSET = "static_asset"
    DOCUMENT = "document"
    API_DATA = "api_data"
    OTHER = "other"


STATIC_DESTINATIONS = frozenset({"style", "script", "image", "font"})
UNHINTED_DESTINATIONS = frozenset({"", "empty"})
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".ico")
STATIC_EXTENSIONS = (".css", ".js", ".woff", ".woff2", ".ttf", ".eot") + IMAGE_EXTENSIONS


def _origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}".lower()


def is_cache_eligible(request: Request, origin: str) -> bool:
    """Only same-origin GET requests over http(s) go through the cache."""
    try:
        if request.method.upper() != "GET":
            return False
        parts = urlsplit(request.url)
        if parts.scheme not in ("http", "https"):
            return False
        return _origin_of(request.url) == _origin_of(origin)
    except (AttributeError, ValueError):
        return False


def precache_paths(assets: Iterable[str]) -> FrozenSet[str]:
    """Normalized paths of the precache list, for membership checks."""
    paths = set()
    for asset in assets:
        path = urlsplit(asset).path or "/"
        paths.add(path if path.startswith("/") else "/" + path)
    return frozenset(paths)


def is_image_request(request: Request) -> bool:
    try:
        if request.destination == "image":
            return True
        return urlsplit(request.url).path.lower().endswith(IMAGE_EXTENSIONS)
    except (AttributeError, ValueError):
        return False


def classify(
    request: Request,
    api_prefixes: Iterable[str] = ("/api/",),
    precached: FrozenSet[str] = frozenset(),
) -> Classification:
    """
    Classify a request.

    Precedence: static destination, then document destination (or a
    navigation), then membership in the precache list, then API path prefix,
    else OTHER. Requests without a destination hint (or with "empty") fall
    back to the file extension for static assets.
    """
    try:
        destination = (request.destination or "").lower()
        if destination in STATIC_DESTINATIONS:
            return Classification.STATIC_ASSET
        if destination == "document" or request.mode == "navigate":
            return Classification.DOCUMENT

        path = urlsplit(request.url).path or "/"
        if path in precached:
            return Classification.STATIC_ASSET
        if any(path.startswith(prefix) for prefix in api_prefixes):
            return Classification.API_DATA
        if destination in UNHINTED_DESTINATIONS and path.lower().endswith(STATIC_EXTENSIONS):
            return Classification.STATIC_ASSET
    except (AttributeError, TypeError, ValueError):
        pass
    return Classification.OTHER
