"""
HTTP snapshot types shared by the cache storage and the worker.

Responses are read fully into memory before they are returned or cached,
so a cached entry is an immutable copy of what the network produced.
"""

import base64
import json
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit


def cache_key(method: str, url: str) -> str:
    """Build the storage key for a request: method plus URL without fragment."""
    parts = urlsplit(url)
    normalized = urlunsplit((parts.scheme, parts.netloc, parts.path or "/", parts.query, ""))
    return f"{method.upper()} {normalized}"


def _header(headers: Dict[str, str], name: str) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


@dataclass
class Request:
    """An intercepted request."""
    url: str
    method: str = "GET"
    destination: str = ""
    mode: str = "no-cors"
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    def header(self, name: str) -> Optional[str]:
        return _header(self.headers, name)

    def cache_key(self) -> str:
        return cache_key(self.method, self.url)


@dataclass
class Response:
    """A fully-read HTTP response."""
    status: int = 200
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    status_text: str = ""
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status <= 299

    @property
    def content_type(self) -> Optional[str]:
        return self.header("Content-Type")

    def header(self, name: str) -> Optional[str]:
        return _header(self.headers, name)

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding, errors="replace")

    def clone(self) -> "Response":
        return replace(self, headers=dict(self.headers))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "status_text": self.status_text,
            "url": self.url,
            "headers": dict(self.headers),
            "body": base64.b64encode(self.body).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Response":
        return cls(
            status=data["status"],
            status_text=data.get("status_text", ""),
            url=data.get("url", ""),
            headers=dict(data.get("headers", {})),
            body=base64.b64decode(data.get("body", "")),
        )


@dataclass
class CachedEntry:
    """A response snapshot owned by exactly one cache namespace."""
    request_key: str
    response: Response
    stored_at: float = field(default_factory=time.time)

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.stored_at

    def is_expired(self, max_age: Optional[int], now: Optional[float] = None) -> bool:
        """Check if the entry is older than max_age seconds."""
        if max_age is None:
            return False
        return self.age(now) > max_age

    def copy(self) -> "CachedEntry":
        return CachedEntry(self.request_key, self.response.clone(), self.stored_at)

    def to_json(self) -> str:
        return json.dumps({
            "request_key": self.request_key,
            "stored_at": self.stored_at,
            "response": self.response.to_dict(),
        })

    @classmethod
    def from_json(cls, data: str) -> "CachedEntry":
        raw = json.loads(data)
        return cls(
            request_key=raw["request_key"],
            response=Response.from_dict(raw["response"]),
            stored_at=raw["stored_at"],
        )
