"""
Offline Worker - Network Client

Fetches resources from the origin over aiohttp and reads every response
fully into a Response snapshot. Connection failures and timeouts raise
NetworkError; HTTP error statuses are ordinary responses.
"""
import asyncio
from typing import Optional, Protocol
from urllib.parse import urljoin

import aiohttp
import structlog

from ..shared.caching.models import Request, Response
from ..shared.exceptions import NetworkError

logger = structlog.get_logger(__name__)


class Fetcher(Protocol):
    """Anything that can turn a Request into a Response."""

    async def fetch(self, request: Request, timeout: Optional[float] = None) -> Response:
        ...


class NetworkClient:
    """aiohttp-backed fetcher bound to one site origin."""

    def __init__(self, origin: str, timeout: float = 10.0, session: Optional[aiohttp.ClientSession] = None):
        self.origin = origin.rstrip('/')
        self.timeout = timeout
        self.session = session

        self.stats = {
            'requests': 0,
            'failures': 0
        }

    async def __aenter__(self):
        await self.get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self.session

    async def close(self) -> None:
        """Close HTTP session."""
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    def resolve(self, url: str) -> str:
        """Resolve a path against the origin."""
        return urljoin(self.origin + '/', url)

    async def fetch(self, request: Request, timeout: Optional[float] = None) -> Response:
        """Fetch a request and read the whole body."""
        url = self.resolve(request.url)
        session = await self.get_session()
        self.stats['requests'] += 1

        try:
            async with session.request(
                request.method,
                url,
                headers=request.headers or None,
                timeout=aiohttp.ClientTimeout(total=timeout or self.timeout),
                allow_redirects=True,
            ) as resp:
                body = await resp.read()
                return Response(
                    status=resp.status,
                    status_text=resp.reason or "",
                    headers={key: value for key, value in resp.headers.items()},
                    body=body,
                    url=str(resp.url),
                )
        except asyncio.TimeoutError as e:
            self.stats['failures'] += 1
            logger.warning("Network request timed out", url=url)
            raise NetworkError(f"Timed out fetching {url}", url=url) from e
        except aiohttp.ClientError as e:
            self.stats['failures'] += 1
            logger.warning("Network request failed", url=url, error=str(e))
            raise NetworkError(f"Failed to fetch {url}: {e}", url=url) from e
