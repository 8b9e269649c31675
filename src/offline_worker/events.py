"""
Offline Worker - Lifecycle and Fetch Events

Events the host dispatches to the worker. An extendable event collects the
awaitables the worker registers with wait_until(); the host awaits them all
before it considers the event finished, so background work started while
handling an event is not cut short.
"""
import asyncio
from typing import Any, Awaitable, List, Optional

from ..shared.caching.models import Request, Response


class ExtendableEvent:
    """Event whose lifetime can be extended by pending work."""

    type = "extendable"

    def __init__(self):
        self._pending: List[asyncio.Future] = []

    def wait_until(self, awaitable: Awaitable) -> None:
        """Keep the event alive until the awaitable settles."""
        self._pending.append(asyncio.ensure_future(awaitable))

    @property
    def pending(self) -> int:
        return sum(1 for future in self._pending if not future.done())

    async def settle(self) -> None:
        """
        Await every extension registered so far, including ones added
        while waiting. The first failure is re-raised after all settle.
        """
        first_error: Optional[BaseException] = None
        seen = 0
        while seen < len(self._pending):
            batch = self._pending[seen:]
            seen = len(self._pending)
            results = await asyncio.gather(*batch, return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException) and first_error is None:
                    first_error = result
        if first_error is not None:
            raise first_error


class InstallEvent(ExtendableEvent):
    type = "install"


class ActivateEvent(ExtendableEvent):
    type = "activate"


class FetchEvent(ExtendableEvent):
    """An intercepted request awaiting a response."""

    type = "fetch"

    def __init__(self, request: Request, client_id: Optional[str] = None):
        super().__init__()
        self.request = request
        self.client_id = client_id
        self._response: Optional[asyncio.Future] = None

    def respond_with(self, response: Awaitable[Response]) -> None:
        if self._response is not None:
            raise RuntimeError("respond_with() already called for this fetch event")
        self._response = asyncio.ensure_future(response)

    @property
    def handled(self) -> bool:
        return self._response is not None

    async def response(self) -> Optional[Response]:
        """The worker's response, or None if it declined to handle the request."""
        if self._response is None:
            return None
        return await self._response


class MessageEvent(ExtendableEvent):
    """A control message with optional reply ports."""

    type = "message"

    def __init__(self, data: Any, ports: Optional[List[Any]] = None, source: Optional[str] = None):
        super().__init__()
        self.data = data
        self.ports = list(ports or [])
        self.source = source
