"""
Offline Worker - Control Channel

Message-based remote control of the worker. Pages post JSON-shaped messages;
replies go back over the message port supplied with the message.

Supported messages:
- {"type": "SKIP_WAITING"}
- {"type": "CACHE_URLS", "payload": ["/path", ...]}
- {"type": "GET_CACHE_STATUS"}
- {"type": "CLEAR_CACHE"}
"""
import asyncio
from typing import Annotated, Any, Dict, List, Literal, Optional, Protocol, Tuple, Union

import structlog
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from ..shared.exceptions import InvalidMessageError

logger = structlog.get_logger(__name__)


# Message schemas
class SkipWaitingMessage(BaseModel):
    type: Literal["SKIP_WAITING"]


class CacheUrlsMessage(BaseModel):
    type: Literal["CACHE_URLS"]
    payload: List[str] = Field(default_factory=list, description="URLs to add to the dynamic cache")


class GetCacheStatusMessage(BaseModel):
    type: Literal["GET_CACHE_STATUS"]


class ClearCacheMessage(BaseModel):
    type: Literal["CLEAR_CACHE"]


ControlMessage = Annotated[
    Union[SkipWaitingMessage, CacheUrlsMessage, GetCacheStatusMessage, ClearCacheMessage],
    Field(discriminator="type"),
]

_message_adapter = TypeAdapter(ControlMessage)


def parse_message(data: Any) -> ControlMessage:
    """Validate raw message data."""
    try:
        return _message_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidMessageError(f"Invalid control message: {e.errors()[0]['msg']}") from e


class MessagePort:
    """One end of a message channel."""

    def __init__(self):
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self.peer: Optional["MessagePort"] = None
        self.closed = False

    def post_message(self, data: Any) -> None:
        if self.closed or self.peer is None:
            logger.warning("Dropping message on closed port")
            return
        self.peer._queue.put_nowait(data)

    async def receive(self, timeout: Optional[float] = None) -> Any:
        return await asyncio.wait_for(self._queue.get(), timeout)

    def close(self) -> None:
        self.closed = True


class MessageChannel:
    """A pair of entangled ports."""

    def __init__(self):
        self.port1 = MessagePort()
        self.port2 = MessagePort()
        self.port1.peer = self.port2
        self.port2.peer = self.port1


class ControlTarget(Protocol):
    """What the control channel needs from the worker."""

    version: str

    def skip_waiting(self) -> None:
        ...

    async def cache_urls(self, urls: List[str]) -> Tuple[List[str], List[str]]:
        ...

    async def cache_status(self) -> Dict[str, Any]:
        ...

    async def clear_caches(self) -> List[str]:
        ...


class ControlChannel:
    """Dispatches control messages to the worker and posts replies."""

    def __init__(self, target: ControlTarget):
        self.target = target
        self.stats = {
            'received': 0,
            'invalid': 0
        }

    async def handle(self, data: Any, port: Optional[MessagePort] = None) -> Dict[str, Any]:
        """Handle one message; the reply is returned and posted to ``port``."""
        self.stats['received'] += 1
        try:
            message = parse_message(data)
            reply = await self._dispatch(message)
        except InvalidMessageError as e:
            self.stats['invalid'] += 1
            logger.warning("Ignoring invalid control message", error=str(e))
            reply = {"success": False, "error": str(e)}

        if port is not None:
            port.post_message(reply)
        return reply

    async def _dispatch(self, message: ControlMessage) -> Dict[str, Any]:
        logger.info("Control message received", message_type=message.type, version=self.target.version)

        if isinstance(message, SkipWaitingMessage):
            self.target.skip_waiting()
            return {"success": True}

        if isinstance(message, CacheUrlsMessage):
            cached, failed = await self.target.cache_urls(message.payload)
            return {"success": not failed, "cached": cached, "failed": failed}

        if isinstance(message, GetCacheStatusMessage):
            return await self.target.cache_status()

        cleared = await self.target.clear_caches()
        return {"success": True, "cleared": cleared}

