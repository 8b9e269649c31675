"""
Offline Worker - Host Registration

Stands in for the platform that runs the worker: dispatches lifecycle
events, keeps at most one active and one waiting worker, routes intercepted
requests to the active worker and forwards control messages.

Install and activate for one worker never run concurrently; every
extension registered with wait_until() is awaited before an event counts
as finished.
"""
import asyncio
from typing import Any, Optional, Set

import structlog

from ..shared.caching.models import Request, Response
from ..shared.exceptions import InstallError
from .clients import ClientRegistry
from .control_channel import MessagePort
from .events import ActivateEvent, FetchEvent, InstallEvent, MessageEvent
from .network import Fetcher
from .worker import OfflineWorker

logger = structlog.get_logger(__name__)


class WorkerRegistration:
    """Active/waiting worker slots for one site scope."""

    def __init__(self, network: Fetcher, clients: Optional[ClientRegistry] = None):
        self.network = network
        self.clients = clients or ClientRegistry()
        self.active: Optional[OfflineWorker] = None
        self.waiting: Optional[OfflineWorker] = None
        self._lock = asyncio.Lock()
        self._extensions: Set[asyncio.Task] = set()

    async def register(self, worker: OfflineWorker) -> bool:
        """
        Install a new worker version.

        Returns True if it installed. A failed install leaves the current
        active worker in control and the new worker redundant.
        """
        async with self._lock:
            worker.clients = self.clients
            worker.lifecycle.clients = self.clients

            event = InstallEvent()
            worker.on_install(event)
            try:
                await event.settle()
            except InstallError as e:
                logger.error("Worker install rejected, keeping current version",
                             version=worker.version,
                             active=self.active.version if self.active else None,
                             error=str(e))
                return False

            if self.waiting is not None:
                self.waiting.lifecycle.make_redundant()
            self.waiting = worker

            if self.active is None or worker.lifecycle.skip_waiting_requested or not self._old_clients():
                await self._activate_waiting()
            else:
                logger.info("Worker installed and waiting", version=worker.version,
                            active=self.active.version)
            return True

    def _old_clients(self) -> bool:
        return bool(self.active and self.clients.match_all(controller=self.active.version))

    async def _activate_waiting(self) -> None:
        worker = self.waiting
        if worker is None:
            return

        self.waiting = None
        previous = self.active
        event = ActivateEvent()
        worker.on_activate(event)
        await event.settle()

        if previous is not None:
            previous.lifecycle.make_redundant()
        self.active = worker

    async def clients_closed(self) -> None:
        """Activate the waiting worker once no page uses the old version."""
        async with self._lock:
            if self.waiting is not None and not self._old_clients():
                await self._activate_waiting()

    async def skip_waiting(self) -> None:
        """Activate the waiting worker if it requested skip-waiting."""
        async with self._lock:
            if self.waiting is not None and self.waiting.lifecycle.skip_waiting_requested:
                await self._activate_waiting()

    async def fetch(self, request: Request, client_id: Optional[str] = None) -> Response:
        """Route a request through the active worker, else to the network."""
        if self.active is None:
            return await self.network.fetch(request)

        event = FetchEvent(request, client_id=client_id)
        self.active.on_fetch(event)
        if not event.handled:
            return await self.network.fetch(request)

        response = await event.response()
        if event.pending:
            # Keep background work such as revalidation alive past the response
            task = asyncio.ensure_future(event.settle())
            self._extensions.add(task)
            task.add_done_callback(self._extension_done)
        return response

    def _extension_done(self, task: asyncio.Task) -> None:
        self._extensions.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Fetch extension failed", error=str(task.exception()))

    async def drain(self) -> None:
        """Wait for outstanding fetch extensions."""
        while self._extensions:
            await asyncio.gather(*list(self._extensions), return_exceptions=True)

    async def post_message(self, data: Any, port: Optional[MessagePort] = None, to_waiting: bool = False) -> None:
        """
        Deliver a control message to the active (or waiting) worker.

        SKIP_WAITING only means something to a waiting worker, so send it with
        ``to_waiting=True``. An active worker that receives it logs a warning
        and the request is dropped.
        """
        worker = self.waiting if to_waiting else self.active
        if worker is None:
            worker = self.active or self.waiting
        if worker is None:
            logger.warning("No worker to receive message")
            return

        event = MessageEvent(data, ports=[port] if port else None)
        worker.on_message(event)
        await event.settle()

        if not worker.lifecycle.skip_waiting_requested:
            return
        if worker is self.waiting:
            await self.skip_waiting()
        elif worker is self.active:
            logger.warning("Skip waiting sent to the active worker, ignoring",
                           version=worker.version,
                           waiting=self.waiting.version if self.waiting else None)
            worker.lifecycle.skip_waiting_requested = False
