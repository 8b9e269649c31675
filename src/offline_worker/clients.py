"""
Offline Worker - Client Registry

Tracks the open pages (client contexts) and which worker version controls
each of them.
"""
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class Client:
    """An open page."""
    url: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    controller: Optional[str] = None


class ClientRegistry:
    """Open client contexts known to the host."""

    def __init__(self):
        self._clients: Dict[str, Client] = {}

    def open(self, url: str, controller: Optional[str] = None) -> Client:
        client = Client(url=url, controller=controller)
        self._clients[client.id] = client
        return client

    def close(self, client_id: str) -> bool:
        return self._clients.pop(client_id, None) is not None

    def get(self, client_id: str) -> Optional[Client]:
        return self._clients.get(client_id)

    def match_all(self, controller: Optional[str] = None) -> List[Client]:
        clients = list(self._clients.values())
        if controller is not None:
            clients = [client for client in clients if client.controller == controller]
        return clients

    async def claim(self, version: str) -> int:
        """Make ``version`` the controller of every open client."""
        claimed = 0
        for client in self._clients.values():
            if client.controller != version:
                client.controller = version
                claimed += 1
        logger.info("Clients claimed", version=version, claimed=claimed, total=len(self._clients))
        return claimed

    def __len__(self) -> int:
        return len(self._clients)
