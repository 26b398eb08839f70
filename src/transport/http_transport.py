# src/transport/http_transport.py
"""
HTTP Transport - delivers consensus messages to peer nodes over HTTP

Each peer listens on base_port + peer_id and accepts POST /message.
Delivery is best effort: per-peer failures (connection refused, timeouts,
error statuses) are logged and dropped, never retried.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, List

import httpx

from src.config import settings
from src.binary_consensus.messages import ConsensusMessage
from src.binary_consensus.transport import Transport
from src.middleware.correlation import HEADER_NAME, get_correlation_id

logger = logging.getLogger("consensus.transport.http")


@dataclass
class HttpTransportConfig:
    """Peer addressing for the HTTP transport"""
    host: str = field(default_factory=lambda: settings.NODE_HOST)
    base_port: int = field(default_factory=lambda: settings.BASE_NODE_PORT)
    timeout: float = field(default_factory=lambda: settings.DELIVERY_TIMEOUT)

    def peer_url(self, peer_id: int) -> str:
        return f"http://{self.host}:{self.base_port + peer_id}"


class HttpTransport(Transport):
    """Broadcasts to every node 0..total_nodes-1 except node_id"""

    def __init__(
        self,
        node_id: int,
        total_nodes: int,
        config: Optional[HttpTransportConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.node_id = node_id
        self.total_nodes = total_nodes
        self.config = config or HttpTransportConfig()
        self._client = client
        self.failed_deliveries = 0

    @property
    def peers(self) -> List[int]:
        return [peer for peer in range(self.total_nodes) if peer != self.node_id]

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create httpx async client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout))
        return self._client

    async def close(self) -> None:
        """Close the httpx client"""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.debug(f"HttpTransport for node {self.node_id} closed")

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _deliver(self, client: httpx.AsyncClient, peer_id: int, message: ConsensusMessage, headers: dict):
        url = f"{self.config.peer_url(peer_id)}/message"
        try:
            response = await client.post(url, json=message.to_dict(), headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            self.failed_deliveries += 1
            logger.debug(
                f"Node {self.node_id} -> {peer_id} {message.kind.value} "
                f"round {message.round} dropped: {e!r}"
            )

    async def send_to_peers(self, message: ConsensusMessage) -> None:
        client = await self._get_client()
        headers = {HEADER_NAME: get_correlation_id()}
        await asyncio.gather(*(
            self._deliver(client, peer_id, message, headers) for peer_id in self.peers
        ))
