# src/cluster/launcher.py
"""
Network Launcher - runs N HTTP consensus nodes inside one event loop

Node i listens on base_port + i. Each node is marked ready in the shared
barrier once its uvicorn server is accepting connections, so no node
broadcasts before every listener is up.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx
import uvicorn

from src.config import settings
from src.binary_consensus import ConsensusEngine, ReadinessBarrier, RoundDriver
from src.node_service import create_node_app
from src.transport.http_transport import HttpTransport, HttpTransportConfig

from .local import build_node_configs

logger = logging.getLogger("consensus.launcher")


@dataclass
class NetworkHandle:
    """Running HTTP network: servers plus an observer client"""
    engines: List[ConsensusEngine]
    servers: List[uvicorn.Server]
    server_tasks: List[asyncio.Task]
    barrier: ReadinessBarrier
    transport_config: HttpTransportConfig
    client: httpx.AsyncClient = field(default_factory=lambda: httpx.AsyncClient(timeout=5.0))

    @property
    def total_nodes(self) -> int:
        return len(self.engines)

    def node_url(self, node_id: int) -> str:
        return self.transport_config.peer_url(node_id)

    async def _get_each(self, path: str) -> List[httpx.Response]:
        return await asyncio.gather(*(
            self.client.get(f"{self.node_url(node_id)}{path}")
            for node_id in range(self.total_nodes)
        ))

    async def start_consensus(self) -> List[int]:
        """GET /start on every node. Returns the HTTP status per node."""
        responses = await self._get_each("/start")
        return [response.status_code for response in responses]

    async def stop_consensus(self) -> List[int]:
        responses = await self._get_each("/stop")
        return [response.status_code for response in responses]

    async def get_states(self) -> List[Dict[str, Any]]:
        responses = await self._get_each("/getState")
        return [response.json() for response in responses]

    async def get_liveness(self) -> List[str]:
        responses = await self._get_each("/status")
        return [response.text for response in responses]

    async def wait_for_decisions(self, timeout: float = 10.0, poll_interval: float = 0.1) -> bool:
        """Poll /getState until every non-faulty node reports decided"""
        deadline = time.monotonic() + timeout
        while True:
            states = await self.get_states()
            healthy = [state for state in states if state["decided"] is not None]
            if healthy and all(state["decided"] for state in healthy):
                return True
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(poll_interval)

    async def shutdown(self):
        """Stop every server and release clients"""
        for server in self.servers:
            server.should_exit = True
        await asyncio.gather(*self.server_tasks, return_exceptions=True)
        await self.client.aclose()
        logger.info(f"Network of {self.total_nodes} nodes shut down")


async def launch_network(
    initial_values: Sequence[int],
    faulty_ids: Iterable[int] = (),
    host: Optional[str] = None,
    base_port: Optional[int] = None,
    startup_timeout: float = 10.0,
    **protocol_overrides: Any,
) -> NetworkHandle:
    """
    Start one HTTP node per initial value.

    Raises:
        ConsensusConfigError: On invalid network parameters
        RuntimeError: If a server does not come up within startup_timeout
    """
    configs = build_node_configs(initial_values, faulty_ids, **protocol_overrides)
    total_nodes = len(configs)
    transport_config = HttpTransportConfig(
        host=host or settings.NODE_HOST,
        base_port=settings.BASE_NODE_PORT if base_port is None else base_port,
    )
    barrier = ReadinessBarrier(total_nodes)

    engines: List[ConsensusEngine] = []
    servers: List[uvicorn.Server] = []
    tasks: List[asyncio.Task] = []

    for config in configs:
        engine = ConsensusEngine(
            config=config,
            transport=HttpTransport(config.node_id, total_nodes, transport_config),
            readiness_gate=barrier,
        )
        app = create_node_app(engine, RoundDriver(engine))
        server = uvicorn.Server(uvicorn.Config(
            app,
            host=transport_config.host,
            port=transport_config.base_port + config.node_id,
            log_level="warning",
        ))
        engines.append(engine)
        servers.append(server)
        tasks.append(asyncio.create_task(server.serve(), name=f"node-server-{config.node_id}"))

    handle = NetworkHandle(
        engines=engines,
        servers=servers,
        server_tasks=tasks,
        barrier=barrier,
        transport_config=transport_config,
    )

    deadline = time.monotonic() + startup_timeout
    pending = set(range(total_nodes))
    while pending:
        for node_id in sorted(pending):
            if servers[node_id].started:
                barrier.set_ready(node_id)
                pending.discard(node_id)
                logger.info(f"Node {node_id} is listening on {handle.node_url(node_id)}")
            elif tasks[node_id].done():
                await handle.shutdown()
                raise RuntimeError(f"Node {node_id} server exited during startup")
        if pending and time.monotonic() >= deadline:
            await handle.shutdown()
            raise RuntimeError(f"Nodes {sorted(pending)} did not start within {startup_timeout}s")
        if pending:
            await asyncio.sleep(0.05)

    return handle
