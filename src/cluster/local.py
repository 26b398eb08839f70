# src/cluster/local.py
"""
Local Cluster - N consensus nodes in one event loop over an in-memory network

Every node gets its own engine, tally and driver; only the readiness
barrier and the in-memory network are shared.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence

from src.binary_consensus import (
    ConsensusConfig,
    ConsensusConfigError,
    ConsensusEngine,
    NodeState,
    ReadinessBarrier,
    RoundDriver,
)
from src.transport.memory import InMemoryNetwork

logger = logging.getLogger("consensus.cluster")


def build_node_configs(
    initial_values: Sequence[int],
    faulty_ids: Iterable[int] = (),
    **protocol_overrides: Any,
) -> List[ConsensusConfig]:
    """
    One ConsensusConfig per node. F is the number of faulty ids.

    Raises:
        ConsensusConfigError: If a faulty id is outside the network
    """
    total_nodes = len(initial_values)
    faulty = set(faulty_ids)
    unknown = [node_id for node_id in faulty if not 0 <= node_id < total_nodes]
    if unknown:
        raise ConsensusConfigError(f"Faulty ids {sorted(unknown)} outside network of {total_nodes} nodes")

    return [
        ConsensusConfig(
            node_id=node_id,
            total_nodes=total_nodes,
            faulty_nodes=len(faulty),
            initial_value=value,
            is_faulty=node_id in faulty,
            **protocol_overrides,
        )
        for node_id, value in enumerate(initial_values)
    ]


class LocalCluster:
    """In-process simulation of a consensus network"""

    def __init__(
        self,
        initial_values: Sequence[int],
        faulty_ids: Iterable[int] = (),
        all_ready: bool = True,
        **protocol_overrides: Any,
    ):
        configs = build_node_configs(initial_values, faulty_ids, **protocol_overrides)
        self.total_nodes = len(configs)
        self.barrier = ReadinessBarrier(self.total_nodes)
        self.network = InMemoryNetwork()

        self.engines: List[ConsensusEngine] = []
        self.drivers: List[RoundDriver] = []
        for config in configs:
            engine = ConsensusEngine(
                config=config,
                transport=self.network.transport_for(config.node_id, self.total_nodes),
                readiness_gate=self.barrier,
            )
            self.network.register(engine)
            self.engines.append(engine)
            self.drivers.append(RoundDriver(engine))

        if all_ready:
            self.mark_all_ready()

        logger.info(
            f"LocalCluster created: n={self.total_nodes}, "
            f"faulty={[e.node_id for e in self.engines if e.is_faulty]}"
        )

    def mark_all_ready(self):
        for engine in self.engines:
            self.barrier.set_ready(engine.node_id)

    @property
    def healthy_engines(self) -> List[ConsensusEngine]:
        return [engine for engine in self.engines if not engine.is_faulty]

    def start_all(self) -> int:
        """Start every node. Returns how many drivers accepted the start."""
        return sum(1 for driver in self.drivers if driver.start())

    def stop_all(self):
        for driver in self.drivers:
            driver.stop()

    def states(self) -> List[NodeState]:
        return [engine.get_state() for engine in self.engines]

    def all_decided(self) -> bool:
        return all(engine.get_state().decided for engine in self.healthy_engines)

    def decided_values(self) -> List[Optional[int]]:
        return [engine.get_state().x for engine in self.healthy_engines]

    async def wait_for_decisions(self, timeout: float = 5.0, poll_interval: float = 0.02) -> bool:
        """
        Poll until every healthy node reports a decision.

        Returns:
            True if all healthy nodes decided within timeout
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.all_decided():
                return True
            await asyncio.sleep(poll_interval)
        return self.all_decided()

    def summary(self) -> Dict[str, Any]:
        return {
            "total_nodes": self.total_nodes,
            "barrier": self.barrier.to_dict(),
            "messages_sent": len(self.network.sent),
            "messages_dropped": self.network.dropped,
            "states": {engine.node_id: engine.get_state().to_dict() for engine in self.engines},
        }

    async def shutdown(self):
        """Kill every node and wait for the round loops to exit"""
        await asyncio.gather(*(driver.shutdown() for driver in self.drivers))

    async def __aenter__(self) -> "LocalCluster":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()
