# src/transport/memory.py
"""
In-Memory Network - direct message delivery between engines in one process

Used for local multi-node simulation and tests. Links can be cut to
model lost deliveries; a cut link drops silently like a failed HTTP POST.
"""

import logging
from typing import Dict, List, Set, Tuple, TYPE_CHECKING

from src.binary_consensus.messages import ConsensusMessage
from src.binary_consensus.transport import Transport

if TYPE_CHECKING:
    from src.binary_consensus.engine import ConsensusEngine

logger = logging.getLogger("consensus.transport.memory")


class InMemoryNetwork:
    """Registry of engines reachable by node id"""

    def __init__(self):
        self._nodes: Dict[int, "ConsensusEngine"] = {}
        self._cut_links: Set[Tuple[int, int]] = set()
        self.sent: List[ConsensusMessage] = []
        self.dropped = 0

    def register(self, engine: "ConsensusEngine"):
        self._nodes[engine.node_id] = engine

    def unregister(self, node_id: int):
        self._nodes.pop(node_id, None)

    def cut_link(self, sender: int, receiver: int):
        """Drop every future message from sender to receiver"""
        self._cut_links.add((sender, receiver))

    def restore_link(self, sender: int, receiver: int):
        self._cut_links.discard((sender, receiver))

    def transport_for(self, node_id: int, total_nodes: int) -> "InMemoryTransport":
        return InMemoryTransport(self, node_id, total_nodes)

    def deliver(self, sender: int, receiver: int, message: ConsensusMessage) -> bool:
        """Hand a message to one receiver. Returns False when dropped."""
        engine = self._nodes.get(receiver)
        if engine is None or (sender, receiver) in self._cut_links:
            self.dropped += 1
            return False
        engine.deliver(message)
        return True


class InMemoryTransport(Transport):
    """Transport for one node on an InMemoryNetwork"""

    def __init__(self, network: InMemoryNetwork, node_id: int, total_nodes: int):
        self.network = network
        self.node_id = node_id
        self.total_nodes = total_nodes
        self.sent: List[ConsensusMessage] = []

    async def send_to_peers(self, message: ConsensusMessage) -> None:
        self.sent.append(message)
        self.network.sent.append(message)
        for peer_id in range(self.total_nodes):
            if peer_id == self.node_id:
                continue
            if not self.network.deliver(self.node_id, peer_id, message):
                logger.debug(f"Node {self.node_id} -> {peer_id} {message.kind.value} dropped")
