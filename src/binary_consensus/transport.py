# src/binary_consensus/transport.py
"""
Transport contracts consumed by the consensus engine

- Transport: best-effort delivery of one message to every peer but the sender
- ReadinessGate: predicate the engine polls before it may broadcast
- ReadinessBarrier: the standard gate, true once every node reported ready
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Any, Set

from .messages import ConsensusMessage

logger = logging.getLogger("consensus.transport")

ReadinessGate = Callable[[], bool]


class Transport(ABC):
    """
    Outbound side of a node's network link.

    Implementations deliver to every participant except the sender and
    swallow per-peer failures. Callers learn nothing about which peers
    actually received the message.
    """

    @abstractmethod
    async def send_to_peers(self, message: ConsensusMessage) -> None:
        """Deliver message to all other participants (best effort)"""

    async def close(self) -> None:
        """Release any network resources"""


class ReadinessBarrier:
    """
    Shared barrier every node observes before broadcasting.

    Nodes call set_ready() once their listener is up; the barrier opens
    when all total_nodes have done so. Instances are passed into each
    node rather than shared through module state.
    """

    def __init__(self, total_nodes: int):
        self.total_nodes = total_nodes
        self._ready: Set[int] = set()
        self._lock = threading.Lock()

    def set_ready(self, node_id: int):
        """Mark a node as up"""
        with self._lock:
            self._ready.add(node_id)
            ready_count = len(self._ready)
        logger.debug(f"Node {node_id} ready ({ready_count}/{self.total_nodes})")

    def is_ready(self, node_id: int) -> bool:
        with self._lock:
            return node_id in self._ready

    def all_ready(self) -> bool:
        """True once every node has reported ready"""
        with self._lock:
            return len(self._ready) >= self.total_nodes

    def __call__(self) -> bool:
        return self.all_ready()

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "total_nodes": self.total_nodes,
                "ready_nodes": sorted(self._ready),
                "all_ready": len(self._ready) >= self.total_nodes,
            }


def always_ready() -> bool:
    """Gate for networks that need no start-up barrier"""
    return True
