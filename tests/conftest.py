"""
pytest configuration for the consensus test suite
"""

import socket
import random
from typing import List

import pytest

from src.binary_consensus import (
    ConsensusConfig,
    ConsensusEngine,
    ConsensusMessage,
    Transport,
)

# Protocol timings short enough for tests, long enough for in-loop delivery
FAST_TIMINGS = {
    "settling_interval": 0.03,
    "round_delay": 0.005,
    "readiness_poll_interval": 0.005,
}


class RecordingTransport(Transport):
    """Transport that only records what the node tried to send"""

    def __init__(self):
        self.sent: List[ConsensusMessage] = []
        self.closed = False

    async def send_to_peers(self, message: ConsensusMessage) -> None:
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True


def make_engine(
    node_id: int = 0,
    total_nodes: int = 3,
    faulty_nodes: int = 0,
    initial_value: int = 0,
    is_faulty: bool = False,
    readiness_gate=None,
    **overrides,
):
    """Engine wired to a RecordingTransport with fast timings"""
    timings = dict(FAST_TIMINGS)
    timings.update(overrides)
    config = ConsensusConfig(
        node_id=node_id,
        total_nodes=total_nodes,
        faulty_nodes=faulty_nodes,
        initial_value=initial_value,
        is_faulty=is_faulty,
        **timings,
    )
    transport = RecordingTransport()
    engine = ConsensusEngine(config, transport, readiness_gate=readiness_gate)
    return engine, transport


def find_free_port_block(count: int, attempts: int = 50) -> int:
    """Base port of `count` consecutive free TCP ports on localhost"""
    for _ in range(attempts):
        base = random.randint(20000, 60000 - count)
        sockets = []
        try:
            for offset in range(count):
                sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
                sockets.append(sock)
                sock.bind(("127.0.0.1", base + offset))
            return base
        except OSError:
            continue
        finally:
            for sock in sockets:
                sock.close()
    raise RuntimeError(f"No block of {count} free ports found")


@pytest.fixture
def fast_timings():
    return dict(FAST_TIMINGS)


@pytest.fixture
def recording_transport():
    return RecordingTransport()


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "integration: starts real HTTP listeners")


@pytest.fixture
def engine_factory():
    """Build engines on RecordingTransports: engine_factory(**kwargs) -> (engine, transport)"""
    return make_engine


@pytest.fixture
def free_port_block():
    """free_port_block(count) -> base port of consecutive free ports"""
    return find_free_port_block
