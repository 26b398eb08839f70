# src/binary_consensus/__init__.py
"""
Binary Consensus Module - fault-tolerant agreement on one of {0, 1}

Each node repeats PROPOSE -> VOTE -> DECIDE/ADVANCE rounds:
- MessageTally: per-round proposal and vote counters
- ConsensusEngine: node state machine and round algorithm
- RoundDriver: the loop that schedules rounds until decision or kill
- Transport / ReadinessBarrier: contracts toward the network layer
"""

from .messages import (
    ConsensusMessage,
    InvalidMessageError,
    MessageKind,
    NodePhase,
    NodeState,
    Value,
    UNKNOWN_VALUE,
)
from .tally import MessageTally
from .thresholds import FaultThresholds, DecisionStatus, ConsensusConfigError
from .transport import Transport, ReadinessBarrier, ReadinessGate, always_ready
from .engine import ConsensusEngine, ConsensusConfig, RoundOutcome
from .driver import RoundDriver

__all__ = [
    # Messages and state
    "ConsensusMessage",
    "InvalidMessageError",
    "MessageKind",
    "NodePhase",
    "NodeState",
    "Value",
    "UNKNOWN_VALUE",
    # Tally and thresholds
    "MessageTally",
    "FaultThresholds",
    "DecisionStatus",
    "ConsensusConfigError",
    # Network contracts
    "Transport",
    "ReadinessBarrier",
    "ReadinessGate",
    "always_ready",
    # Engine and driver
    "ConsensusEngine",
    "ConsensusConfig",
    "RoundOutcome",
    "RoundDriver",
]
