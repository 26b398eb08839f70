# src/binary_consensus/messages.py
"""
Consensus message and node state types

Values are the binary symbols 0 and 1. The "?" symbol only exists as a
tally bucket and is never held or decided by a node.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

Value = int
TallyKey = Union[int, str]

BINARY_VALUES = (0, 1)
UNKNOWN_VALUE = "?"
TALLY_KEYS = (0, 1, UNKNOWN_VALUE)


class InvalidMessageError(ValueError):
    """Raised when a consensus message cannot be decoded"""


class MessageKind(str, Enum):
    """The two message kinds exchanged each round"""
    PROPOSAL = "proposal"
    VOTE = "vote"


class NodePhase(str, Enum):
    """Consensus engine states"""
    IDLE = "idle"              # Not running a round
    PROPOSING = "proposing"    # Proposal broadcast, settling
    VOTING = "voting"          # Vote broadcast, settling
    DECIDED = "decided"        # Decision finalized
    KILLED = "killed"          # Stopped for good


def coerce_value(raw: Any) -> Value:
    """Convert 0/1 (or "0"/"1") into a binary Value"""
    if isinstance(raw, bool):
        raise InvalidMessageError(f"Invalid value: {raw!r}")
    if isinstance(raw, str) and raw in ("0", "1"):
        return int(raw)
    if raw in BINARY_VALUES:
        return int(raw)
    raise InvalidMessageError(f"Invalid value: {raw!r}")


@dataclass(frozen=True)
class ConsensusMessage:
    """A proposal or vote for one round, sent by one node"""
    kind: MessageKind
    value: Value
    round: int
    sender: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "value": self.value,
            "round": self.round,
            "sender": self.sender,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConsensusMessage":
        """
        Decode a wire message.

        Raises:
            InvalidMessageError: If kind, value, round or sender are invalid
        """
        try:
            kind = MessageKind(data["type"])
        except (KeyError, ValueError):
            raise InvalidMessageError(f"Invalid message type: {data.get('type')!r}")

        round_num = data.get("round")
        if not isinstance(round_num, int) or isinstance(round_num, bool) or round_num < 1:
            raise InvalidMessageError(f"Invalid round: {round_num!r}")

        sender = data.get("sender")
        if not isinstance(sender, int) or isinstance(sender, bool) or sender < 0:
            raise InvalidMessageError(f"Invalid sender: {sender!r}")

        return cls(
            kind=kind,
            value=coerce_value(data.get("value")),
            round=round_num,
            sender=sender,
        )


@dataclass
class NodeState:
    """
    Mutable protocol state owned by one node.

    x, decided and k are None only for faulty nodes.
    """
    killed: bool = False
    x: Optional[Value] = None
    decided: Optional[bool] = None
    k: Optional[int] = None

    @classmethod
    def initial(cls, initial_value: Value, is_faulty: bool) -> "NodeState":
        if is_faulty:
            return cls(killed=False, x=None, decided=None, k=None)
        return cls(killed=False, x=initial_value, decided=False, k=1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "killed": self.killed,
            "x": self.x,
            "decided": self.decided,
            "k": self.k,
        }
