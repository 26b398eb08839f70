# src/binary_consensus/engine.py
"""
Consensus Engine - per-node binary consensus state machine

One round:
1. PROPOSE: broadcast x (or round mod 2 when x is unset), settle
2. CANDIDATE: value with the strictly higher proposal count, round mod 2 on a tie
3. VOTE: broadcast the candidate, settle
4. DECIDE: from round 2 on, a value with >= floor(N/2) votes is final;
   otherwise advance to the next round with x = round mod 2

Faulty nodes never run rounds, send or tally anything. A single-node
network decides its initial value without running the protocol.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional, Dict, Any, List, Callable

from src.config import settings

from .messages import (
    ConsensusMessage,
    MessageKind,
    NodePhase,
    NodeState,
    Value,
    coerce_value,
    InvalidMessageError,
)
from .tally import MessageTally
from .transport import Transport, ReadinessGate, always_ready
from .thresholds import FaultThresholds, DecisionStatus, ConsensusConfigError

logger = logging.getLogger("consensus.engine")


@dataclass
class ConsensusConfig:
    """Configuration for one node's consensus engine"""
    node_id: int = 0
    total_nodes: int = 1                     # N
    faulty_nodes: int = 0                    # F, as configured for the network
    initial_value: Value = 0
    is_faulty: bool = False
    settling_interval: float = field(default_factory=lambda: settings.settling_interval)
    round_delay: float = field(default_factory=lambda: settings.round_delay)
    readiness_poll_interval: float = field(default_factory=lambda: settings.readiness_poll_interval)
    min_decision_round: int = field(default_factory=lambda: settings.MIN_DECISION_ROUND)
    reported_round_floor: int = field(default_factory=lambda: settings.REPORTED_ROUND_FLOOR)

    def __post_init__(self):
        if not 0 <= self.node_id < self.total_nodes:
            raise ConsensusConfigError(
                f"Node id {self.node_id} outside network of {self.total_nodes} nodes"
            )
        try:
            self.initial_value = coerce_value(self.initial_value)
        except InvalidMessageError:
            raise ConsensusConfigError(f"Initial value must be 0 or 1, got {self.initial_value!r}")
        if self.settling_interval < 0 or self.round_delay < 0 or self.readiness_poll_interval <= 0:
            raise ConsensusConfigError("Protocol intervals must be non-negative (poll interval positive)")


@dataclass
class RoundOutcome:
    """Record of one completed round, kept in memory for observers"""
    round: int
    proposed_value: Value
    proposal_counts: Dict[str, int]
    candidate: Value
    vote_counts: Dict[str, int]
    decided: bool
    decided_value: Optional[Value] = None
    duration_ms: float = 0.0
    completed_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round": self.round,
            "proposed_value": self.proposed_value,
            "proposal_counts": self.proposal_counts,
            "candidate": self.candidate,
            "vote_counts": self.vote_counts,
            "decided": self.decided,
            "decided_value": self.decided_value,
            "duration_ms": self.duration_ms,
            "completed_at": self.completed_at.isoformat(),
        }


def _str_counts(counts: Dict[Any, int]) -> Dict[str, int]:
    return {str(key): count for key, count in counts.items()}


class ConsensusEngine:
    """
    Owns one node's NodeState and MessageTally and runs the round protocol.

    The engine never raises from its guards: killed, faulty, decided and
    single-node conditions all turn the corresponding operation into a no-op.
    """

    def __init__(
        self,
        config: ConsensusConfig,
        transport: Transport,
        readiness_gate: Optional[ReadinessGate] = None,
        tally: Optional[MessageTally] = None,
    ):
        self.config = config
        self.transport = transport
        self.readiness_gate = readiness_gate or always_ready
        self.tally = tally or MessageTally()

        self.thresholds = FaultThresholds(
            total_nodes=config.total_nodes,
            faulty_nodes=config.faulty_nodes,
            min_decision_round=config.min_decision_round,
        )

        self.state = NodeState.initial(config.initial_value, config.is_faulty)
        self.round_history: List[RoundOutcome] = []
        self.messages_sent = 0
        self.messages_received = 0

        self._phase = NodePhase.IDLE
        self._phase_callbacks: List[Callable] = []
        self._decision_callbacks: List[Callable] = []

        logger.info(
            f"Node {self.node_id} created: n={self.thresholds.n}, f={self.thresholds.f}, "
            f"x={config.initial_value}, faulty={config.is_faulty}"
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def node_id(self) -> int:
        return self.config.node_id

    @property
    def is_faulty(self) -> bool:
        return self.config.is_faulty

    @property
    def killed(self) -> bool:
        return self.state.killed

    @property
    def decided(self) -> bool:
        return bool(self.state.decided)

    @property
    def phase(self) -> NodePhase:
        if self.state.killed:
            return NodePhase.KILLED
        if self.state.decided:
            return NodePhase.DECIDED
        return self._phase

    @property
    def can_run(self) -> bool:
        """True while the node still has protocol work to do"""
        return not (self.state.killed or self.is_faulty or self.state.decided)

    # =========================================================================
    # Control
    # =========================================================================

    def kill(self) -> bool:
        """
        Stop all protocol activity for good.

        Returns:
            True if this call killed the node, False if it was already killed
        """
        if self.state.killed:
            return False
        self.state.killed = True
        logger.info(f"Node {self.node_id} killed at round {self.state.k}")
        return True

    def finalize_single_node(self) -> bool:
        """Decide the initial value in a one-node network. Returns True if applied."""
        if not self.thresholds.single_node or self.is_faulty or self.state.killed:
            return False
        self.state.decided = True
        self.state.x = self.config.initial_value
        self.state.k = 1
        logger.info(f"Node {self.node_id} is alone, decided {self.state.x}")
        return True

    # =========================================================================
    # Messaging
    # =========================================================================

    def deliver(self, message: ConsensusMessage) -> bool:
        """
        Record an inbound message in the tally.

        Returns:
            True if the message was tallied, False if it was discarded
        """
        if self.state.killed or self.is_faulty:
            return False
        self.tally.record(message.kind, message.round, message.value)
        self.messages_received += 1
        return True

    async def wait_until_ready(self) -> bool:
        """
        Block until the readiness gate opens.

        Returns:
            True when ready, False if the node was killed while waiting
        """
        while not self.readiness_gate():
            await asyncio.sleep(self.config.readiness_poll_interval)
            if self.state.killed:
                return False
        return not self.state.killed

    async def broadcast(self, message: ConsensusMessage):
        """
        Send a message to every peer; abandoned silently when faulty or killed.

        A transport failure only loses the message, the round carries on.
        """
        if self.state.killed or self.is_faulty:
            return

        if not await self.wait_until_ready():
            logger.debug(f"Node {self.node_id} killed before broadcasting round {message.round}")
            return

        self.tally.open_round(message.round)
        self.messages_sent += 1
        try:
            await self.transport.send_to_peers(message)
        except Exception as e:
            logger.warning(
                f"Node {self.node_id} {message.kind.value} broadcast for round "
                f"{message.round} failed: {e!r}"
            )

    # =========================================================================
    # Round Protocol
    # =========================================================================

    def select_candidate(self, round_num: int) -> Value:
        """Value with the strictly higher proposal count, round mod 2 on a tie"""
        zeros = self.tally.count_of(MessageKind.PROPOSAL, round_num, 0)
        ones = self.tally.count_of(MessageKind.PROPOSAL, round_num, 1)
        if zeros > ones:
            return 0
        if ones > zeros:
            return 1
        return round_num % 2

    def decision_value(self, round_num: int, candidate: Value) -> Optional[Value]:
        """
        Value to decide on for a round, or None if the round cannot finalize.

        When both values reach the threshold the node's own candidate wins.
        """
        zeros = self.tally.count_of(MessageKind.VOTE, round_num, 0)
        ones = self.tally.count_of(MessageKind.VOTE, round_num, 1)
        status = self.thresholds.decision_status(round_num, zeros, ones)
        if status != DecisionStatus.REACHED:
            return None

        counts = {0: zeros, 1: ones}
        if self.thresholds.has_decision_votes(counts[candidate]):
            return candidate
        return 1 - candidate

    async def run_round(self) -> Optional[RoundOutcome]:
        """
        Execute one propose/vote/decide round.

        Returns:
            The RoundOutcome, or None if the round did not run to completion
        """
        if self.thresholds.single_node:
            self.finalize_single_node()
            return None

        if not self.can_run:
            return None

        current_round = self.state.k
        started = time.monotonic()
        self.tally.open_round(current_round)

        proposed = self.state.x if self.state.x is not None else current_round % 2
        await self._set_phase(NodePhase.PROPOSING)
        await self.broadcast(ConsensusMessage(
            kind=MessageKind.PROPOSAL,
            value=proposed,
            round=current_round,
            sender=self.node_id,
        ))
        await asyncio.sleep(self.config.settling_interval)
        if self.state.killed:
            return None

        candidate = self.select_candidate(current_round)
        await self._set_phase(NodePhase.VOTING)
        await self.broadcast(ConsensusMessage(
            kind=MessageKind.VOTE,
            value=candidate,
            round=current_round,
            sender=self.node_id,
        ))
        await asyncio.sleep(self.config.settling_interval)
        if self.state.killed:
            return None

        decided_value = self.decision_value(current_round, candidate)
        outcome = RoundOutcome(
            round=current_round,
            proposed_value=proposed,
            proposal_counts=_str_counts(self.tally.counts(MessageKind.PROPOSAL, current_round)),
            candidate=candidate,
            vote_counts=_str_counts(self.tally.counts(MessageKind.VOTE, current_round)),
            decided=decided_value is not None,
            decided_value=decided_value,
            duration_ms=(time.monotonic() - started) * 1000,
        )
        self.round_history.append(outcome)

        if decided_value is not None:
            self.state.decided = True
            self.state.x = decided_value
            logger.info(
                f"Node {self.node_id} DECIDED {decided_value} in round {current_round}: "
                f"votes={outcome.vote_counts}"
            )
            await self._notify_phase_change(NodePhase.DECIDED)
            await self._notify_decision(outcome)
        else:
            self.state.k = current_round + 1
            self.state.x = current_round % 2
            logger.debug(
                f"Node {self.node_id} round {current_round} undecided "
                f"(candidate={candidate}, votes={outcome.vote_counts}), advancing"
            )
            await self._set_phase(NodePhase.IDLE)

        return outcome

    # =========================================================================
    # Callbacks
    # =========================================================================

    def on_phase_change(self, callback: Callable):
        """Register callback for phase changes"""
        self._phase_callbacks.append(callback)

    def on_decision(self, callback: Callable):
        """Register callback for decisions"""
        self._decision_callbacks.append(callback)

    async def _set_phase(self, phase: NodePhase):
        if self._phase == phase:
            return
        self._phase = phase
        await self._notify_phase_change(phase)

    async def _notify_phase_change(self, phase: NodePhase):
        """Notify callbacks of phase change"""
        for callback in self._phase_callbacks:
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(self, phase)
                else:
                    callback(self, phase)
            except Exception as e:
                logger.error(f"Phase callback error: {e}")

    async def _notify_decision(self, outcome: RoundOutcome):
        """Notify callbacks of decision"""
        for callback in self._decision_callbacks:
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(self, outcome)
                else:
                    callback(self, outcome)
            except Exception as e:
                logger.error(f"Decision callback error: {e}")

    # =========================================================================
    # Status and Queries
    # =========================================================================

    def get_state(self) -> NodeState:
        """
        Externally reported state.

        Faulty nodes report only killed. One-node networks report their
        initial value as decided. Networks with more faulty nodes than the
        protocol tolerates never report a decision and report a round of at
        least reported_round_floor.
        """
        if self.is_faulty:
            return NodeState(killed=self.state.killed, x=None, decided=None, k=None)

        if self.thresholds.single_node:
            return NodeState(
                killed=self.state.killed,
                x=self.config.initial_value,
                decided=True,
                k=1,
            )

        if self.thresholds.exceeds_fault_limit:
            return NodeState(
                killed=self.state.killed,
                x=self.state.x,
                decided=False,
                k=max(self.state.k or 0, self.config.reported_round_floor),
            )

        return replace(self.state)

    def is_alive(self) -> bool:
        """Liveness probe: False only for faulty nodes"""
        return not self.is_faulty

    def get_status(self) -> Dict[str, Any]:
        """Get comprehensive engine status"""
        return {
            "node_id": self.node_id,
            "alive": self.is_alive(),
            "phase": self.phase.value,
            "state": self.get_state().to_dict(),
            "thresholds": self.thresholds.to_dict(),
            "messages_sent": self.messages_sent,
            "messages_received": self.messages_received,
            "rounds_completed": len(self.round_history),
            "round_history": [outcome.to_dict() for outcome in self.round_history],
            "timestamp": datetime.utcnow().isoformat(),
        }
