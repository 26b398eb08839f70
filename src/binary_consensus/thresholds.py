# src/binary_consensus/thresholds.py
"""
Fault Thresholds - tolerance and decision thresholds for binary consensus

Formulas:
- n = total nodes, f = configured faulty nodes
- tolerance = floor((n - 1) / 2), the most faulty nodes the protocol handles
- decision threshold = floor(n / 2) votes for one value in a round
- no decision before round 2

For n=5 nodes:
- tolerance = floor(4/2) = 2
- decision threshold = floor(5/2) = 2
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict
from enum import Enum

logger = logging.getLogger("consensus.thresholds")


class ConsensusConfigError(ValueError):
    """Raised when network or node parameters are invalid"""


class DecisionStatus(str, Enum):
    """Whether a round's vote tally can finalize a decision"""
    TOO_EARLY = "too_early"        # Round below the minimum decision round
    BELOW_THRESHOLD = "below"      # No value reached the threshold
    REACHED = "reached"            # Some value reached the threshold


@dataclass
class FaultThresholds:
    """
    Derived thresholds for a network of total_nodes with faulty_nodes
    configured as faulty.
    """

    total_nodes: int = 1
    faulty_nodes: int = 0
    min_decision_round: int = 2

    def __post_init__(self):
        if self.total_nodes < 1:
            raise ConsensusConfigError(f"Need at least one node, got {self.total_nodes}")
        if self.faulty_nodes < 0 or self.faulty_nodes > self.total_nodes:
            raise ConsensusConfigError(
                f"Faulty node count must be within 0..{self.total_nodes}, got {self.faulty_nodes}"
            )
        if self.min_decision_round < 1:
            raise ConsensusConfigError(
                f"Minimum decision round must be positive, got {self.min_decision_round}"
            )

        logger.debug(
            f"FaultThresholds: n={self.total_nodes}, f={self.faulty_nodes}, "
            f"tolerance={self.tolerance}, decision={self.decision_threshold}"
        )

    @property
    def n(self) -> int:
        """Total number of nodes"""
        return self.total_nodes

    @property
    def f(self) -> int:
        """Configured faulty nodes"""
        return self.faulty_nodes

    @property
    def tolerance(self) -> int:
        """Maximum faulty nodes tolerated: floor((n-1)/2)"""
        return (self.total_nodes - 1) // 2

    @property
    def decision_threshold(self) -> int:
        """Votes for one value needed to decide: floor(n/2)"""
        return self.total_nodes // 2

    @property
    def exceeds_fault_limit(self) -> bool:
        """True when f > floor((n-1)/2); termination cannot be guaranteed"""
        return self.faulty_nodes > self.tolerance

    @property
    def single_node(self) -> bool:
        return self.total_nodes == 1

    def has_decision_votes(self, votes: int) -> bool:
        """Check if a value's vote count reaches the decision threshold"""
        return votes >= self.decision_threshold

    def decision_status(self, round_num: int, zero_votes: int, one_votes: int) -> DecisionStatus:
        """Classify a round's vote tally against the decision rule"""
        if round_num < self.min_decision_round:
            return DecisionStatus.TOO_EARLY
        if self.has_decision_votes(zero_votes) or self.has_decision_votes(one_votes):
            return DecisionStatus.REACHED
        return DecisionStatus.BELOW_THRESHOLD

    def to_dict(self) -> Dict[str, Any]:
        """Return threshold configuration as dict"""
        return {
            "total_nodes": self.total_nodes,
            "faulty_nodes": self.faulty_nodes,
            "tolerance": self.tolerance,
            "decision_threshold": self.decision_threshold,
            "min_decision_round": self.min_decision_round,
            "exceeds_fault_limit": self.exceeds_fault_limit,
        }
