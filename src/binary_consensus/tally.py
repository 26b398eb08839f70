# src/binary_consensus/tally.py
"""
Message Tally - per-round proposal and vote counters for one node

Each round's buckets {0, 1, "?"} are created at zero the first time the
round is seen or sent. Counts only ever grow and rounds are never dropped.
"""

import logging
import threading
from typing import Dict, List

from .messages import MessageKind, TallyKey, TALLY_KEYS

logger = logging.getLogger("consensus.tally")

RoundBuckets = Dict[TallyKey, int]


def _empty_buckets() -> RoundBuckets:
    return {key: 0 for key in TALLY_KEYS}


class MessageTally:
    """
    Counts messages by (kind, round, value).

    Inbound deliveries may arrive from request handlers running on other
    threads, so every mutation and snapshot happens under one lock.
    """

    def __init__(self):
        self._log: Dict[MessageKind, Dict[int, RoundBuckets]] = {
            MessageKind.PROPOSAL: {},
            MessageKind.VOTE: {},
        }
        self._lock = threading.Lock()

    def _buckets(self, kind: MessageKind, round_num: int) -> RoundBuckets:
        rounds = self._log[MessageKind(kind)]
        if round_num not in rounds:
            rounds[round_num] = _empty_buckets()
        return rounds[round_num]

    def open_round(self, round_num: int):
        """Create both kinds' buckets for a round if absent"""
        with self._lock:
            self._buckets(MessageKind.PROPOSAL, round_num)
            self._buckets(MessageKind.VOTE, round_num)

    def record(self, kind: MessageKind, round_num: int, value: TallyKey) -> int:
        """
        Increment a counter. Returns the new count.

        Callers pass values already decoded by ConsensusMessage, so value is
        always one of 0, 1 or "?"; anything else is a programming error and
        raises ValueError.
        """
        if value not in TALLY_KEYS:
            raise ValueError(f"Cannot tally value {value!r}")

        with self._lock:
            # Opening the round for both kinds mirrors what a sender does
            self._buckets(MessageKind.PROPOSAL, round_num)
            self._buckets(MessageKind.VOTE, round_num)
            buckets = self._buckets(kind, round_num)
            buckets[value] += 1
            count = buckets[value]

        logger.debug(f"Tallied {MessageKind(kind).value} round={round_num} value={value}: {count}")
        return count

    def count_of(self, kind: MessageKind, round_num: int, value: TallyKey) -> int:
        """Current count, 0 for unseen rounds"""
        with self._lock:
            buckets = self._log[MessageKind(kind)].get(round_num)
            if buckets is None:
                return 0
            return buckets.get(value, 0)

    def counts(self, kind: MessageKind, round_num: int) -> RoundBuckets:
        """Snapshot of a round's buckets (all zero for unseen rounds)"""
        with self._lock:
            buckets = self._log[MessageKind(kind)].get(round_num)
            return dict(buckets) if buckets is not None else _empty_buckets()

    def rounds(self, kind: MessageKind) -> List[int]:
        """Rounds seen so far for a message kind"""
        with self._lock:
            return sorted(self._log[MessageKind(kind)])

    def to_dict(self) -> Dict[str, Dict[int, Dict[str, int]]]:
        with self._lock:
            return {
                kind.value: {
                    round_num: {str(key): count for key, count in buckets.items()}
                    for round_num, buckets in sorted(rounds.items())
                }
                for kind, rounds in self._log.items()
            }
