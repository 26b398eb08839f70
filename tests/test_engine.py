# tests/test_engine.py
"""
ConsensusEngine Tests

Rounds are driven by hand against a RecordingTransport; peers' messages are
injected with deliver() before the round runs, so every count is known.
"""

import asyncio

import pytest

from src.binary_consensus import (
    ConsensusMessage,
    MessageKind,
    NodePhase,
    RoundOutcome,
)


def proposal(value, round_num, sender=1):
    return ConsensusMessage(kind=MessageKind.PROPOSAL, value=value, round=round_num, sender=sender)


def vote(value, round_num, sender=1):
    return ConsensusMessage(kind=MessageKind.VOTE, value=value, round=round_num, sender=sender)


class TestRoundProtocol:
    """Propose, vote and decide steps"""

    @pytest.mark.asyncio
    async def test_round_broadcasts_proposal_then_vote(self, engine_factory):
        engine, transport = engine_factory(total_nodes=3, initial_value=1)

        await engine.run_round()

        assert [m.kind for m in transport.sent] == [MessageKind.PROPOSAL, MessageKind.VOTE]
        assert transport.sent[0] == proposal(1, 1, sender=0)
        assert engine.messages_sent == 2

    @pytest.mark.asyncio
    async def test_decides_with_half_the_votes_from_round_two(self, engine_factory):
        engine, transport = engine_factory(total_nodes=4, initial_value=1)
        engine.state.k = 2
        engine.deliver(vote(0, 2, sender=1))
        engine.deliver(vote(0, 2, sender=2))

        outcome = await engine.run_round()

        assert outcome.decided is True
        assert outcome.decided_value == 0
        state = engine.get_state()
        assert state.decided is True
        assert state.x == 0
        assert state.k == 2

    @pytest.mark.asyncio
    async def test_round_one_never_decides(self, engine_factory):
        engine, _ = engine_factory(total_nodes=4, initial_value=1)
        engine.deliver(vote(0, 1, sender=1))
        engine.deliver(vote(0, 1, sender=2))
        engine.deliver(vote(0, 1, sender=3))

        outcome = await engine.run_round()

        assert outcome.decided is False
        state = engine.get_state()
        assert state.decided is False
        assert state.k == 2
        assert state.x == 1  # previous round mod 2

    @pytest.mark.asyncio
    async def test_no_votes_advances_round(self, engine_factory):
        engine, _ = engine_factory(total_nodes=3, initial_value=0)
        engine.state.k = 3

        await engine.run_round()

        assert engine.state.k == 4
        assert engine.state.x == 1
        assert engine.state.decided is False

    @pytest.mark.asyncio
    async def test_own_candidate_wins_when_both_values_reach_threshold(self, engine_factory):
        engine, transport = engine_factory(total_nodes=4, initial_value=0)
        engine.state.k = 2
        engine.deliver(proposal(1, 2, sender=1))
        engine.deliver(proposal(1, 2, sender=2))
        for sender, value in enumerate((0, 0, 1, 1)):
            engine.deliver(vote(value, 2, sender=sender))

        outcome = await engine.run_round()

        assert outcome.candidate == 1
        assert transport.sent[1] == vote(1, 2, sender=0)
        assert outcome.decided_value == 1

    @pytest.mark.asyncio
    async def test_decides_other_value_when_only_it_reaches_threshold(self, engine_factory):
        engine, _ = engine_factory(total_nodes=4, initial_value=1)
        engine.state.k = 2
        engine.deliver(proposal(1, 2, sender=1))
        engine.deliver(proposal(1, 2, sender=2))
        engine.deliver(vote(0, 2, sender=1))
        engine.deliver(vote(0, 2, sender=2))

        outcome = await engine.run_round()

        assert outcome.candidate == 1
        assert outcome.decided_value == 0
        assert engine.get_state().x == 0

    @pytest.mark.asyncio
    async def test_proposes_round_parity_without_value(self, engine_factory):
        engine, transport = engine_factory(total_nodes=3)
        engine.state.x = None
        engine.state.k = 3

        await engine.run_round()

        assert transport.sent[0].value == 1

    @pytest.mark.asyncio
    async def test_round_history_recorded(self, engine_factory):
        engine, _ = engine_factory(total_nodes=3, initial_value=0)
        engine.deliver(proposal(0, 1, sender=1))

        outcome = await engine.run_round()

        assert isinstance(outcome, RoundOutcome)
        assert engine.round_history == [outcome]
        assert outcome.proposal_counts == {"0": 1, "1": 0, "?": 0}
        assert outcome.to_dict()["round"] == 1
        assert engine.get_status()["rounds_completed"] == 1


    @pytest.mark.asyncio
    async def test_transport_failure_loses_only_the_message(self, engine_factory):
        engine, transport = engine_factory(total_nodes=3, initial_value=1)

        async def refuse(message):
            raise OSError("peer table unavailable")

        transport.send_to_peers = refuse

        outcome = await engine.run_round()

        assert outcome is not None
        assert outcome.decided is False
        assert engine.state.k == 2
        assert engine.messages_sent == 2


class TestCandidateSelection:
    """Strict majority of proposals, round parity on ties"""

    def test_strict_majority(self, engine_factory):
        engine, _ = engine_factory(total_nodes=5)
        engine.deliver(proposal(0, 2, sender=1))
        engine.deliver(proposal(0, 2, sender=2))
        engine.deliver(proposal(1, 2, sender=3))

        assert engine.select_candidate(2) == 0

    def test_tie_uses_round_parity(self, engine_factory):
        engine, _ = engine_factory(total_nodes=5)
        engine.deliver(proposal(0, 3, sender=1))
        engine.deliver(proposal(1, 3, sender=2))

        assert engine.select_candidate(3) == 1
        assert engine.select_candidate(4) == 0

    def test_decision_value_below_threshold(self, engine_factory):
        engine, _ = engine_factory(total_nodes=5)
        engine.deliver(vote(1, 2, sender=1))

        assert engine.decision_value(2, candidate=1) is None


class TestFaultyNode:
    """Faulty nodes neither send, tally nor report"""

    @pytest.mark.asyncio
    async def test_faulty_node_is_inert(self, engine_factory):
        engine, transport = engine_factory(total_nodes=3, faulty_nodes=1, is_faulty=True)

        assert engine.deliver(proposal(1, 1)) is False
        assert await engine.run_round() is None
        await engine.broadcast(vote(1, 1, sender=0))

        assert transport.sent == []
        assert engine.tally.rounds(MessageKind.PROPOSAL) == []
        assert engine.messages_received == 0

    def test_faulty_state_reports_nothing(self, engine_factory):
        engine, _ = engine_factory(total_nodes=3, faulty_nodes=1, is_faulty=True)

        assert engine.get_state().to_dict() == {"killed": False, "x": None, "decided": None, "k": None}
        assert engine.is_alive() is False

        engine.kill()
        assert engine.get_state().killed is True
        assert engine.get_state().x is None


class TestReportingRules:
    """State overrides for degenerate networks"""

    @pytest.mark.asyncio
    async def test_single_node_decides_initial_value(self, engine_factory):
        engine, transport = engine_factory(total_nodes=1, initial_value=1)

        assert engine.get_state().to_dict() == {"killed": False, "x": 1, "decided": True, "k": 1}

        assert await engine.run_round() is None
        assert engine.state.decided is True
        assert transport.sent == []

    def test_fault_limit_exceeded_never_reports_decision(self, engine_factory):
        engine, _ = engine_factory(total_nodes=3, faulty_nodes=2)

        state = engine.get_state()
        assert state.decided is False
        assert state.k == 11

        engine.state.decided = True
        engine.state.k = 15
        state = engine.get_state()
        assert state.decided is False
        assert state.k == 15

    def test_get_state_returns_copy(self, engine_factory):
        engine, _ = engine_factory(total_nodes=3, initial_value=1)

        state = engine.get_state()
        state.x = 0

        assert engine.get_state().x == 1
        assert engine.is_alive() is True


class TestKill:
    """kill() stops all protocol activity"""

    @pytest.mark.asyncio
    async def test_kill_is_idempotent(self, engine_factory):
        engine, transport = engine_factory(total_nodes=3)

        assert engine.kill() is True
        assert engine.kill() is False
        assert engine.phase == NodePhase.KILLED
        assert engine.get_state().killed is True

        assert await engine.run_round() is None
        assert engine.deliver(proposal(0, 1)) is False
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_kill_while_settling_abandons_round(self, engine_factory):
        engine, transport = engine_factory(total_nodes=3, settling_interval=0.2)

        task = asyncio.create_task(engine.run_round())
        await asyncio.sleep(0.05)
        engine.kill()
        outcome = await task

        assert outcome is None
        assert [m.kind for m in transport.sent] == [MessageKind.PROPOSAL]
        assert engine.round_history == []
        assert engine.state.k == 1


class TestReadinessGate:
    """Broadcasts wait for every node to be reachable"""

    @pytest.mark.asyncio
    async def test_broadcast_waits_for_gate(self, engine_factory):
        ready = {"open": False}
        engine, transport = engine_factory(total_nodes=3, readiness_gate=lambda: ready["open"])

        task = asyncio.create_task(engine.broadcast(proposal(0, 1, sender=0)))
        await asyncio.sleep(0.05)
        assert transport.sent == []

        ready["open"] = True
        await asyncio.wait_for(task, timeout=1.0)
        assert transport.sent == [proposal(0, 1, sender=0)]

    @pytest.mark.asyncio
    async def test_kill_releases_waiting_broadcast(self, engine_factory):
        engine, transport = engine_factory(total_nodes=3, readiness_gate=lambda: False)

        task = asyncio.create_task(engine.broadcast(proposal(0, 1, sender=0)))
        await asyncio.sleep(0.02)
        engine.kill()
        await asyncio.wait_for(task, timeout=1.0)

        assert transport.sent == []
        assert engine.messages_sent == 0


class TestCallbacks:
    """Phase and decision notifications"""

    @pytest.mark.asyncio
    async def test_phase_sequence_for_undecided_round(self, engine_factory):
        engine, _ = engine_factory(total_nodes=3)
        phases = []
        engine.on_phase_change(lambda node, phase: phases.append(phase))

        await engine.run_round()

        assert phases == [NodePhase.PROPOSING, NodePhase.VOTING, NodePhase.IDLE]

    @pytest.mark.asyncio
    async def test_decision_callbacks(self, engine_factory):
        engine, _ = engine_factory(total_nodes=3, initial_value=1)
        engine.state.k = 2
        engine.deliver(vote(1, 2, sender=1))
        decisions = []

        async def record(node, outcome):
            decisions.append((node.node_id, outcome.decided_value))

        engine.on_decision(record)
        await engine.run_round()

        assert decisions == [(0, 1)]
        assert engine.phase == NodePhase.DECIDED

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_round(self, engine_factory):
        engine, _ = engine_factory(total_nodes=3, initial_value=1)
        engine.state.k = 2
        engine.deliver(vote(1, 2, sender=1))
        seen = []

        def broken(node, outcome):
            raise RuntimeError("observer failure")

        engine.on_decision(broken)
        engine.on_decision(lambda node, outcome: seen.append(outcome.round))

        outcome = await engine.run_round()

        assert outcome.decided is True
        assert seen == [2]
