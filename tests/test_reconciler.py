"""Tests for the Reconciler — snapshot/push-event merge and phase monotonicity."""

from __future__ import annotations

import asyncio
import itertools
from unittest.mock import AsyncMock, MagicMock

import pytest

from agents.reconciler import ReconcilerAgent
from conftest import battle_payload, drain
from models.events import BattleFinished, ParticipantJoined, RoundStarted, ScoreUpdate
from models.errors import ApiError
from models.state import BattleSnapshot, BattleStatus


def _snapshot(**kwargs) -> BattleSnapshot:
    return BattleSnapshot.from_payload(battle_payload(**kwargs))


def _round(n: int, duration: int | None = 45) -> RoundStarted:
    return RoundStarted(
        round_number=n,
        player1_id=1,
        player2_id=2,
        player1_username="alice",
        player2_username="bob",
        duration_seconds=duration,
    )


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class TestApplySnapshot:
    def test_round_trip(self, reconciler):
        snap = _snapshot(status="active", current_round=2, total_rounds=4)
        reconciler.apply_snapshot(snap)
        state = reconciler.state
        assert state.status is snap.status
        assert state.current_round == 2
        assert state.total_rounds == 4
        assert set(state.participants) == set(snap.participants)

    def test_participants_ordered_by_bracket_position(self, reconciler):
        reconciler.apply_snapshot(_snapshot())
        assert [p.user_id for p in reconciler.state.participants] == [2, 1, 3]

    def test_snapshot_replaces_roster_wholesale(self, reconciler):
        reconciler.apply_snapshot(_snapshot())
        reconciler.apply_snapshot(_snapshot(participants=[
            {"user_id": 9, "username": "zed", "score": 0, "bracket_position": 1},
        ]))
        assert [p.user_id for p in reconciler.state.participants] == [9]

    def test_waiting_snapshot_after_active_ignored(self, reconciler):
        reconciler.apply_snapshot(_snapshot(status="active", current_round=1))
        reconciler.apply_snapshot(_snapshot(status="waiting", current_round=0, participants=[]))
        assert reconciler.status is BattleStatus.ACTIVE
        assert reconciler.state.current_round == 1
        assert len(reconciler.state.participants) == 3

    def test_finished_snapshot_after_active_applied(self, reconciler):
        reconciler.apply_snapshot(_snapshot(status="active", current_round=1))
        reconciler.apply_snapshot(_snapshot(status="finished", current_round=4))
        assert reconciler.status is BattleStatus.FINISHED

    def test_snapshot_for_other_battle_ignored(self, reconciler):
        reconciler.apply_snapshot(_snapshot(battle_id="b-1"))
        reconciler.apply_snapshot(_snapshot(battle_id="b-2", status="active"))
        assert reconciler.battle_id == "b-1"
        assert reconciler.status is BattleStatus.WAITING

    def test_snapshot_published(self, reconciler, bus):
        reconciler.apply_snapshot(_snapshot())
        published = drain(bus.battle_states)
        assert published[-1] == reconciler.state

    def test_active_snapshot_starts_round_countdown(self, reconciler, round_countdown):
        reconciler.apply_snapshot(_snapshot(status="active", current_round=1))
        assert round_countdown.remaining == 60

    def test_snapshot_matches_adopted_before_any_round_event(self, reconciler):
        reconciler.apply_snapshot(_snapshot(
            status="active",
            current_round=1,
            active_matches=[{"player1_id": 1, "player2_id": 2, "player1_score": 4, "player2_score": 7}],
        ))
        (match,) = reconciler.state.active_matches
        assert (match.player1_score, match.player2_score) == (4, 7)

    def test_newer_round_snapshot_overrides_missed_push(self, reconciler, round_countdown):
        reconciler.apply_snapshot(_snapshot(status="active", current_round=1))
        reconciler.apply_event(_round(2))
        round_countdown.reset(5)
        reconciler.apply_snapshot(_snapshot(
            status="active",
            current_round=3,
            active_matches=[{"player1_id": 1, "player2_id": 9, "player1_score": 6, "player2_score": 2}],
        ))
        state = reconciler.state
        assert state.current_round == 3
        (match,) = state.active_matches
        assert (match.player1_id, match.player2_id) == (1, 9)
        assert (match.player1_score, match.player2_score) == (6, 2)
        assert round_countdown.remaining == 60

    def test_late_round_started_after_newer_snapshot_ignored(self, reconciler):
        reconciler.apply_event(_round(2))
        reconciler.apply_snapshot(_snapshot(
            status="active",
            current_round=3,
            active_matches=[{"player1_id": 1, "player2_id": 9, "player1_score": 6, "player2_score": 2}],
        ))
        reconciler.apply_event(_round(3))
        match = reconciler.state.active_matches[0]
        assert (match.player1_id, match.player2_id, match.player1_score) == (1, 9, 6)

    def test_same_round_snapshot_keeps_pushed_match(self, reconciler):
        reconciler.apply_event(_round(2))
        reconciler.overlay_scores(12, 8)
        reconciler.apply_snapshot(_snapshot(
            status="active",
            current_round=2,
            active_matches=[{"player1_id": 1, "player2_id": 2, "player1_score": 3, "player2_score": 1}],
        ))
        match = reconciler.state.active_matches[0]
        assert (match.player1_score, match.player2_score) == (12, 8)


# ---------------------------------------------------------------------------
# Push events
# ---------------------------------------------------------------------------


class TestRoundStarted:
    def test_sets_round_and_single_zeroed_match(self, reconciler):
        reconciler.apply_snapshot(_snapshot())
        reconciler.apply_event(_round(1))
        state = reconciler.state
        assert state.status is BattleStatus.ACTIVE
        assert state.current_round == 1
        assert len(state.active_matches) == 1
        match = state.active_matches[0]
        assert (match.player1_score, match.player2_score) == (0, 0)
        assert (match.player1_id, match.player2_id) == (1, 2)

    def test_wins_over_snapshot_before(self, reconciler):
        reconciler.apply_snapshot(_snapshot(status="active", current_round=3))
        reconciler.apply_event(_round(2))
        assert reconciler.state.current_round == 2
        assert len(reconciler.state.active_matches) == 1

    def test_wins_over_snapshot_after(self, reconciler):
        reconciler.apply_event(_round(2))
        reconciler.apply_snapshot(_snapshot(status="active", current_round=1, participants=[]))
        state = reconciler.state
        assert state.current_round == 2
        assert state.active_matches[0].player1_score == 0
        assert state.participants == ()

    def test_replaces_previous_match_set(self, reconciler):
        reconciler.apply_event(_round(1))
        reconciler.apply_event(
            RoundStarted(round_number=2, player1_id=5, player2_id=6, duration_seconds=30)
        )
        (match,) = reconciler.state.active_matches
        assert (match.player1_id, match.player2_id) == (5, 6)

    def test_duplicate_delivery_does_not_reset_scores(self, reconciler):
        reconciler.apply_event(_round(1))
        reconciler.overlay_scores(12, 8)
        reconciler.apply_event(_round(1))
        match = reconciler.state.active_matches[0]
        assert (match.player1_score, match.player2_score) == (12, 8)

    def test_older_round_event_ignored(self, reconciler):
        reconciler.apply_event(_round(3))
        reconciler.apply_event(_round(2))
        assert reconciler.state.current_round == 3

    def test_resets_round_countdown(self, reconciler, round_countdown):
        reconciler.apply_event(_round(1, duration=45))
        assert round_countdown.remaining == 45
        reconciler.apply_event(_round(2, duration=None))
        assert round_countdown.remaining == 60


class TestBattleFinished:
    def test_marks_finished(self, reconciler, round_countdown):
        reconciler.apply_event(_round(1))
        reconciler.apply_event(BattleFinished())
        assert reconciler.status is BattleStatus.FINISHED
        assert round_countdown.remaining == 0

    def test_terminal_for_events(self, reconciler, rest):
        reconciler.apply_event(_round(1))
        reconciler.apply_event(BattleFinished())
        reconciler.apply_event(_round(2))
        reconciler.apply_event(ScoreUpdate(player1_score=99))
        reconciler.apply_event(ParticipantJoined())
        assert reconciler.status is BattleStatus.FINISHED
        assert reconciler.state.current_round == 1
        assert reconciler.state.active_matches[0].player1_score == 0
        rest.get_battle.assert_not_called()

    def test_phase_is_monotonic_for_any_order(self, bus, rest, round_countdown):
        steps = [
            ("snap", "waiting"),
            ("snap", "active"),
            ("snap", "finished"),
            ("event", _round(1)),
            ("event", BattleFinished()),
        ]
        for order in itertools.permutations(steps):
            agent = ReconcilerAgent(bus=bus, rest_client=rest, round_countdown=round_countdown)
            rank = agent.status.rank
            for kind, value in order:
                if kind == "snap":
                    agent.apply_snapshot(_snapshot(status=value))
                else:
                    agent.apply_event(value)
                assert agent.status.rank >= rank
                rank = agent.status.rank
            drain(bus.battle_states)


class TestParticipantJoined:
    @pytest.mark.asyncio
    async def test_triggers_refetch(self, reconciler, rest):
        reconciler.apply_snapshot(_snapshot(participants=[]))
        reconciler.apply_event(ParticipantJoined())
        # No direct mutation before the refetch lands
        assert reconciler.state.participants == ()
        await _settle()
        rest.get_battle.assert_awaited_once_with("b-1")
        assert len(reconciler.state.participants) == 3

    @pytest.mark.asyncio
    async def test_failed_refetch_keeps_state(self, reconciler, rest):
        reconciler.apply_snapshot(_snapshot(status="active", current_round=1))
        before = reconciler.state
        rest.get_battle.side_effect = ApiError(500, "boom")
        reconciler.apply_event(ParticipantJoined())
        await _settle()
        assert reconciler.state == before

    @pytest.mark.asyncio
    async def test_refetch_after_leaving_is_dropped(self, reconciler, rest):
        reconciler.apply_snapshot(_snapshot())
        release = asyncio.Event()

        async def slow_battle(battle_id):
            await release.wait()
            return battle_payload(status="active", current_round=1)

        rest.get_battle.side_effect = slow_battle
        reconciler.apply_event(ParticipantJoined())
        await _settle()
        await reconciler.leave()
        release.set()
        await _settle()
        assert reconciler.battle_id is None
        assert reconciler.status is BattleStatus.WAITING


class TestScores:
    def test_overlay_onto_active_match(self, reconciler):
        reconciler.apply_event(_round(1))
        reconciler.apply_event(ScoreUpdate(player1_score=5, player2_score=3))
        match = reconciler.state.active_matches[0]
        assert (match.player1_score, match.player2_score) == (5, 3)

    def test_partial_overlay_keeps_other_side(self, reconciler):
        reconciler.apply_event(_round(1))
        reconciler.overlay_scores(5, 3)
        reconciler.overlay_scores(None, 9)
        match = reconciler.state.active_matches[0]
        assert (match.player1_score, match.player2_score) == (5, 9)

    def test_score_for_other_round_discarded(self, reconciler):
        reconciler.apply_event(_round(2))
        reconciler.apply_event(ScoreUpdate(player1_score=5, player2_score=3, round_number=1))
        match = reconciler.state.active_matches[0]
        assert (match.player1_score, match.player2_score) == (0, 0)

    def test_no_active_match_is_noop(self, reconciler):
        reconciler.apply_snapshot(_snapshot())
        before = reconciler.state
        reconciler.overlay_scores(5, 3)
        assert reconciler.state == before

    def test_team_scores(self, reconciler):
        reconciler.apply_event(ScoreUpdate(blue=4))
        reconciler.apply_event(ScoreUpdate(red=7))
        teams = reconciler.state.team_scores
        assert (teams.blue, teams.red) == (4, 7)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_enter_with_snapshot_targets_socket(self, reconciler, rest):
        socket = MagicMock()
        socket.set_target = AsyncMock()
        reconciler.set_socket(socket)
        await reconciler.enter("b-1", _snapshot(status="active", current_round=1))
        socket.set_target.assert_awaited_once_with("b-1")
        rest.get_battle.assert_not_called()
        assert reconciler.is_active

    @pytest.mark.asyncio
    async def test_enter_without_snapshot_fetches(self, reconciler, rest):
        await reconciler.enter("b-1")
        rest.get_battle.assert_awaited_once_with("b-1")
        assert reconciler.battle_id == "b-1"
        assert len(reconciler.state.participants) == 3

    @pytest.mark.asyncio
    async def test_entering_new_battle_resets_state(self, reconciler):
        await reconciler.enter("b-1", _snapshot(status="finished"))
        await reconciler.enter("b-2", _snapshot(battle_id="b-2", status="waiting"))
        assert reconciler.battle_id == "b-2"
        assert reconciler.status is BattleStatus.WAITING

    @pytest.mark.asyncio
    async def test_join_by_invite_code(self, reconciler, rest):
        rest.join_room.return_value = battle_payload(
            battle_id="b-7", status=None, battle_status="active", current_round=1
        )
        state = await reconciler.join("INV123")
        rest.join_room.assert_awaited_once_with("INV123")
        assert state.battle_id == "b-7"
        assert state.status is BattleStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_join_room_without_battle(self, reconciler, rest):
        rest.join_room.return_value = {"room_id": "r-1", "battle_id": None}
        await reconciler.join("INV123")
        assert reconciler.battle_id is None

    @pytest.mark.asyncio
    async def test_leave_detaches_socket_and_clears(self, reconciler, round_countdown):
        socket = MagicMock()
        socket.set_target = AsyncMock()
        reconciler.set_socket(socket)
        await reconciler.enter("b-1", _snapshot(status="active", current_round=1))
        await reconciler.leave()
        socket.set_target.assert_awaited_with(None)
        assert reconciler.battle_id is None
        assert reconciler.status is BattleStatus.WAITING
        assert round_countdown.remaining == 0
