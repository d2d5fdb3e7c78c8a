"""
Reconciler Agent — Battle State.

Holds the single authoritative in-memory model of the current battle and
merges two sources into it:

  1. REST snapshots (join / refresh)  — replace status, roster, rounds wholesale
  2. Push events from BattleSocket    — round transitions, finish, score overlays

Ordering between the two is not guaranteed, so the merge rules are:
  - phase only moves forward: WAITING -> ACTIVE -> FINISHED
  - once a round_started event has been seen, round number and active match
    belong to the event stream; later snapshots cannot move them
  - FINISHED is terminal for push events
  - scores overlay the current round's match only

Every committed state is published on the EventBus. The `status` field of
that state is the only place the rest of the client reads battle phase from.
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from agents.timers import Countdown
from bus.event_bus import EventBus
from models.events import BattleFinished, ParticipantJoined, PushEvent, RoundStarted, ScoreUpdate
from models.state import BattleSnapshot, BattleStatus, Match, TeamScores
from rocket.rest_client import RocketRestClient
from utils.logger import set_battle_tag

if TYPE_CHECKING:
    from rocket.ws_client import BattleSocket

log = logging.getLogger(__name__)


class ReconcilerAgent:
    def __init__(
        self,
        bus: EventBus,
        rest_client: RocketRestClient,
        round_countdown: Countdown,
        default_round_seconds: int = 60,
        default_total_rounds: int = 4,
    ) -> None:
        self._bus = bus
        self._rest = rest_client
        self._round_countdown = round_countdown
        self._default_round_seconds = default_round_seconds
        self._default_total_rounds = default_total_rounds
        self._socket: "BattleSocket | None" = None

        self._state = BattleSnapshot(total_rounds=default_total_rounds)
        # Highest round applied from the push stream for this battle, or from
        # a snapshot that moved past it
        self._last_round_event: int | None = None
        self._refresh_tasks: set[asyncio.Task] = set()

    def set_socket(self, socket: "BattleSocket") -> None:
        self._socket = socket

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> BattleSnapshot:
        return self._state

    @property
    def battle_id(self) -> str | None:
        return self._state.battle_id

    @property
    def status(self) -> BattleStatus:
        return self._state.status

    @property
    def is_active(self) -> bool:
        return self._state.is_active

    # ------------------------------------------------------------------
    # Battle lifecycle
    # ------------------------------------------------------------------

    async def join(self, invite_code: str) -> BattleSnapshot:
        """Join a room by invite code and start tracking its battle."""
        data = await self._rest.join_room(invite_code)
        snapshot = BattleSnapshot.from_payload(data, self._default_total_rounds)
        if not snapshot.battle_id:
            log.warning("Room %s has no battle yet — nothing to track", invite_code)
            await self.leave()
            return snapshot
        await self.enter(snapshot.battle_id, snapshot)
        return self._state

    async def enter(self, battle_id: str, snapshot: BattleSnapshot | None = None) -> None:
        """
        Bind to a battle: take the given snapshot (or fetch one) and point the
        push channel at the battle.
        """
        if battle_id != self._state.battle_id:
            self._reset(battle_id)
            log.info("Reconciler tracking battle=%s", battle_id)
        if snapshot is not None:
            self.apply_snapshot(snapshot)
        else:
            await self.refresh()
        if self._socket is not None:
            await self._socket.set_target(battle_id)

    async def leave(self) -> None:
        if self._socket is not None:
            await self._socket.set_target(None)
        for task in list(self._refresh_tasks):
            task.cancel()
        if self._refresh_tasks:
            await asyncio.gather(*self._refresh_tasks, return_exceptions=True)
        if self._state.battle_id is not None:
            log.info("Reconciler left battle=%s", self._state.battle_id)
        self._reset(None)

    def _reset(self, battle_id: str | None) -> None:
        set_battle_tag(battle_id)
        self._last_round_event = None
        self._round_countdown.reset(0)
        self._commit(BattleSnapshot(battle_id=battle_id, total_rounds=self._default_total_rounds))

    async def refresh(self) -> None:
        """
        Refetch the snapshot for the bound battle. Failures are logged and
        leave the prior state in place.
        """
        battle_id = self._state.battle_id
        if not battle_id:
            return
        try:
            data = await self._rest.get_battle(battle_id)
            snapshot = BattleSnapshot.from_payload(data, self._default_total_rounds)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.warning("Battle refresh failed for %s: %s — keeping prior state", battle_id, exc)
            return
        if battle_id != self._state.battle_id:
            log.info("Dropping refresh for battle=%s — no longer tracked", battle_id)
            return
        self.apply_snapshot(snapshot)

    # ------------------------------------------------------------------
    # Merge operations
    # ------------------------------------------------------------------

    def apply_snapshot(self, snapshot: BattleSnapshot) -> None:
        cur = self._state
        if snapshot.battle_id and cur.battle_id and snapshot.battle_id != cur.battle_id:
            log.warning(
                "Ignoring snapshot for battle=%s while tracking %s",
                snapshot.battle_id, cur.battle_id,
            )
            return
        if snapshot.status.rank < cur.status.rank:
            log.info(
                "Ignoring stale %s snapshot — battle already %s",
                snapshot.status.value, cur.status.value,
            )
            return

        current_round = cur.current_round
        matches = cur.active_matches
        if self._last_round_event is None or snapshot.current_round > self._last_round_event:
            current_round = snapshot.current_round
            if snapshot.active_matches or snapshot.current_round != cur.current_round:
                matches = snapshot.active_matches
            if self._last_round_event is not None:
                # Snapshot overtook a round_started the push stream missed
                self._last_round_event = current_round

        new = replace(
            cur,
            battle_id=cur.battle_id or snapshot.battle_id,
            status=snapshot.status,
            current_round=current_round,
            total_rounds=snapshot.total_rounds,
            participants=snapshot.participants,
            active_matches=matches,
        )
        if new.status is BattleStatus.FINISHED:
            self._round_countdown.reset(0)
        elif new.is_active and (new.current_round != cur.current_round or not cur.is_active):
            self._round_countdown.reset(self._round_seconds(matches))
        self._commit(new)
        log.debug(
            "Snapshot applied battle=%s status=%s round=%d/%d participants=%d",
            new.battle_id, new.status.value, new.current_round, new.total_rounds, len(new.participants),
        )

    def apply_event(self, event: PushEvent) -> None:
        if self._state.status is BattleStatus.FINISHED:
            log.debug("Battle finished — ignoring %s", type(event).__name__)
            return
        if isinstance(event, RoundStarted):
            self._apply_round_started(event)
        elif isinstance(event, BattleFinished):
            self._round_countdown.reset(0)
            self._commit(replace(self._state, status=BattleStatus.FINISHED))
            log.info("Battle %s finished", self._state.battle_id)
        elif isinstance(event, ParticipantJoined):
            self._schedule_refresh()
        elif isinstance(event, ScoreUpdate):
            self._apply_score_update(event)

    async def handle_event(self, event: PushEvent) -> None:
        """Callback registered with BattleSocket."""
        self.apply_event(event)

    def overlay_scores(
        self,
        player1_score: int | None,
        player2_score: int | None,
        round_number: int | None = None,
    ) -> None:
        """
        Overlay live scores onto the current round's active match(es).
        None leaves a side unchanged; a score pinned to another round is dropped.
        """
        cur = self._state
        if cur.status is BattleStatus.FINISHED:
            return
        if round_number is not None and round_number != cur.current_round:
            log.debug("Discarding score for round %d (current %d)", round_number, cur.current_round)
            return
        if not cur.active_matches or (player1_score is None and player2_score is None):
            return
        matches = tuple(
            replace(
                m,
                player1_score=m.player1_score if player1_score is None else player1_score,
                player2_score=m.player2_score if player2_score is None else player2_score,
            )
            for m in cur.active_matches
        )
        self._commit(replace(cur, active_matches=matches))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_round_started(self, event: RoundStarted) -> None:
        if self._last_round_event is not None and event.round_number <= self._last_round_event:
            log.debug(
                "Ignoring round_started %d — round %d already applied",
                event.round_number, self._last_round_event,
            )
            return
        match = Match(
            player1_id=event.player1_id,
            player2_id=event.player2_id,
            player1_username=event.player1_username,
            player2_username=event.player2_username,
            player1_score=0,
            player2_score=0,
            duration_seconds=event.duration_seconds,
            status="active",
        )
        self._last_round_event = event.round_number
        self._round_countdown.reset(self._round_seconds((match,)))
        self._commit(
            replace(
                self._state,
                status=BattleStatus.ACTIVE,
                current_round=event.round_number,
                active_matches=(match,),
            )
        )
        log.info(
            "Round %d started: %s vs %s",
            event.round_number,
            event.player1_username or event.player1_id,
            event.player2_username or event.player2_id,
        )

    def _apply_score_update(self, event: ScoreUpdate) -> None:
        if event.round_number is not None and event.round_number != self._state.current_round:
            log.debug("Discarding score_update for round %d", event.round_number)
            return
        if event.blue is not None or event.red is not None:
            teams = self._state.team_scores
            self._commit(
                replace(
                    self._state,
                    team_scores=TeamScores(
                        blue=teams.blue if event.blue is None else event.blue,
                        red=teams.red if event.red is None else event.red,
                    ),
                )
            )
        self.overlay_scores(event.player1_score, event.player2_score, event.round_number)

    def _schedule_refresh(self) -> None:
        try:
            task = asyncio.get_running_loop().create_task(self.refresh(), name="battle-refresh")
        except RuntimeError:
            log.warning("No running loop — participant refresh skipped")
            return
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    def _round_seconds(self, matches) -> int:
        for m in matches:
            if m.duration_seconds:
                return int(m.duration_seconds)
        return self._default_round_seconds

    def _commit(self, state: BattleSnapshot) -> None:
        self._state = state
        self._bus.publish_battle_state(state)
