"""
State objects held by individual agents.

Each value here is owned by exactly one component:
  ConnectionState — BattleSocket
  BattleSnapshot  — ReconcilerAgent
  ActionLimits    — GateAgent

Peers only ever see frozen copies; writes go through the owner's operations.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

log = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class BattleStatus(Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    FINISHED = "finished"

    @property
    def rank(self) -> int:
        """Position in the one-way WAITING -> ACTIVE -> FINISHED progression."""
        return _STATUS_RANK[self]

    @classmethod
    def parse(cls, raw: Any, default: "BattleStatus | None" = None) -> "BattleStatus":
        fallback = default or cls.WAITING
        try:
            return cls(str(raw).lower())
        except ValueError:
            log.warning("Unknown battle status %r — treating as %s", raw, fallback.value)
            return fallback


_STATUS_RANK = {
    BattleStatus.WAITING: 0,
    BattleStatus.ACTIVE: 1,
    BattleStatus.FINISHED: 2,
}


@dataclass(frozen=True, slots=True)
class ConnectionState:
    status: ConnectionStatus = ConnectionStatus.CLOSED
    last_message_at: float | None = None   # time.monotonic() of the last frame received

    @property
    def is_open(self) -> bool:
        return self.status is ConnectionStatus.OPEN


@dataclass(frozen=True, slots=True)
class Participant:
    user_id: int
    display_name: str
    score: int = 0
    bracket_position: int = 0
    is_eliminated: bool = False
    is_privileged: bool = False     # VIP on the backend

    @staticmethod
    def from_payload(data: dict) -> "Participant":
        name = data.get("display_name") or data.get("username") or data.get("first_name") or ""
        return Participant(
            user_id=data["user_id"],
            display_name=name,
            score=int(data.get("score") or 0),
            bracket_position=int(data.get("bracket_position") or 0),
            is_eliminated=bool(data.get("is_eliminated", False)),
            is_privileged=bool(data.get("is_vip", data.get("is_privileged", False))),
        )


@dataclass(frozen=True, slots=True)
class Match:
    player1_id: int
    player2_id: int
    player1_username: str = ""
    player2_username: str = ""
    player1_score: int = 0
    player2_score: int = 0
    duration_seconds: int | None = None
    winner_id: int | None = None
    status: str = "active"

    @staticmethod
    def from_payload(data: dict) -> "Match":
        return Match(
            player1_id=data["player1_id"],
            player2_id=data["player2_id"],
            player1_username=data.get("player1_username") or "",
            player2_username=data.get("player2_username") or "",
            player1_score=int(data.get("player1_score") or 0),
            player2_score=int(data.get("player2_score") or 0),
            duration_seconds=data.get("duration_seconds"),
            winner_id=data.get("winner_id"),
            status=data.get("status") or "active",
        )

    def involves(self, user_id: int) -> bool:
        return user_id in (self.player1_id, self.player2_id)


@dataclass(frozen=True, slots=True)
class TeamScores:
    """Live score for the simple two-team variant of the push feed."""
    blue: int = 0
    red: int = 0


@dataclass(frozen=True, slots=True)
class BattleSnapshot:
    """
    Full battle state. Arrives from REST and fully replaces the Reconciler's
    working copy; the Reconciler also republishes it after every push event.
    Participants are kept sorted by bracket_position.
    """
    battle_id: str | None = None
    status: BattleStatus = BattleStatus.WAITING
    current_round: int = 0
    total_rounds: int = 4
    participants: tuple[Participant, ...] = ()
    active_matches: tuple[Match, ...] = ()
    team_scores: TeamScores = field(default_factory=TeamScores)

    @staticmethod
    def from_payload(data: dict, default_total_rounds: int = 4) -> "BattleSnapshot":
        """
        Build from a join-room or get-battle response. The join endpoint names
        the phase `battle_status`, the battle endpoint names it `status`.
        """
        raw_status = data.get("status") or data.get("battle_status")
        participants = [Participant.from_payload(p) for p in data.get("participants") or []]
        matches_raw = data.get("active_matches", data.get("current_matches")) or []
        return BattleSnapshot(
            battle_id=data.get("battle_id"),
            status=BattleStatus.parse(raw_status) if raw_status is not None else BattleStatus.WAITING,
            current_round=int(data.get("current_round") or 0),
            total_rounds=int(data.get("total_rounds") or default_total_rounds),
            participants=_by_bracket(participants),
            active_matches=tuple(Match.from_payload(m) for m in matches_raw),
        )

    @property
    def is_active(self) -> bool:
        return self.status is BattleStatus.ACTIVE

    def ordered_participants(self) -> list[Participant]:
        return list(_by_bracket(self.participants))

    def winner(self) -> Participant | None:
        """Highest-scoring participant still in the bracket."""
        alive = [p for p in self.participants if not p.is_eliminated]
        if not alive:
            return None
        return max(alive, key=lambda p: p.score)

    def match_for(self, user_id: int | None) -> Match | None:
        if user_id is None:
            return None
        for m in self.active_matches:
            if m.involves(user_id):
                return m
        return None


def _by_bracket(participants) -> tuple[Participant, ...]:
    return tuple(sorted(participants, key=lambda p: p.bracket_position))


@dataclass(frozen=True, slots=True)
class Profile:
    user_id: int | None = None
    display_name: str = "Player"
    is_vip: bool = False


@dataclass(frozen=True, slots=True)
class ActionLimits:
    """
    Owned by the GateAgent. Balance and quota move only on the profile fetch or
    an authoritative fire response — never optimistically.
    """
    balance: int = 0
    cooldown_seconds_remaining: int = 0
    daily_quota_remaining: int = 0
    daily_quota_max: int = 0

    def max_fire_amount(self) -> int:
        return max(0, min(self.balance, self.daily_quota_remaining))

    def quota_percent(self) -> float:
        if self.daily_quota_max <= 0:
            return 0.0
        return max(0.0, min(100.0, self.daily_quota_remaining / self.daily_quota_max * 100))
