"""
Messages that cross component boundaries.

Push events come off the battle websocket and are handed to the Reconciler.
They are idempotent triggers, not deltas: RoundStarted replaces the active
match set wholesale, ParticipantJoined only asks for a fresh snapshot.

All models are frozen and use __slots__.
"""

from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from typing import Literal, Union

log = logging.getLogger(__name__)

NoticeLevel = Literal["info", "success", "error"]


@dataclass(frozen=True, slots=True)
class RoundStarted:
    round_number: int
    player1_id: int
    player2_id: int
    player1_username: str = ""
    player2_username: str = ""
    duration_seconds: int | None = None


@dataclass(frozen=True, slots=True)
class BattleFinished:
    pass


@dataclass(frozen=True, slots=True)
class ParticipantJoined:
    pass


@dataclass(frozen=True, slots=True)
class ScoreUpdate:
    """
    Live score overlay. Every field is optional: None means "unchanged".
    round_number, when the server sends it, pins the scores to one round so a
    late frame from a finished round can be discarded.
    """
    blue: int | None = None
    red: int | None = None
    player1_score: int | None = None
    player2_score: int | None = None
    round_number: int | None = None


PushEvent = Union[RoundStarted, BattleFinished, ParticipantJoined, ScoreUpdate]


def parse_push_message(raw: str | bytes) -> PushEvent | None:
    """
    Decode one websocket frame. Returns None for frames that should be
    dropped: malformed JSON, non-object payloads, keep-alive replies and any
    message kind this client does not know about.
    """
    try:
        msg = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        log.warning("Malformed WS message: %.80r", raw)
        return None
    if not isinstance(msg, dict):
        log.warning("Unexpected WS payload type %s", type(msg).__name__)
        return None

    msg_type = msg.get("type")
    try:
        if msg_type == "round_started":
            return RoundStarted(
                round_number=int(msg["round_number"]),
                player1_id=msg["player1_id"],
                player2_id=msg["player2_id"],
                player1_username=msg.get("player1_username") or "",
                player2_username=msg.get("player2_username") or "",
                duration_seconds=_opt_int(msg.get("duration_seconds")),
            )
        if msg_type == "battle_finished":
            return BattleFinished()
        if msg_type == "player_joined":
            return ParticipantJoined()
        if msg_type == "score_update" or (msg_type is None and _has_score_fields(msg)):
            return ScoreUpdate(
                blue=_opt_int(msg.get("blue")),
                red=_opt_int(msg.get("red")),
                player1_score=_opt_int(msg.get("player1_score")),
                player2_score=_opt_int(msg.get("player2_score")),
                round_number=_opt_int(msg.get("round_number")),
            )
    except (KeyError, TypeError, ValueError) as exc:
        log.warning("Dropping malformed %s message: %s", msg_type, exc)
        return None
    return None


_SCORE_FIELDS = ("blue", "red", "player1_score", "player2_score")


def _has_score_fields(msg: dict) -> bool:
    return any(isinstance(msg.get(k), (int, float)) for k in _SCORE_FIELDS)


def _opt_int(value) -> int | None:
    if value is None:
        return None
    return int(value)


@dataclass(frozen=True, slots=True)
class FireOutcome:
    """
    Authoritative result of a successful fire. Optional fields follow the
    response contract: None means the server did not report a change.
    """
    amount: int
    new_balance: int
    cooldown_seconds: int | None = None
    remaining_limit: int | None = None
    player1_score: int | None = None
    player2_score: int | None = None

    @staticmethod
    def from_response(amount: int, data: dict) -> "FireOutcome":
        cooldown = None
        if data.get("cooldown_started") and data.get("cooldown_seconds") is not None:
            cooldown = int(data["cooldown_seconds"])
        return FireOutcome(
            amount=amount,
            new_balance=int(data["new_balance"]),
            cooldown_seconds=cooldown,
            remaining_limit=_opt_int(data.get("remaining_limit")),
            player1_score=_opt_int(data.get("player1_score")),
            player2_score=_opt_int(data.get("player2_score")),
        )


@dataclass(frozen=True, slots=True)
class TimerTick:
    round_seconds_left: int
    cooldown_seconds_left: int


@dataclass(frozen=True, slots=True)
class Notice:
    """User-visible message (the toast line of the UI)."""
    level: NoticeLevel
    message: str
