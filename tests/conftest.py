"""Shared fixtures: bus, mocked REST client, countdowns and wired agents."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from agents.gate import GateAgent
from agents.reconciler import ReconcilerAgent
from agents.timers import Countdown
from bus.event_bus import EventBus
from rocket.rest_client import RocketRestClient


def battle_payload(
    battle_id: str = "b-1",
    status: str = "waiting",
    current_round: int = 0,
    total_rounds: int = 4,
    participants: list[dict] | None = None,
    **extra,
) -> dict:
    data = {
        "battle_id": battle_id,
        "status": status,
        "current_round": current_round,
        "total_rounds": total_rounds,
        "participants": participants if participants is not None else [
            {"user_id": 1, "username": "alice", "score": 10, "bracket_position": 2, "is_eliminated": False},
            {"user_id": 2, "username": "bob", "score": 30, "bracket_position": 1, "is_eliminated": False},
            {"user_id": 3, "username": "carol", "score": 50, "bracket_position": 3, "is_eliminated": True, "is_vip": True},
        ],
    }
    data.update(extra)
    return data


PROFILE = {
    "balance": 100,
    "is_vip": False,
    "limit_remaining": 50,
    "limit_max": 100,
    "cooldown_seconds": 0,
    "user_id": 1,
    "username": "alice",
}


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def rest() -> MagicMock:
    client = MagicMock(spec=RocketRestClient)
    client.get_profile = AsyncMock(return_value=dict(PROFILE))
    client.join_room = AsyncMock(return_value=battle_payload())
    client.get_battle = AsyncMock(return_value=battle_payload())
    client.vote = AsyncMock()
    return client


@pytest.fixture
def round_countdown() -> Countdown:
    return Countdown("round")


@pytest.fixture
def cooldown() -> Countdown:
    return Countdown("cooldown")


@pytest.fixture
def reconciler(bus, rest, round_countdown) -> ReconcilerAgent:
    return ReconcilerAgent(bus=bus, rest_client=rest, round_countdown=round_countdown)


@pytest.fixture
def gate(bus, rest, reconciler, cooldown) -> GateAgent:
    return GateAgent(bus=bus, rest_client=rest, reconciler=reconciler, cooldown=cooldown)


def drain(queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items
