"""
Typed multi-channel event bus.

Every state change an agent makes is published here for observers (the
console renderer in main.py, tests). Uses asyncio.Queue — no network hops.

Each channel carries whole state values, not deltas, so only the newest entry
matters: when a queue is full the oldest entry is discarded to make room.

Queue sizing:
  battle_states:     50 — one per snapshot / push event
  limits:            20 — one per profile fetch / fire response
  connection_states: 20 — socket lifecycle transitions
  timer_ticks:       10 — at most one per second
  notices:           50 — user-visible messages
"""

from __future__ import annotations
import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from models.events import Notice, TimerTick
    from models.state import ActionLimits, BattleSnapshot, ConnectionState

log = logging.getLogger(__name__)


class EventBus:
    __slots__ = (
        "battle_states",
        "limits",
        "connection_states",
        "timer_ticks",
        "notices",
    )

    def __init__(self) -> None:
        self.battle_states: asyncio.Queue[BattleSnapshot] = asyncio.Queue(maxsize=50)
        self.limits: asyncio.Queue[ActionLimits] = asyncio.Queue(maxsize=20)
        self.connection_states: asyncio.Queue[ConnectionState] = asyncio.Queue(maxsize=20)
        self.timer_ticks: asyncio.Queue[TimerTick] = asyncio.Queue(maxsize=10)
        self.notices: asyncio.Queue[Notice] = asyncio.Queue(maxsize=50)

    def publish_battle_state(self, state: "BattleSnapshot") -> None:
        self._put_latest(self.battle_states, state, "battle_states")

    def publish_limits(self, limits: "ActionLimits") -> None:
        self._put_latest(self.limits, limits, "limits")

    def publish_connection_state(self, state: "ConnectionState") -> None:
        self._put_latest(self.connection_states, state, "connection_states")

    def publish_timer_tick(self, tick: "TimerTick") -> None:
        self._put_latest(self.timer_ticks, tick, "timer_ticks")

    def publish_notice(self, notice: "Notice") -> None:
        self._put_latest(self.notices, notice, "notices")

    @staticmethod
    def _put_latest(queue: asyncio.Queue, item, name: str) -> None:
        """Non-blocking publish. Drops the oldest entry if the queue is full."""
        try:
            queue.put_nowait(item)
        except asyncio.QueueFull:
            queue.get_nowait()
            log.warning("%s queue full — dropped oldest entry", name)
            queue.put_nowait(item)
