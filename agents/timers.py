"""
Timer Agent — Round & Cooldown Countdowns.

Two independent countdowns (round time-left, fire cooldown) share a single
one-second tick. They carry no authority of their own: the Reconciler resets
the round countdown on a new round, the Gate resets the cooldown from server
responses. Between resets a countdown only ever goes down.
"""

from __future__ import annotations
import asyncio
import logging

from bus.event_bus import EventBus
from models.events import TimerTick

log = logging.getLogger(__name__)


class Countdown:
    __slots__ = ("name", "_remaining")

    def __init__(self, name: str, seconds: int = 0) -> None:
        self.name = name
        self._remaining = max(0, int(seconds))

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def is_running(self) -> bool:
        return self._remaining > 0

    def reset(self, seconds: int) -> None:
        """Discrete reset to a value reported by the authority."""
        self._remaining = max(0, int(seconds))
        log.debug("Countdown %s reset to %ds", self.name, self._remaining)

    def tick(self) -> bool:
        """Decrement by one second. Returns True if the value changed."""
        if self._remaining <= 0:
            return False
        self._remaining -= 1
        return True


class TimerAgent:
    """Drives the round and cooldown countdowns from one shared tick."""

    def __init__(
        self,
        bus: EventBus,
        round_countdown: Countdown,
        cooldown: Countdown,
        tick_interval_s: float = 1.0,
    ) -> None:
        self._bus = bus
        self._round = round_countdown
        self._cooldown = cooldown
        self._tick_interval_s = tick_interval_s

    def tick(self) -> None:
        changed = self._round.tick()
        changed = self._cooldown.tick() or changed
        if changed:
            self._bus.publish_timer_tick(
                TimerTick(
                    round_seconds_left=self._round.remaining,
                    cooldown_seconds_left=self._cooldown.remaining,
                )
            )

    async def run(self) -> None:
        log.info("Timer agent running (tick=%.2fs)", self._tick_interval_s)
        while True:
            try:
                await asyncio.sleep(self._tick_interval_s)
                self.tick()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                log.exception("Timer tick failed: %s", exc)
