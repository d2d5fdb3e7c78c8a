"""
Console Agent — Display.

Drains the EventBus channels and renders each published value as a log line.
Stands in for the Mini App screens: nothing here feeds back into state.
"""

from __future__ import annotations
import asyncio
import logging

from bus.event_bus import EventBus
from models.events import Notice, TimerTick
from models.state import ActionLimits, BattleSnapshot, BattleStatus, ConnectionState

log = logging.getLogger(__name__)


def format_clock(seconds: int) -> str:
    """mm:ss, or h:mm:ss once past the hour (daily cooldowns)."""
    h, rem = divmod(max(0, seconds), 3600)
    m, s = divmod(rem, 60)
    if h:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m:02d}:{s:02d}"


class ConsoleAgent:
    def __init__(
        self,
        bus: EventBus,
        round_names: dict[int, str] | None = None,
        bracket_size: int = 16,
        my_user_id=None,
    ) -> None:
        self._bus = bus
        self._round_names = round_names or {}
        self._bracket_size = bracket_size
        self.my_user_id = my_user_id

    def round_name(self, round_number: int) -> str:
        return self._round_names.get(round_number) or f"Round {round_number}"

    def render_battle(self, state: BattleSnapshot) -> str:
        if state.battle_id is None:
            return "No battle joined"
        if state.status is BattleStatus.WAITING:
            return f"Waiting for battle to start... {len(state.participants)} / {self._bracket_size} players"
        if state.status is BattleStatus.FINISHED:
            winner = state.winner()
            if winner is None:
                return "Battle finished — no winner"
            return f"Battle finished — winner: {winner.display_name or winner.user_id} ({winner.score} rockets)"

        parts = [f"{self.round_name(state.current_round)} ({state.current_round}/{state.total_rounds})"]
        for m in state.active_matches:
            mine = " *" if m.involves(self.my_user_id) else ""
            parts.append(
                f"{m.player1_username or m.player1_id} {m.player1_score} : "
                f"{m.player2_score} {m.player2_username or m.player2_id}{mine}"
            )
        if state.team_scores.blue or state.team_scores.red:
            parts.append(f"blue {state.team_scores.blue} : {state.team_scores.red} red")
        alive = sum(1 for p in state.participants if not p.is_eliminated)
        parts.append(f"{alive} alive")
        return " | ".join(parts)

    @staticmethod
    def render_limits(limits: ActionLimits) -> str:
        line = (
            f"balance={limits.balance} "
            f"limit={limits.daily_quota_remaining}/{limits.daily_quota_max} ({limits.quota_percent():.0f}%)"
        )
        if limits.cooldown_seconds_remaining > 0:
            line += f" cooldown={format_clock(limits.cooldown_seconds_remaining)}"
        return line

    @staticmethod
    def render_connection(state: ConnectionState) -> str:
        if state.is_open:
            return "LIVE"
        return f"reconnecting ({state.status.value})"

    @staticmethod
    def render_tick(tick: TimerTick) -> str:
        line = f"round {format_clock(tick.round_seconds_left)}"
        if tick.cooldown_seconds_left > 0:
            line += f" | cooldown {format_clock(tick.cooldown_seconds_left)}"
        return line

    async def run(self) -> None:
        log.info("Console agent running")
        tasks = [
            asyncio.create_task(self._drain(self._bus.battle_states, self.render_battle, logging.INFO)),
            asyncio.create_task(self._drain(self._bus.limits, self.render_limits, logging.INFO)),
            asyncio.create_task(self._drain(self._bus.connection_states, self.render_connection, logging.INFO)),
            asyncio.create_task(self._drain(self._bus.timer_ticks, self.render_tick, logging.DEBUG)),
            asyncio.create_task(self._drain_notices()),
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _drain(self, queue: asyncio.Queue, render, level: int) -> None:
        while True:
            item = await queue.get()
            try:
                log.log(level, render(item))
            except Exception as exc:
                log.exception("Console render failed for %s: %s", type(item).__name__, exc)

    async def _drain_notices(self) -> None:
        while True:
            notice: Notice = await self._bus.notices.get()
            level = logging.ERROR if notice.level == "error" else logging.INFO
            log.log(level, "[%s] %s", notice.level.upper(), notice.message)
