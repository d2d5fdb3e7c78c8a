"""
Battle WebSocket client for live push events.

Connects to the battle-scoped endpoint `/api/ws/battle/{battle_id}`, decodes
incoming frames into typed push events and hands them to the Reconciler.

Features:
- At most one connection, scoped to the current target battle
- Unconditional reconnect after a fixed delay (no backoff growth, no cap)
- Application-level {"type": "ping"} every 25s to defeat idle-timeout proxies
- Generation guard: nothing is emitted for a battle the client has left
"""

from __future__ import annotations
import asyncio
import json
import logging
import time
from typing import Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed

from models.events import PushEvent, parse_push_message
from models.state import ConnectionState, ConnectionStatus
from rocket.auth import TelegramAuth

log = logging.getLogger(__name__)

OnPushEvent = Callable[[PushEvent], Awaitable[None]]
OnConnectionState = Callable[[ConnectionState], None]


class BattleSocket:
    """
    Push channel manager for one battle at a time.

    Usage:
        socket = BattleSocket(ws_base, auth, on_event=reconciler.handle_event)
        await socket.set_target("b-123")   # connect
        await socket.set_target(None)      # leave
        await socket.dispose()             # shutdown
    """

    RECONNECT_DELAY_S = 3.0
    HEARTBEAT_INTERVAL_S = 25.0

    def __init__(
        self,
        ws_base: str,
        auth: TelegramAuth,
        on_event: OnPushEvent | None = None,
        on_state: OnConnectionState | None = None,
        reconnect_delay_s: float = RECONNECT_DELAY_S,
        heartbeat_interval_s: float = HEARTBEAT_INTERVAL_S,
    ) -> None:
        self._ws_base = ws_base.rstrip("/")
        self._auth = auth
        self._on_event = on_event
        self._on_state = on_state
        self._reconnect_delay_s = reconnect_delay_s
        self._heartbeat_interval_s = heartbeat_interval_s

        self._target: str | None = None
        # Bumped on every teardown; tasks carry the value they were started with
        self._generation = 0
        self._disposed = False
        self._state = ConnectionState()
        self._live_ws = None
        self._run_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        # Serializes set_target/dispose so only one run task is ever live
        self._lock = asyncio.Lock()

    @property
    def target(self) -> str | None:
        return self._target

    @property
    def state(self) -> ConnectionState:
        return self._state

    def url_for(self, battle_id: str) -> str:
        return f"{self._ws_base}/api/ws/battle/{battle_id}"

    async def set_target(self, battle_id: str | None) -> None:
        """
        Point the channel at a battle (or at nothing). Unchanged target is a
        no-op; a change closes the current connection before opening the next.
        """
        async with self._lock:
            if self._disposed:
                log.warning("set_target(%s) on a disposed BattleSocket — ignored", battle_id)
                return
            if battle_id == self._target:
                return
            await self._teardown()
            self._target = battle_id
            if battle_id is None:
                log.info("Battle WS detached")
                return
            gen = self._generation
            self._run_task = asyncio.create_task(self._run(battle_id, gen), name=f"battle-ws-{battle_id}")
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(gen), name="battle-ws-heartbeat")

    async def dispose(self) -> None:
        self._disposed = True
        async with self._lock:
            self._target = None
            await self._teardown()

    def _is_current(self, gen: int) -> bool:
        return gen == self._generation and not self._disposed

    async def _teardown(self) -> None:
        self._generation += 1
        current = asyncio.current_task()
        tasks = [t for t in (self._run_task, self._heartbeat_task) if t is not None and t is not current]
        self._run_task = None
        self._heartbeat_task = None

        ws, self._live_ws = self._live_ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as exc:
                log.debug("Battle WS close raised: %s", exc)

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._state.status is not ConnectionStatus.CLOSED:
            self._set_state(ConnectionState(ConnectionStatus.CLOSED, self._state.last_message_at))

    async def _run(self, battle_id: str, gen: int) -> None:
        """Connect loop — reconnects after a fixed delay until torn down."""
        while self._is_current(gen):
            self._set_state(ConnectionState(ConnectionStatus.CONNECTING, self._state.last_message_at))
            try:
                await self._connect_and_consume(battle_id, gen)
                if self._is_current(gen):
                    log.warning("Battle WS closed by server — reconnecting in %.1fs", self._reconnect_delay_s)
            except ConnectionClosed as exc:
                log.warning("Battle WS closed: %s — reconnecting in %.1fs", exc, self._reconnect_delay_s)
            except Exception as exc:
                log.error("Battle WS error: %s — reconnecting in %.1fs", exc, self._reconnect_delay_s)

            if not self._is_current(gen):
                break
            self._live_ws = None
            self._set_state(ConnectionState(ConnectionStatus.CLOSED, self._state.last_message_at))
            await asyncio.sleep(self._reconnect_delay_s)

    async def _connect_and_consume(self, battle_id: str, gen: int) -> None:
        # Protocol-level pings are off: liveness is governed by close/reconnect
        # alone, and the application ping below keeps proxies from idling out.
        async with websockets.connect(
            self.url_for(battle_id),
            additional_headers=self._auth.get_headers(),
            ping_interval=None,
        ) as ws:
            if not self._is_current(gen):
                return
            self._live_ws = ws
            self._set_state(ConnectionState(ConnectionStatus.OPEN, self._state.last_message_at))
            log.info("Battle WS connected battle=%s", battle_id)

            async for raw in ws:
                if not self._is_current(gen):
                    break
                self._state = ConnectionState(self._state.status, time.monotonic())
                event = parse_push_message(raw)
                if event is None:
                    continue
                await self._dispatch(event, gen)

    async def _dispatch(self, event: PushEvent, gen: int) -> None:
        if not self._is_current(gen) or self._on_event is None:
            return
        try:
            await self._on_event(event)
        except Exception as exc:
            log.exception("Battle WS event handler failed for %s: %s", type(event).__name__, exc)

    async def _heartbeat_loop(self, gen: int) -> None:
        while self._is_current(gen):
            await asyncio.sleep(self._heartbeat_interval_s)
            ws = self._live_ws
            if ws is None or not self._state.is_open or not self._is_current(gen):
                continue
            try:
                await ws.send(json.dumps({"type": "ping"}))
                log.debug("Battle WS ping sent")
            except ConnectionClosed:
                # The run loop sees the same close and schedules the reconnect
                log.debug("Battle WS ping skipped: connection closing")
            except Exception as exc:
                log.warning("Battle WS ping failed: %r", exc)

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        if self._on_state is not None:
            self._on_state(state)
