"""
Rocket Battle client — Main Entrypoint

Boots the asyncio event loop, wires the client runtime together, and runs
until SIGINT/SIGTERM (or `quit` on stdin) is received.

Startup sequence:
  1. Load settings from environment, game tuning from config/battle.yaml
  2. Initialize auth, REST client, battle socket
  3. Build Reconciler, Gate, Timer and Console agents
  4. Fetch the profile; join the invite-code room if one was given
  5. Accept commands on stdin: fire <n> [target], refresh, join <code>, leave, quit

Shutdown sequence:
  1. Detach and dispose the battle socket
  2. Cancel running tasks
  3. Close the HTTP session
"""

from __future__ import annotations
import asyncio
import logging
import signal
import sys
from pathlib import Path

import aiohttp
import yaml
from dotenv import load_dotenv

# Load .env before importing settings (settings reads env vars at import time)
load_dotenv()

from agents.console import ConsoleAgent
from agents.gate import GateAgent
from agents.reconciler import ReconcilerAgent
from agents.timers import Countdown, TimerAgent
from bus.event_bus import EventBus
from config.settings import settings
from models.errors import ApiError, GateError
from models.state import Profile
from rocket.auth import TelegramAuth
from rocket.rest_client import RocketRestClient
from rocket.ws_client import BattleSocket
from utils.logger import setup_logging

log = logging.getLogger(__name__)

HTTP_UNAUTHORIZED = 401


def _load_battle_config() -> dict:
    with open(Path(__file__).parent / "config" / "battle.yaml") as f:
        return yaml.safe_load(f)


class CommandLoop:
    """
    stdin driver. Holds the one piece of caller-side state the Gate expects
    callers to keep: whether a fire is already in flight.
    """

    def __init__(self, reconciler: ReconcilerAgent, gate: GateAgent, shutdown_event: asyncio.Event) -> None:
        self._reconciler = reconciler
        self._gate = gate
        self._shutdown_event = shutdown_event
        self._fire_in_flight = False

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
        while not self._shutdown_event.is_set():
            line = await reader.readline()
            if not line:
                self._shutdown_event.set()
                break
            try:
                await self.handle(line.decode().strip())
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.exception("Command failed: %s", exc)

    async def handle(self, line: str) -> None:
        if not line:
            return
        cmd, *args = line.split()
        cmd = cmd.lower()
        if cmd == "fire":
            await self._fire(args)
        elif cmd == "refresh":
            await self._reconciler.refresh()
        elif cmd == "join" and args:
            await self._join(args[0])
        elif cmd == "leave":
            await self._reconciler.leave()
        elif cmd in ("quit", "exit"):
            self._shutdown_event.set()
        else:
            log.info("Commands: fire <n> [target_id] | refresh | join <code> | leave | quit")

    async def _join(self, invite_code: str) -> None:
        try:
            snapshot = await self._reconciler.join(invite_code)
        except ApiError as exc:
            log.error("Could not join room %s: %s", invite_code, exc.detail)
            return
        log.info("Joined room %s battle=%s status=%s", invite_code, snapshot.battle_id, snapshot.status.value)

    async def _fire(self, args: list[str]) -> None:
        if self._fire_in_flight:
            log.info("Fire already in flight — ignored")
            return
        try:
            amount = int(args[0]) if args else 1
            target_id = int(args[1]) if len(args) > 1 else None
        except ValueError:
            log.info("Usage: fire <n> [target_id]")
            return
        self._fire_in_flight = True
        try:
            await self._gate.fire(amount, target_id)
        except GateError as exc:
            log.debug("Fire rejected: %s", exc.user_message)
        finally:
            self._fire_in_flight = False


async def _load_profile(gate: GateAgent) -> Profile | None:
    """Fetch the profile; None (after a critical log) when the client cannot start."""
    try:
        return await gate.load_profile()
    except ApiError as exc:
        if exc.status == HTTP_UNAUTHORIZED:
            log.critical("Authentication failed — check ROCKET_INIT_DATA")
        else:
            log.critical("Profile load failed: %s", exc.detail)
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        log.critical("Profile load failed, backend unreachable: %r", exc)
    return None


async def run(invite_code: str) -> None:
    setup_logging(settings.log_level)
    log.info("Rocket Battle client starting (api=%s)", settings.api_base)

    battle_cfg = _load_battle_config()

    # -----------------------------------------------------------------------
    # Infrastructure
    # -----------------------------------------------------------------------
    bus = EventBus()
    auth = TelegramAuth(init_data=settings.init_data)
    rest_client = RocketRestClient(
        base_url=settings.api_base,
        auth=auth,
        timeout_s=settings.http_timeout_s,
    )

    # -----------------------------------------------------------------------
    # Agents
    # -----------------------------------------------------------------------
    round_countdown = Countdown("round")
    cooldown = Countdown("cooldown")

    reconciler = ReconcilerAgent(
        bus=bus,
        rest_client=rest_client,
        round_countdown=round_countdown,
        default_round_seconds=battle_cfg["battle"]["default_round_seconds"],
        default_total_rounds=battle_cfg["battle"]["default_total_rounds"],
    )
    socket = BattleSocket(
        ws_base=settings.ws_base,
        auth=auth,
        on_event=reconciler.handle_event,
        on_state=bus.publish_connection_state,
        reconnect_delay_s=settings.reconnect_delay_s,
        heartbeat_interval_s=settings.heartbeat_interval_s,
    )
    reconciler.set_socket(socket)

    gate = GateAgent(bus=bus, rest_client=rest_client, reconciler=reconciler, cooldown=cooldown)
    timers = TimerAgent(bus, round_countdown, cooldown, tick_interval_s=settings.tick_interval_s)
    console = ConsoleAgent(
        bus,
        round_names=battle_cfg["rounds"]["names"],
        bracket_size=battle_cfg["battle"]["bracket_size"],
    )

    # -----------------------------------------------------------------------
    # Startup: profile, optional room join
    # -----------------------------------------------------------------------
    await rest_client.startup()
    profile = await _load_profile(gate)
    if profile is None:
        await rest_client.shutdown()
        return
    console.my_user_id = profile.user_id
    log.info("Logged in as %s (vip=%s)", profile.display_name, profile.is_vip)

    shutdown_event = asyncio.Event()
    commands = CommandLoop(reconciler, gate, shutdown_event)

    def _handle_signal(sig: signal.Signals) -> None:
        log.info("Received %s — initiating graceful shutdown", sig.name)
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    tasks = [
        asyncio.create_task(console.run(), name="console"),
        asyncio.create_task(timers.run(), name="timers"),
        asyncio.create_task(commands.run(), name="commands"),
    ]

    if invite_code:
        await commands.handle(f"join {invite_code}")
    log.info("Client is live. Type 'help' for commands.")

    await shutdown_event.wait()

    # -----------------------------------------------------------------------
    # Graceful shutdown
    # -----------------------------------------------------------------------
    log.info("Shutting down...")
    await reconciler.leave()
    await socket.dispose()
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await rest_client.shutdown()
    log.info("Rocket Battle client stopped cleanly.")


def main() -> None:
    invite_code = sys.argv[1] if len(sys.argv) > 1 else settings.invite_code
    try:
        import uvloop  # type: ignore
        uvloop.run(run(invite_code))
    except ImportError:
        asyncio.run(run(invite_code))


if __name__ == "__main__":
    main()
