"""
Smoke test: fire a single rocket in a live battle to verify the full
auth + join + fire pipeline is wired correctly.

Usage:
    python fire_once.py <invite_code> [amount]

Loads the profile, joins the room, prints the battle and limits, checks the
local gate and fires once after confirmation. No websocket is opened.
"""

from __future__ import annotations
import asyncio
import sys

from dotenv import load_dotenv
load_dotenv()

from agents.gate import GateAgent
from agents.reconciler import ReconcilerAgent
from agents.timers import Countdown
from bus.event_bus import EventBus
from config.settings import settings
from models.errors import ApiError, GateError, RateLimited
from rocket.auth import TelegramAuth
from rocket.rest_client import RocketRestClient


async def main(invite_code: str, amount: int) -> None:
    print(f"API base: {settings.api_base}\n")

    bus = EventBus()
    client = RocketRestClient(
        base_url=settings.api_base,
        auth=TelegramAuth(init_data=settings.init_data),
        timeout_s=settings.http_timeout_s,
    )
    reconciler = ReconcilerAgent(bus=bus, rest_client=client, round_countdown=Countdown("round"))
    gate = GateAgent(bus=bus, rest_client=client, reconciler=reconciler, cooldown=Countdown("cooldown"))
    await client.startup()

    try:
        # ------------------------------------------------------------ profile
        profile = await gate.load_profile()
        limits = gate.limits
        print(f"Player : {profile.display_name} (id={profile.user_id}, vip={profile.is_vip})")
        print(f"Balance: {limits.balance}")
        print(f"Limit  : {limits.daily_quota_remaining} / {limits.daily_quota_max}")
        if limits.cooldown_seconds_remaining:
            print(f"Cooldown: {limits.cooldown_seconds_remaining}s")

        # --------------------------------------------------------------- join
        state = await reconciler.join(invite_code)
        print(f"\nBattle : {state.battle_id}")
        print(f"Status : {state.status.value}  round {state.current_round}/{state.total_rounds}")
        for p in state.ordered_participants():
            print(f"  #{p.bracket_position:<2} {p.display_name:<20} {p.score:>5}{'  (out)' if p.is_eliminated else ''}")
        print()

        # --------------------------------------------------------------- gate
        reason = gate.check(amount)
        if reason is not None:
            print(f"Cannot fire {amount}: {reason}. Aborting.")
            return

        confirm = input(f"Fire {amount} rocket(s)? [y/N] ").strip().lower()
        if confirm != "y":
            print("Aborted.")
            return

        # --------------------------------------------------------------- fire
        try:
            outcome = await gate.fire(amount)
        except RateLimited as exc:
            print(f"\nRate limited: {exc.detail} (retry in {exc.retry_after}s)")
            sys.exit(1)
        except GateError as exc:
            print(f"\nFire FAILED: {exc.user_message}")
            sys.exit(1)
        print("\nFired successfully!")
        print(f"  New balance : {outcome.new_balance}")
        print(f"  Cooldown    : {outcome.cooldown_seconds if outcome.cooldown_seconds is not None else 'n/a'}")
        print(f"  Limit left  : {outcome.remaining_limit if outcome.remaining_limit is not None else 'n/a'}")
        match = reconciler.state.match_for(profile.user_id)
        if match is not None:
            print(f"  Match score : {match.player1_score} : {match.player2_score}")
    except ApiError as exc:
        print(f"\nRequest FAILED: {exc}")
        sys.exit(1)
    finally:
        await client.shutdown()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)
    asyncio.run(main(sys.argv[1], int(sys.argv[2]) if len(sys.argv) > 2 else 1))
