"""
Gate Agent — Fire Action.

Decides whether the player may fire right now and executes the fire against
the backend. Owns ActionLimits (balance, daily quota, cooldown).

Preconditions (all local, no network):
  - a battle is bound and the Reconciler reports it ACTIVE
  - 0 < amount <= min(balance, daily quota remaining)
  - cooldown is at zero

Balance and quota are never debited optimistically: they change only when the
profile is loaded or a fire response arrives. A 429 re-syncs the cooldown from
the wait time embedded in the error text.
"""

from __future__ import annotations
import asyncio
import logging

import aiohttp

from agents.reconciler import ReconcilerAgent
from agents.timers import Countdown
from bus.event_bus import EventBus
from models.errors import ApiError, PreconditionNotMet, RateLimited, RemoteFailure
from models.events import FireOutcome, Notice
from models.state import ActionLimits, BattleStatus, Profile
from rocket.rest_client import RocketRestClient
from utils.retry_after import parse_retry_after

log = logging.getLogger(__name__)

HTTP_TOO_MANY_REQUESTS = 429


class GateAgent:
    """
    Sole writer of the player's ActionLimits. The cooldown value lives in a
    Countdown shared with the TimerAgent, which ticks it down between resets.

    The gate keeps no per-call state: suppressing a second fire() while one is
    in flight is the caller's job.
    """

    def __init__(
        self,
        bus: EventBus,
        rest_client: RocketRestClient,
        reconciler: ReconcilerAgent,
        cooldown: Countdown,
    ) -> None:
        self._bus = bus
        self._rest = rest_client
        self._reconciler = reconciler
        self._cooldown = cooldown
        self._balance = 0
        self._quota_remaining = 0
        self._quota_max = 0
        self._profile = Profile()

    @property
    def limits(self) -> ActionLimits:
        return ActionLimits(
            balance=self._balance,
            cooldown_seconds_remaining=self._cooldown.remaining,
            daily_quota_remaining=self._quota_remaining,
            daily_quota_max=self._quota_max,
        )

    @property
    def profile(self) -> Profile:
        return self._profile

    async def load_profile(self) -> Profile:
        """Fetch the profile and seed limits from it. API errors propagate."""
        data = await self._rest.get_profile()
        return self.apply_profile(data)

    def apply_profile(self, data: dict) -> Profile:
        self._balance = int(data.get("balance") or 0)
        self._quota_remaining = int(data.get("limit_remaining") or 0)
        self._quota_max = int(data.get("limit_max") or 0)
        cooldown = data.get("cooldown_seconds")
        if cooldown is not None and cooldown > 0:
            self._cooldown.reset(int(cooldown))
        self._profile = Profile(
            user_id=data.get("user_id"),
            display_name=data.get("username") or data.get("first_name") or "Player",
            is_vip=bool(data.get("is_vip", False)),
        )
        log.info(
            "Profile loaded user=%s vip=%s balance=%d limit=%d/%d cooldown=%ds",
            self._profile.user_id, self._profile.is_vip, self._balance,
            self._quota_remaining, self._quota_max, self._cooldown.remaining,
        )
        self._bus.publish_limits(self.limits)
        return self._profile

    def check(self, amount: int) -> str | None:
        """Returns the reason fire is not allowed right now, or None."""
        state = self._reconciler.state
        if not state.battle_id:
            return "No active battle"
        if state.status is BattleStatus.WAITING:
            return "Battle has not started yet"
        if state.status is not BattleStatus.ACTIVE:
            return "Battle is over"
        if amount <= 0:
            return "Amount must be positive"
        if amount > self._balance:
            return f"Insufficient balance ({self._balance})"
        if amount > self._quota_remaining:
            return f"Daily limit reached ({self._quota_remaining} left)"
        if self._cooldown.remaining > 0:
            return f"Cooldown active ({self._cooldown.remaining}s left)"
        return None

    def can_fire(self, amount: int) -> bool:
        return self.check(amount) is None

    async def fire(self, amount: int, target_id: int | None = None) -> FireOutcome:
        """
        Send one fire action and apply the authoritative result.

        Raises PreconditionNotMet (nothing sent), RateLimited (cooldown
        re-synced when a wait time was found) or RemoteFailure (no change).
        """
        reason = self.check(amount)
        if reason is not None:
            self._notify("error", reason)
            raise PreconditionNotMet(reason)

        battle_id = self._reconciler.battle_id
        try:
            data = await self._rest.vote(battle_id, amount, target_id)
        except ApiError as exc:
            if exc.status == HTTP_TOO_MANY_REQUESTS:
                wait = self._resync_cooldown(exc)
                self._notify("error", exc.detail or "Too many requests")
                raise RateLimited(exc.detail, wait) from exc
            log.error("Fire failed battle=%s amount=%d status=%d: %s", battle_id, amount, exc.status, exc.detail)
            self._notify("error", exc.detail or "Something went wrong")
            raise RemoteFailure(exc.detail, exc.status) from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            log.error("Fire failed battle=%s amount=%d: %r", battle_id, amount, exc)
            self._notify("error", "Network error")
            raise RemoteFailure(str(exc) or "Network error") from exc

        try:
            outcome = FireOutcome.from_response(amount, data)
        except (KeyError, TypeError, ValueError) as exc:
            log.error("Malformed fire response %r: %s", data, exc)
            self._notify("error", "Unexpected server response")
            raise RemoteFailure("Malformed fire response") from exc

        self._apply_outcome(outcome, battle_id)
        self._notify("success", f"{amount} rocket{'s' if amount != 1 else ''} fired!")
        return outcome

    def _resync_cooldown(self, exc: ApiError) -> int | None:
        """A structured retry_after_seconds wins; otherwise parse the detail text."""
        wait = exc.retry_after if exc.retry_after is not None else parse_retry_after(exc.detail)
        if wait is not None:
            self._cooldown.reset(wait)
            self._bus.publish_limits(self.limits)
            log.warning("Fire rate-limited — cooldown re-synced to %ds", wait)
        else:
            log.warning("Fire rate-limited without a wait time: %s", exc.detail)
        return wait

    def _apply_outcome(self, outcome: FireOutcome, battle_id: str) -> None:
        self._balance = outcome.new_balance
        if outcome.cooldown_seconds is not None:
            self._cooldown.reset(outcome.cooldown_seconds)
        if outcome.remaining_limit is not None:
            self._quota_remaining = outcome.remaining_limit
        if outcome.player1_score is not None or outcome.player2_score is not None:
            if self._reconciler.battle_id == battle_id:
                self._reconciler.overlay_scores(outcome.player1_score, outcome.player2_score)
            else:
                log.info("Fire scores for battle=%s dropped, now tracking %s", battle_id, self._reconciler.battle_id)
        log.info(
            "Fire applied amount=%d balance=%d cooldown=%ds limit=%d",
            outcome.amount, self._balance, self._cooldown.remaining, self._quota_remaining,
        )
        self._bus.publish_limits(self.limits)

    def _notify(self, level, message: str) -> None:
        self._bus.publish_notice(Notice(level=level, message=message))
