"""
Rocket Battle REST client.

Single aiohttp.ClientSession shared for all requests.
Profile, room join, battle snapshot and the fire (vote) action all go through
this module. Non-2xx responses raise ApiError carrying the server's `detail`.
"""

from __future__ import annotations
import logging
import time

import aiohttp

from models.errors import ApiError
from rocket.auth import TelegramAuth

log = logging.getLogger(__name__)


class RocketRestClient:
    """
    Async REST client for the Rocket Battle backend.

    Call startup() before use. The session is created once and reused; no
    per-call timeout is added beyond the session's transport timeout.
    """

    def __init__(self, base_url: str, auth: TelegramAuth, timeout_s: float = 10) -> None:
        self._base_url = base_url.rstrip("/")
        self._auth = auth
        self._timeout_s = timeout_s
        self._session: aiohttp.ClientSession | None = None

    async def startup(self) -> None:
        """Must be awaited before any other method."""
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self._timeout_s),
        )
        log.info("Rocket REST client ready base_url=%s", self._base_url)

    async def shutdown(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    async def _request(self, method: str, path: str, json_body: dict | None = None) -> dict:
        assert self._session, "Call startup() first"
        async with self._session.request(
            method, self._url(path), headers=self._auth.get_headers(), json=json_body
        ) as resp:
            if resp.status >= 400:
                detail, retry_after = await _error_detail(resp)
                log.error("[API Error] %s %s -> %d %s", method, path, resp.status, detail)
                raise ApiError(resp.status, detail, retry_after)
            return await resp.json()

    # ------------------------------------------------------------------
    # Public API methods
    # ------------------------------------------------------------------

    async def get_profile(self) -> dict:
        return await self._request("GET", "/api/profile")

    async def join_room(self, invite_code: str) -> dict:
        """Join a room by invite code. Returns the battle payload incl. battle_id."""
        return await self._request("POST", "/api/rooms/join", json_body={"invite_code": invite_code})

    async def get_battle(self, battle_id: str) -> dict:
        return await self._request("GET", f"/api/battles/{battle_id}")

    async def vote(self, battle_id: str, amount: int, target_id: int | None = None) -> dict:
        """
        Fire `amount` rockets in a battle. Returns the authoritative response:
        new_balance plus optional cooldown / limit / score fields.
        """
        body: dict = {"battle_id": battle_id, "amount": amount}
        if target_id is not None:
            body["target_id"] = target_id
        sent_at = time.monotonic_ns()
        resp = await self._request("POST", "/api/vote", json_body=body)
        latency_ms = (time.monotonic_ns() - sent_at) / 1_000_000
        log.info(
            "Vote sent battle=%s amount=%d target=%s latency_ms=%.2f",
            battle_id, amount, target_id, latency_ms,
        )
        return resp


async def _error_detail(resp: aiohttp.ClientResponse) -> tuple[str, int | None]:
    """Pull `detail` (and a structured retry hint, if any) out of an error body."""
    text = await resp.text()
    try:
        data = await resp.json(content_type=None)
    except ValueError:
        return (text or resp.reason or "").strip(), None
    if not isinstance(data, dict):
        return text.strip(), None
    detail = data.get("detail")
    if not isinstance(detail, str):
        detail = text.strip() if detail is None else str(detail)
    retry_after = data.get("retry_after_seconds")
    return detail, int(retry_after) if isinstance(retry_after, (int, float)) else None
