"""
Rocket Battle request authentication.

The backend authenticates every request by the raw Telegram WebApp `initData`
string, passed through unchanged in a header. Validating that string is the
server's job; the client only carries it.

Environment variables:
    ROCKET_INIT_DATA — initData as handed to the Mini App by Telegram
"""

from __future__ import annotations
import logging

log = logging.getLogger(__name__)

INIT_DATA_HEADER = "X-Telegram-Init-Data"


class TelegramAuth:
    """
    Builds request headers for the REST client and the websocket handshake.
    An empty initData is allowed (local backends run without auth); every
    request then goes out unauthenticated and the server decides.
    """

    __slots__ = ("_init_data",)

    def __init__(self, init_data: str) -> None:
        self._init_data = init_data
        if not init_data:
            log.warning("TelegramAuth initialized without initData — requests are unauthenticated")
        else:
            log.info("TelegramAuth initialized (initData %d chars)", len(init_data))

    @property
    def is_authenticated(self) -> bool:
        return bool(self._init_data)

    def get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._init_data:
            headers[INIT_DATA_HEADER] = self._init_data
        return headers
