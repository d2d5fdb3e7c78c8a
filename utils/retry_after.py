"""
Wait-time extraction from rate-limit error text.

The backend reports throttling as HTTP 429 with a human-readable detail such
as "Cooldown active. Retry after 17s". There is no structured field, so the
wait is recovered by finding the first integer immediately followed by "s".

Fallback: no match means None, and callers leave their cooldown unchanged.
This function never raises.
"""

from __future__ import annotations
import re

_WAIT_RE = re.compile(r"(\d+)s")


def parse_retry_after(detail) -> int | None:
    if not isinstance(detail, str):
        return None
    match = _WAIT_RE.search(detail)
    if match is None:
        return None
    return int(match.group(1))
