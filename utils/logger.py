"""
Logging setup for the battle client.
Call setup_logging() once at startup in main.py.

Every record carries the battle currently followed (or "-") so that lines
from the socket, the reconciler and the gate can be correlated after a
room switch.
"""

from __future__ import annotations
import logging
import sys
import time

_battle_tag = "-"


def set_battle_tag(battle_id: str | None) -> None:
    global _battle_tag
    _battle_tag = battle_id or "-"


class _BattleFormatter(logging.Formatter):
    """Adds the followed battle and a monotonic ns timestamp to every record."""

    def format(self, record: logging.LogRecord) -> str:
        record.mono_ns = time.monotonic_ns()
        record.battle = _battle_tag
        return super().format(record)


def setup_logging(level: str = "INFO") -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        _BattleFormatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s battle=%(battle)s | mono_ns=%(mono_ns)d | %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    )
    root = logging.getLogger()
    root.setLevel(numeric)
    root.handlers.clear()
    root.addHandler(handler)
    # websockets logs every handshake at INFO
    logging.getLogger("websockets").setLevel(max(numeric, logging.WARNING))
