"""
Environment-based configuration.
The auth credential comes from the environment — never hardcoded.

Usage:
    from config.settings import settings
    print(settings.api_base)
"""

from __future__ import annotations
import os
from dataclasses import dataclass


def _require(key: str) -> str:
    val = os.environ.get(key)
    if not val:
        raise EnvironmentError(f"Required environment variable '{key}' is not set.")
    return val


def _optional(key: str, default: str = "") -> str:
    return os.environ.get(key, default)


def ws_base_from_api(api_base: str) -> str:
    """https://host/ -> wss://host, http://host -> ws://host."""
    base = api_base.rstrip("/")
    if base.startswith("https://"):
        return "wss://" + base[len("https://"):]
    if base.startswith("http://"):
        return "ws://" + base[len("http://"):]
    return base


@dataclass(frozen=True)
class Settings:
    # --- Backend ---
    api_base: str                  # e.g. https://rocket-battle.example.com
    ws_base: str                   # e.g. wss://rocket-battle.example.com
    init_data: str                 # Telegram WebApp initData, sent verbatim on every request

    # --- Push channel ---
    reconnect_delay_s: float       # Fixed delay before each reconnect attempt
    heartbeat_interval_s: float    # Keep-alive ping interval while the socket is open

    # --- Timers ---
    tick_interval_s: float         # Round / cooldown countdown tick

    # --- HTTP ---
    http_timeout_s: float          # Transport timeout for every REST call

    # --- Runtime ---
    invite_code: str               # Room to join at startup (empty = none)
    log_level: str


def load_settings() -> Settings:
    api_base = _require("ROCKET_API_BASE").rstrip("/")
    return Settings(
        api_base=api_base,
        ws_base=_optional("ROCKET_WS_BASE") or ws_base_from_api(api_base),
        init_data=_optional("ROCKET_INIT_DATA"),
        reconnect_delay_s=float(_optional("ROCKET_RECONNECT_DELAY_S", "3")),
        heartbeat_interval_s=float(_optional("ROCKET_HEARTBEAT_INTERVAL_S", "25")),
        tick_interval_s=float(_optional("ROCKET_TICK_INTERVAL_S", "1")),
        http_timeout_s=float(_optional("ROCKET_HTTP_TIMEOUT_S", "10")),
        invite_code=_optional("ROCKET_INVITE_CODE"),
        log_level=_optional("ROCKET_LOG_LEVEL", "INFO"),
    )


# Module-level singleton, loaded once at startup
settings = load_settings()
