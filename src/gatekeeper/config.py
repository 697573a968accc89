from __future__ import annotations

import os
from dataclasses import dataclass

from .constants import CACHE_TTL_SECONDS, DEFAULT_HISTORY_LIMIT, FLOW_TIMEOUT_MS


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _get_str(name: str, default: str) -> str:
    return os.getenv(name, default).strip() or default


@dataclass(frozen=True)
class Settings:
    token: str
    sync_guild_id: int
    sqlite_path: str
    log_level: str
    cache_default_ttl_seconds: int
    queue_max_batch: int
    queue_every_ms: int
    queue_max_size: int
    # Upper bound for every DM / welcome / role side effect.
    notify_timeout_ms: int = FLOW_TIMEOUT_MS
    sqlite_busy_timeout_ms: int = 5_000
    history_limit: int = DEFAULT_HISTORY_LIMIT
    log_file: str = ""
    message_content_intent: bool = False

    @property
    def notify_timeout_seconds(self) -> float:
        return max(1, self.notify_timeout_ms) / 1000.0


def load_settings(*, require_token: bool = True) -> Settings:
    token = os.getenv("DISCORD_TOKEN", "").strip()
    if require_token and not token:
        raise RuntimeError("DISCORD_TOKEN is required")
    return Settings(
        token=token,
        sync_guild_id=_get_int("SYNC_GUILD_ID", 0),
        sqlite_path=_get_str("SQLITE_PATH", "gatekeeper.sqlite3"),
        log_level=_get_str("LOG_LEVEL", "INFO"),
        cache_default_ttl_seconds=_get_int("CACHE_DEFAULT_TTL_SECONDS", CACHE_TTL_SECONDS),
        queue_max_batch=_get_int("QUEUE_MAX_BATCH", 4),
        queue_every_ms=_get_int("QUEUE_EVERY_MS", 100),
        queue_max_size=_get_int("QUEUE_MAX_SIZE", 10_000),
        notify_timeout_ms=_get_int("NOTIFY_TIMEOUT_MS", FLOW_TIMEOUT_MS),
        sqlite_busy_timeout_ms=_get_int("SQLITE_BUSY_TIMEOUT_MS", 5_000),
        history_limit=_get_int("HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT),
        log_file=os.getenv("LOG_FILE", "").strip(),
        message_content_intent=_get_bool("MESSAGE_CONTENT_INTENT", False),
    )
