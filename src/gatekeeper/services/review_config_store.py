from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import aiosqlite

from .base import BaseService
from .cache import TTLCache
from .timeutil import now_iso


@dataclass(frozen=True)
class ReviewConfig:
    guild_id: int
    general_channel_id: Optional[int] = None
    welcome_template: Optional[str] = None
    accepted_role_id: Optional[int] = None


class ReviewConfigStore(BaseService[ReviewConfig]):
    """Per-guild welcome channel, welcome template and accepted role."""

    def __init__(self, sqlite_path: str, cache_ttl_seconds: int = 120) -> None:
        super().__init__(sqlite_path)
        self._cache: TTLCache[int, ReviewConfig] = TTLCache(default_ttl_seconds=cache_ttl_seconds)

    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS review_config (
              guild_id INTEGER PRIMARY KEY,
              general_channel_id INTEGER,
              welcome_template TEXT,
              accepted_role_id INTEGER,
              updated_at TEXT NOT NULL
            )
            """
        )

    def _from_row(self, row: aiosqlite.Row) -> ReviewConfig:
        return ReviewConfig(
            guild_id=int(row["guild_id"]),
            general_channel_id=(int(row["general_channel_id"]) if row["general_channel_id"] is not None else None),
            welcome_template=row["welcome_template"],
            accepted_role_id=(int(row["accepted_role_id"]) if row["accepted_role_id"] is not None else None),
        )

    async def get(self, guild_id: int) -> ReviewConfig:
        cached = self._cache.get(int(guild_id))
        if cached is not None:
            return cached
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT guild_id, general_channel_id, welcome_template, accepted_role_id FROM review_config WHERE guild_id = ?",
                (int(guild_id),),
            ) as cur:
                row = await cur.fetchone()
        cfg = self._from_row(row) if row else ReviewConfig(guild_id=int(guild_id))
        self._cache.set(int(guild_id), cfg)
        return cfg

    async def upsert(self, cfg: ReviewConfig) -> None:
        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO review_config (guild_id, general_channel_id, welcome_template, accepted_role_id, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(guild_id) DO UPDATE SET
                    general_channel_id=excluded.general_channel_id,
                    welcome_template=excluded.welcome_template,
                    accepted_role_id=excluded.accepted_role_id,
                    updated_at=excluded.updated_at
                """,
                (int(cfg.guild_id), cfg.general_channel_id, cfg.welcome_template, cfg.accepted_role_id, now_iso()),
            )
            await db.commit()
        self._cache.invalidate(int(cfg.guild_id))
