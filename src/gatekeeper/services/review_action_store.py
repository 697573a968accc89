from __future__ import annotations

import json
import time
from typing import Any, Optional

import aiosqlite

from ..constants import MAX_HISTORY_LIMIT
from ..review.models import ReviewAction
from .base import BaseService


class ReviewActionStore(BaseService[ReviewAction]):
    """Append-only audit trail of review actions.

    Rows are inserted inside the transition's transaction. The only update
    allowed afterwards is attaching ``meta`` (delivery outcomes etc.).
    """

    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS review_action (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              app_id TEXT NOT NULL,
              moderator_id INTEGER NOT NULL,
              action TEXT NOT NULL,
              reason TEXT,
              meta TEXT,
              created_at INTEGER NOT NULL
            )
            """
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_review_action_app_time ON review_action(app_id, created_at DESC)"
        )

    def _from_row(self, row: aiosqlite.Row) -> ReviewAction:
        return ReviewAction(
            id=int(row["id"]),
            app_id=str(row["app_id"]),
            moderator_id=int(row["moderator_id"]),
            action=str(row["action"]),
            reason=row["reason"],
            meta=(json.loads(row["meta"]) if row["meta"] else None),
            created_at=int(row["created_at"]),
        )

    async def insert_in(
        self,
        db: aiosqlite.Connection,
        *,
        app_id: str,
        moderator_id: int,
        action: str,
        reason: Optional[str],
        created_at: int,
    ) -> int:
        cur = await db.execute(
            """
            INSERT INTO review_action (app_id, moderator_id, action, reason, meta, created_at)
            VALUES (?, ?, ?, ?, NULL, ?)
            """,
            (app_id, int(moderator_id), action, reason, int(created_at)),
        )
        return int(cur.lastrowid)

    async def update_meta(self, action_id: int, meta: dict[str, Any]) -> None:
        meta_json = json.dumps(meta, separators=(",", ":"), ensure_ascii=False)
        async with self._connect() as db:
            await db.execute("UPDATE review_action SET meta = ? WHERE id = ?", (meta_json, int(action_id)))
            await db.commit()

    async def get(self, action_id: int) -> Optional[ReviewAction]:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT * FROM review_action WHERE id = ?", (int(action_id),)) as cur:
                row = await cur.fetchone()
        return self._from_row(row) if row else None

    async def recent_for_app(self, app_id: str, limit: int = 4) -> list[ReviewAction]:
        """Newest-first history of one application."""
        limit = max(1, min(MAX_HISTORY_LIMIT, int(limit)))
        start = time.perf_counter()
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT id, app_id, moderator_id, action, reason, meta, created_at
                FROM review_action
                WHERE app_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (app_id, limit),
            ) as cur:
                rows = await cur.fetchall()
        self._logger.debug(
            "history fetch app=%s limit=%s n=%s ms=%.1f",
            app_id,
            limit,
            len(rows),
            (time.perf_counter() - start) * 1000,
        )
        return [self._from_row(r) for r in rows]

    async def count_for_app(self, app_id: str) -> int:
        async with self._connect() as db:
            async with db.execute("SELECT COUNT(*) FROM review_action WHERE app_id = ?", (app_id,)) as cur:
                row = await cur.fetchone()
        return int(row[0]) if row else 0
