from __future__ import annotations

from typing import Optional

import aiosqlite

from ..review.models import Claim
from .base import BaseService
from .timeutil import now_iso


class ClaimStore(BaseService[Claim]):
    """One row per claimed application.

    ``acquire_claim`` is a blind upsert: callers run the claim guard first.
    Two callers racing between guard and upsert will overwrite each other,
    which is accepted while a single bot process is the only writer.
    """

    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS review_claim (
              app_id TEXT PRIMARY KEY,
              reviewer_id INTEGER NOT NULL,
              claimed_at TEXT NOT NULL
            )
            """
        )

    def _from_row(self, row: aiosqlite.Row) -> Claim:
        return Claim(app_id=str(row["app_id"]), reviewer_id=int(row["reviewer_id"]), claimed_at=str(row["claimed_at"]))

    async def get_claim(self, app_id: str) -> Optional[Claim]:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            return await self.get_in(db, app_id)

    async def get_review_claim(self, app_id: str) -> Optional[Claim]:
        """Same as :meth:`get_claim`; kept for review-card readers."""
        return await self.get_claim(app_id)

    async def acquire_claim(self, app_id: str, actor_id: int) -> Claim:
        async with self._connect() as db:
            claim = await self.upsert_in(db, app_id, actor_id)
            await db.commit()
        return claim

    async def release_claim(self, app_id: str) -> bool:
        async with self._connect() as db:
            removed = await self.delete_in(db, app_id)
            await db.commit()
        if removed:
            self._logger.info("Released claim on %s", app_id)
        return removed

    # Transaction-scoped helpers

    async def get_in(self, db: aiosqlite.Connection, app_id: str) -> Optional[Claim]:
        async with db.execute(
            "SELECT app_id, reviewer_id, claimed_at FROM review_claim WHERE app_id = ?",
            (app_id,),
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        return Claim(app_id=str(row[0]), reviewer_id=int(row[1]), claimed_at=str(row[2]))

    async def upsert_in(self, db: aiosqlite.Connection, app_id: str, actor_id: int) -> Claim:
        claimed_at = now_iso()
        await db.execute(
            """
            INSERT INTO review_claim (app_id, reviewer_id, claimed_at)
            VALUES (?, ?, ?)
            ON CONFLICT(app_id) DO UPDATE SET
                reviewer_id=excluded.reviewer_id,
                claimed_at=excluded.claimed_at
            """,
            (app_id, int(actor_id), claimed_at),
        )
        return Claim(app_id=app_id, reviewer_id=int(actor_id), claimed_at=claimed_at)

    async def delete_in(self, db: aiosqlite.Connection, app_id: str) -> bool:
        cur = await db.execute("DELETE FROM review_claim WHERE app_id = ?", (app_id,))
        return cur.rowcount > 0
