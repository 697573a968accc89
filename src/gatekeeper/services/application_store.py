from __future__ import annotations

import uuid
from typing import Optional

import aiosqlite

from ..review.models import (
    Application,
    ApplicationBlocked,
    ApplicationStatus,
)
from .base import BaseService
from .timeutil import now_iso

_COLUMNS = (
    "id, guild_id, user_id, status, permanently_rejected, permanent_reject_at, "
    "resolver_id, resolution_reason, created_at, submitted_at, updated_at, resolved_at"
)


class ApplicationStore(BaseService[Application]):
    """Reads over the application relation plus the submission entry point.

    Status changes after submission belong to the transition engine; the
    ``*_in`` helpers take the engine's open transaction.
    """

    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS application (
              id TEXT PRIMARY KEY,
              guild_id INTEGER NOT NULL,
              user_id INTEGER NOT NULL,
              status TEXT NOT NULL DEFAULT 'draft',
              permanently_rejected INTEGER NOT NULL DEFAULT 0,
              permanent_reject_at TEXT,
              resolver_id INTEGER,
              resolution_reason TEXT,
              created_at TEXT NOT NULL,
              submitted_at TEXT,
              updated_at TEXT,
              resolved_at TEXT
            )
            """
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_application_guild_user ON application(guild_id, user_id, created_at)"
        )

    def _from_row(self, row: aiosqlite.Row) -> Application:
        return Application(
            id=str(row["id"]),
            guild_id=int(row["guild_id"]),
            user_id=int(row["user_id"]),
            status=ApplicationStatus(row["status"]),
            permanently_rejected=bool(row["permanently_rejected"]),
            permanent_reject_at=row["permanent_reject_at"],
            resolver_id=(int(row["resolver_id"]) if row["resolver_id"] is not None else None),
            resolution_reason=row["resolution_reason"],
            created_at=str(row["created_at"]),
            submitted_at=row["submitted_at"],
            updated_at=row["updated_at"],
            resolved_at=row["resolved_at"],
        )

    async def load_application(self, app_id: str) -> Optional[Application]:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(f"SELECT {_COLUMNS} FROM application WHERE id = ?", (app_id,)) as cur:
                row = await cur.fetchone()
        return self._from_row(row) if row else None

    async def find_pending_application(self, guild_id: int, user_id: int) -> Optional[Application]:
        """Most recent submitted or needs_info application of a user in a guild."""
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"""
                SELECT {_COLUMNS} FROM application
                WHERE guild_id = ? AND user_id = ? AND status IN (?, ?)
                ORDER BY created_at DESC, rowid DESC
                LIMIT 1
                """,
                (int(guild_id), int(user_id), ApplicationStatus.SUBMITTED.value, ApplicationStatus.NEEDS_INFO.value),
            ) as cur:
                row = await cur.fetchone()
        return self._from_row(row) if row else None

    async def is_permanently_rejected(self, guild_id: int, user_id: int) -> bool:
        async with self._connect() as db:
            async with db.execute(
                "SELECT 1 FROM application WHERE guild_id = ? AND user_id = ? AND permanently_rejected = 1 LIMIT 1",
                (int(guild_id), int(user_id)),
            ) as cur:
                return await cur.fetchone() is not None

    async def create(
        self,
        guild_id: int,
        user_id: int,
        *,
        status: ApplicationStatus = ApplicationStatus.SUBMITTED,
        app_id: Optional[str] = None,
    ) -> Application:
        app_id = app_id or uuid.uuid4().hex
        now = now_iso()
        submitted_at = None if status == ApplicationStatus.DRAFT else now
        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO application (id, guild_id, user_id, status, created_at, submitted_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (app_id, int(guild_id), int(user_id), status.value, now, submitted_at, now),
            )
            await db.commit()
        self._logger.info("Created application %s (guild=%s user=%s status=%s)", app_id, guild_id, user_id, status.value)
        return Application(
            id=app_id,
            guild_id=int(guild_id),
            user_id=int(user_id),
            status=status,
            permanently_rejected=False,
            created_at=now,
            submitted_at=submitted_at,
            updated_at=now,
        )

    async def submit(self, guild_id: int, user_id: int) -> Application:
        """Submit a new application, reusing the user's pending one if present."""
        if await self.is_permanently_rejected(guild_id, user_id):
            raise ApplicationBlocked(guild_id, user_id)
        pending = await self.find_pending_application(guild_id, user_id)
        if pending is not None:
            return pending
        return await self.create(guild_id, user_id)

    # Transaction-scoped helpers

    async def status_in(self, db: aiosqlite.Connection, app_id: str) -> Optional[ApplicationStatus]:
        async with db.execute("SELECT status FROM application WHERE id = ?", (app_id,)) as cur:
            row = await cur.fetchone()
        return ApplicationStatus(row[0]) if row else None

    async def resolve_in(
        self,
        db: aiosqlite.Connection,
        app_id: str,
        status: ApplicationStatus,
        *,
        resolver_id: int,
        reason: Optional[str],
        permanent: bool = False,
    ) -> None:
        now = now_iso()
        # permanently_rejected only ever moves 0 -> 1
        await db.execute(
            """
            UPDATE application
            SET status = ?,
                updated_at = ?,
                resolved_at = ?,
                resolver_id = ?,
                resolution_reason = ?,
                permanently_rejected = CASE WHEN ? = 1 THEN 1 ELSE permanently_rejected END,
                permanent_reject_at = CASE WHEN ? = 1 THEN ? ELSE permanent_reject_at END
            WHERE id = ?
            """,
            (status.value, now, now, int(resolver_id), reason, int(permanent), int(permanent), now, app_id),
        )

    async def set_pending_status_in(self, db: aiosqlite.Connection, app_id: str, status: ApplicationStatus) -> None:
        now = now_iso()
        if status == ApplicationStatus.SUBMITTED:
            await db.execute(
                "UPDATE application SET status = ?, updated_at = ?, submitted_at = ? WHERE id = ?",
                (status.value, now, now, app_id),
            )
        else:
            await db.execute(
                "UPDATE application SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, now, app_id),
            )
