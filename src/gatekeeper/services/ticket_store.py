from __future__ import annotations

from typing import Optional

import aiosqlite

from ..interfaces import SupportTicket
from .base import BaseService
from .timeutil import now_iso


class TicketStore(BaseService[SupportTicket]):
    """SQLite-backed support tickets; implements :class:`TicketGateway`."""

    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS support_ticket (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              guild_id INTEGER NOT NULL,
              user_id INTEGER NOT NULL,
              status TEXT NOT NULL DEFAULT 'open',
              close_reason TEXT,
              created_at TEXT NOT NULL,
              closed_at TEXT
            )
            """
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_support_ticket_user ON support_ticket(guild_id, user_id, status)"
        )

    def _from_row(self, row: aiosqlite.Row) -> SupportTicket:
        return SupportTicket(
            id=int(row["id"]),
            guild_id=int(row["guild_id"]),
            user_id=int(row["user_id"]),
            status=str(row["status"]),
            created_at=str(row["created_at"]),
            closed_at=row["closed_at"],
            close_reason=row["close_reason"],
        )

    async def open_ticket(self, guild_id: int, user_id: int) -> SupportTicket:
        created_at = now_iso()
        async with self._connect() as db:
            cur = await db.execute(
                "INSERT INTO support_ticket (guild_id, user_id, status, created_at) VALUES (?, ?, 'open', ?)",
                (int(guild_id), int(user_id), created_at),
            )
            await db.commit()
            ticket_id = int(cur.lastrowid)
        return SupportTicket(ticket_id, int(guild_id), int(user_id), "open", created_at)

    async def get(self, ticket_id: int) -> Optional[SupportTicket]:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT * FROM support_ticket WHERE id = ?", (int(ticket_id),)) as cur:
                row = await cur.fetchone()
        return self._from_row(row) if row else None

    async def find_open_ticket(self, guild_id: int, user_id: int) -> Optional[SupportTicket]:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT * FROM support_ticket
                WHERE guild_id = ? AND user_id = ? AND status = 'open'
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                (int(guild_id), int(user_id)),
            ) as cur:
                row = await cur.fetchone()
        return self._from_row(row) if row else None

    async def close_ticket(self, ticket_id: int, reason: str) -> None:
        async with self._connect() as db:
            await db.execute(
                "UPDATE support_ticket SET status = 'closed', close_reason = ?, closed_at = ? WHERE id = ? AND status = 'open'",
                (reason, now_iso(), int(ticket_id)),
            )
            await db.commit()
