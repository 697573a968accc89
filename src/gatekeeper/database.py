from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Sequence

import aiosqlite

from .services.base import BaseService

log = logging.getLogger("gatekeeper.database")


async def initialize_database(sqlite_path: str, stores: Sequence[BaseService]) -> None:
    """Apply pragmas and create the tables of every store."""
    try:
        async with aiosqlite.connect(sqlite_path) as db:
            # journal_mode is persistent; the rest are per-connection hints
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA synchronous=NORMAL")
            await db.execute("PRAGMA foreign_keys=ON")
            await db.commit()

        log.info("Applied SQLite pragmas to %s", sqlite_path)

        for store in stores:
            await store.init()
            log.info("Initialized %s", store.__class__.__name__)

        log.info("Database initialization completed")

    except aiosqlite.Error:
        log.exception("Failed to initialize database at %s", sqlite_path)
        raise


@asynccontextmanager
async def atomic(sqlite_path: str, *, busy_timeout_ms: int = 5_000) -> AsyncIterator[aiosqlite.Connection]:
    """Open a write transaction that commits on exit and rolls back on error.

    BEGIN IMMEDIATE takes the reserved lock up front, so the status read and
    the writes that depend on it cannot interleave with another writer.
    """
    async with aiosqlite.connect(sqlite_path, isolation_level=None) as db:
        db.row_factory = aiosqlite.Row
        await db.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        await db.execute("BEGIN IMMEDIATE")
        try:
            yield db
        except BaseException:
            await db.execute("ROLLBACK")
            raise
        else:
            await db.execute("COMMIT")
