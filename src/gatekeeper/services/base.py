from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Generic, TypeVar

import aiosqlite

T = TypeVar("T")


class BaseService(ABC, Generic[T]):
    """Base class for the SQLite-backed review stores."""

    def __init__(self, sqlite_path: str) -> None:
        self._path = sqlite_path
        self._logger = logging.getLogger(f"gatekeeper.{self.__class__.__name__.lower()}")

    @property
    def path(self) -> str:
        return self._path

    async def init(self) -> None:
        """Create the store's tables if they are missing."""
        async with aiosqlite.connect(self._path) as db:
            await self._create_tables(db)
            await db.commit()

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self._path)

    @abstractmethod
    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        """Create the necessary database tables."""

    @abstractmethod
    def _from_row(self, row: aiosqlite.Row) -> T:
        """Convert a database row to the store's record type."""
