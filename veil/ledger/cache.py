"""
Veil UTXO Cache

Durable per-owner record storage. The ledger writes the owner's complete
record set after every confirmed transition, so a save that fails is
repaired by the next one.
"""

from __future__ import annotations
import copy
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional

import aiosqlite

from veil.core.types import UTXORecord

if TYPE_CHECKING:
    from veil.node.config import LedgerConfig

logger = logging.getLogger(__name__)


# Schema version for migrations
SCHEMA_VERSION = 1


CREATE_TABLES_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_info (
    key TEXT PRIMARY KEY,
    value TEXT
);

-- UTXO records (one JSON document per record)
CREATE TABLE IF NOT EXISTS utxos (
    id TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    token_id TEXT NOT NULL,
    commitment_handle BLOB NOT NULL,
    is_spent INTEGER NOT NULL DEFAULT 0,
    created_at REAL NOT NULL,
    record TEXT NOT NULL
);

-- Indexes
CREATE INDEX IF NOT EXISTS idx_utxos_owner ON utxos(owner);
CREATE INDEX IF NOT EXISTS idx_utxos_owner_spent ON utxos(owner, is_spent);
"""


class UTXOCache(ABC):
    """Durable storage boundary for UTXO records."""

    @abstractmethod
    async def load(self, owner: str) -> List[UTXORecord]:
        ...

    @abstractmethod
    async def save(self, owner: str, records: List[UTXORecord]) -> None:
        """Replace the owner's stored records with records."""

    @abstractmethod
    async def owners(self) -> List[str]:
        ...

    @abstractmethod
    async def clear(self, owner: str) -> None:
        ...


class MemoryUTXOCache(UTXOCache):
    """Dict-backed cache; stores copies so callers cannot mutate stored state."""

    def __init__(self):
        self._data: Dict[str, List[UTXORecord]] = {}
        self.saves = 0

    async def load(self, owner: str) -> List[UTXORecord]:
        return copy.deepcopy(self._data.get(owner, []))

    async def save(self, owner: str, records: List[UTXORecord]) -> None:
        self._data[owner] = copy.deepcopy(list(records))
        self.saves += 1

    async def owners(self) -> List[str]:
        return sorted(self._data)

    async def clear(self, owner: str) -> None:
        self._data.pop(owner, None)


class SQLiteUTXOCache(UTXOCache):
    """
    aiosqlite-backed cache.

    Example:
        async with SQLiteUTXOCache("data/utxos.db") as cache:
            await cache.save(owner, records)
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Open database connection and initialize schema."""
        if self._conn is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(self.db_path)
        await self._conn.executescript(CREATE_TABLES_SQL)
        await self._conn.execute(
            "INSERT OR REPLACE INTO schema_info (key, value) VALUES (?, ?)",
            ("version", str(SCHEMA_VERSION))
        )
        await self._conn.commit()

        logger.info(f"UTXO cache opened: {self.db_path}")

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> "SQLiteUTXOCache":
        await self.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _db(self) -> aiosqlite.Connection:
        if self._conn is None:
            await self.connect()
        return self._conn

    async def load(self, owner: str) -> List[UTXORecord]:
        db = await self._db()
        async with db.execute(
            "SELECT record FROM utxos WHERE owner = ? ORDER BY created_at, id",
            (owner,)
        ) as cursor:
            rows = await cursor.fetchall()
        return [UTXORecord.from_dict(json.loads(row[0])) for row in rows]

    async def save(self, owner: str, records: List[UTXORecord]) -> None:
        db = await self._db()
        try:
            await db.execute("DELETE FROM utxos WHERE owner = ?", (owner,))
            await db.executemany(
                "INSERT INTO utxos (id, owner, token_id, commitment_handle, is_spent, created_at, record) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        r.id,
                        owner,
                        r.token_id,
                        r.commitment_handle,
                        int(r.is_spent),
                        r.created_at,
                        json.dumps(r.to_dict()),
                    )
                    for r in records
                ]
            )
            await db.commit()
        except aiosqlite.Error:
            await db.rollback()
            raise
        logger.debug(f"Saved {len(records)} records for {owner[:16]}")

    async def owners(self) -> List[str]:
        db = await self._db()
        async with db.execute("SELECT DISTINCT owner FROM utxos ORDER BY owner") as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def clear(self, owner: str) -> None:
        db = await self._db()
        await db.execute("DELETE FROM utxos WHERE owner = ?", (owner,))
        await db.commit()


def cache_from_config(config: LedgerConfig) -> UTXOCache:
    """SQLite cache at config.db_path when storage.persist is set, else in-memory."""
    if config.storage.persist:
        return SQLiteUTXOCache(str(config.db_path))
    return MemoryUTXOCache()
