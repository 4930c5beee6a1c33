from __future__ import annotations

import logging
import sqlite3
import threading
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

import pandas as pd

from dexsnap.errors import DuplicateKey, SchemaError, SnapshotError
from dexsnap.models import RejectedPair, TradingPairSnapshot

logger = logging.getLogger(__name__)

PAIRS_TABLE = "uniswapv2_pairs"
REJECTED_TABLE = "rejected_pairs"

# name -> declared type; "id" is the primary key.
PAIRS_COLUMNS: Dict[str, str] = {
    "id": "VARCHAR(42)",
    "token0_symbol": "TEXT",
    "token1_symbol": "TEXT",
    "reserve0": "REAL",
    "reserve1": "REAL",
    "reserve_usd": "REAL",
    "volume_token0": "REAL",
    "volume_token1": "REAL",
    "volume_usd": "REAL",
    "tx_count": "BIGINT",
    "created_at_timestamp": "BIGINT",
}

REJECTED_COLUMNS: Dict[str, str] = {
    "id": "TEXT",
    "error": "TEXT",
    "payload": "TEXT",
}


def _create_table_sql(table: str, columns: Dict[str, str]) -> str:
    lines = [
        f"{name} {decl} NOT NULL PRIMARY KEY" if name == "id" else f"{name} {decl} NOT NULL"
        for name, decl in columns.items()
    ]
    return f"CREATE TABLE IF NOT EXISTS {table} (\n    " + ",\n    ".join(lines) + "\n)"


class PairSnapshotStore(Protocol):
    """Storage contract for one snapshot destination."""

    path: Path

    def reset(self) -> bool: ...

    def initialize(self) -> None: ...

    def append(self, records: Sequence[TradingPairSnapshot]) -> int: ...

    def quarantine(self, rejected: Sequence[RejectedPair]) -> int: ...

    def count(self) -> int: ...

    def close(self) -> None: ...


class SqlitePairStore:
    """SQLite file holding the pairs of a single snapshot height.

    ``append`` is atomic per batch: if any id in the batch collides with a
    stored row or repeats inside the batch, nothing from the batch is kept
    and ``DuplicateKey`` lists every conflicting id.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._conn: Optional[sqlite3.Connection] = None
        self._write_lock = threading.Lock()

    def __enter__(self) -> "SqlitePairStore":
        self.initialize()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise SnapshotError(f"Store at {self.path} is not initialized")
        return self._conn

    def reset(self) -> bool:
        """Delete a previous database for this destination. Returns whether one existed."""
        self.close()
        existed = False
        for candidate in (self.path, *(self.path.with_name(self.path.name + s) for s in ("-journal", "-wal", "-shm"))):
            if candidate.exists():
                candidate.unlink()
                existed = existed or candidate == self.path
        if existed:
            logger.info("Deleted stale snapshot database %s", self.path)
        else:
            logger.info("No previous snapshot database at %s", self.path)
        return existed

    def initialize(self) -> None:
        if self._conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path, check_same_thread=False)
        with self._write_lock, self._conn:
            self._conn.execute(_create_table_sql(PAIRS_TABLE, PAIRS_COLUMNS))
            self._conn.execute(_create_table_sql(REJECTED_TABLE, REJECTED_COLUMNS))
        self._check_schema(PAIRS_TABLE, PAIRS_COLUMNS)
        self._check_schema(REJECTED_TABLE, REJECTED_COLUMNS)
        logger.info("Snapshot store ready at %s", self.path)

    def _check_schema(self, table: str, expected: Dict[str, str]) -> None:
        rows = self.connection.execute(f"PRAGMA table_info({table})").fetchall()
        # (cid, name, type, notnull, default, pk)
        actual = {row[1]: ((row[2] or "").upper(), row[5]) for row in rows}
        wanted = {name: (decl.upper(), 1 if name == "id" else 0) for name, decl in expected.items()}
        if actual != wanted:
            raise SchemaError(
                f"Table {table} in {self.path} has columns {sorted(actual)} "
                f"incompatible with expected {sorted(wanted)}"
            )

    def append(self, records: Sequence[TradingPairSnapshot]) -> int:
        if not records:
            return 0

        rows = [tuple(getattr(r, name) for name in PAIRS_COLUMNS) for r in records]
        placeholders = ", ".join("?" for _ in PAIRS_COLUMNS)
        sql = f"INSERT INTO {PAIRS_TABLE} ({', '.join(PAIRS_COLUMNS)}) VALUES ({placeholders})"
        with self._write_lock:
            try:
                with self.connection:
                    self.connection.executemany(sql, rows)
            except sqlite3.IntegrityError as exc:
                raise DuplicateKey(self._conflicting_ids(records)) from exc

        logger.debug("Persisted %s pairs to %s", len(rows), self.path)
        return len(rows)

    def _conflicting_ids(self, records: Sequence[TradingPairSnapshot]) -> List[str]:
        ids = [r.id for r in records]
        repeated = [key for key, n in Counter(ids).items() if n > 1]
        stored = [
            key
            for key in set(ids)
            if self.connection.execute(f"SELECT 1 FROM {PAIRS_TABLE} WHERE id = ?", (key,)).fetchone()
        ]
        return repeated + stored

    def quarantine(self, rejected: Sequence[RejectedPair]) -> int:
        if not rejected:
            return 0
        rows = [(r.id, r.error, r.payload) for r in rejected]
        with self._write_lock, self.connection:
            self.connection.executemany(
                f"INSERT OR REPLACE INTO {REJECTED_TABLE} (id, error, payload) VALUES (?, ?, ?)", rows
            )
        return len(rows)

    def count(self) -> int:
        return self.connection.execute(f"SELECT COUNT(*) FROM {PAIRS_TABLE}").fetchone()[0]

    def load(self, limit: Optional[int] = None) -> List[TradingPairSnapshot]:
        sql = f"SELECT {', '.join(PAIRS_COLUMNS)} FROM {PAIRS_TABLE} ORDER BY id"
        params: tuple = ()
        if limit:
            sql += " LIMIT ?"
            params = (limit,)
        cursor = self.connection.execute(sql, params)
        return [TradingPairSnapshot(**dict(zip(PAIRS_COLUMNS, row))) for row in cursor.fetchall()]

    def export_csv(self, destination: Path) -> int:
        destination.parent.mkdir(parents=True, exist_ok=True)
        df = pd.read_sql_query(f"SELECT * FROM {PAIRS_TABLE} ORDER BY id", self.connection)
        if df.empty:
            logger.warning("No pairs stored in %s. Nothing to export.", self.path)
            return 0

        df.to_csv(destination, index=False)
        logger.info("Exported %s rows to %s", len(df), destination)
        return len(df)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
