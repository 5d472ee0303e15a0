"""SQLite payment ledger.

The sqlite3 driver is blocking, so every call runs in a worker thread and a
lock serialises access to the shared connection.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional, Union

from x402pay.errors import LedgerWriteError
from x402pay.ledger.base import (
    RECORD_COLUMNS,
    PaymentLedger,
    record_to_row,
    row_to_record,
    sql_filter_clauses,
)
from x402pay.types import EXCLUDED_STATUSES, PaymentDirection, PaymentFilters, PaymentRecord
from x402pay.utils import window_cutoff

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS payments (
    id TEXT PRIMARY KEY,
    direction TEXT NOT NULL,
    counterparty TEXT NOT NULL,
    amount TEXT NOT NULL,
    network TEXT NOT NULL,
    tx_hash TEXT NOT NULL DEFAULT '',
    resource TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_payments_direction ON payments(direction);
CREATE INDEX IF NOT EXISTS idx_payments_created_at ON payments(created_at);
CREATE INDEX IF NOT EXISTS idx_payments_counterparty ON payments(counterparty);
CREATE INDEX IF NOT EXISTS idx_payments_status ON payments(status);
"""

_INSERT = (
    f"INSERT INTO payments ({', '.join(RECORD_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in RECORD_COLUMNS)})"
)


class SqlitePaymentLedger(PaymentLedger):
    """Ledger stored in a SQLite file (or ``:memory:``)."""

    def __init__(self, path: Union[str, Path] = "x402-payments.db") -> None:
        self._path = str(path)
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = sqlite3.connect(
            self._path, check_same_thread=False
        )
        self._conn.row_factory = sqlite3.Row
        if self._path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()
        logger.debug("[x402] Opened SQLite ledger at %s", self._path)

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Ledger is closed")
        return self._conn

    def _fetch(self, sql: str, params: list[Any]) -> list[sqlite3.Row]:
        with self._lock:
            return self._connection().execute(sql, params).fetchall()

    def _insert(self, entry: PaymentRecord) -> None:
        with self._lock:
            conn = self._connection()
            try:
                conn.execute(_INSERT, record_to_row(entry))
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise LedgerWriteError(f"Failed to record payment {entry.id}: {e}") from e

    def _aggregate_where(
        self,
        direction: PaymentDirection,
        window_ms: Optional[int],
        scope: Optional[str] = None,
    ) -> tuple[str, list[Any]]:
        clauses = ["direction = ?", f"status NOT IN ({', '.join('?' for _ in EXCLUDED_STATUSES)})"]
        params: list[Any] = [direction, *EXCLUDED_STATUSES]

        cutoff = window_cutoff(window_ms)
        if cutoff is not None:
            clauses.append("created_at >= ?")
            params.append(cutoff)
        if scope:
            clauses.append("LOWER(counterparty) = LOWER(?)")
            params.append(scope)
        return " AND ".join(clauses), params

    async def record(self, entry: PaymentRecord) -> None:
        await asyncio.to_thread(self._insert, entry)

    async def total(
        self,
        direction: PaymentDirection,
        window_ms: Optional[int] = None,
        scope: Optional[str] = None,
    ) -> int:
        where, params = self._aggregate_where(direction, window_ms, scope)
        # Amounts are TEXT; summing in SQL would coerce them to REAL
        rows = await asyncio.to_thread(self._fetch, f"SELECT amount FROM payments WHERE {where}", params)
        return sum((int(row["amount"]) for row in rows), 0)

    async def count(self, direction: PaymentDirection, window_ms: Optional[int] = None) -> int:
        where, params = self._aggregate_where(direction, window_ms)
        rows = await asyncio.to_thread(
            self._fetch, f"SELECT COUNT(*) AS n FROM payments WHERE {where}", params
        )
        return int(rows[0]["n"])

    async def query(self, filters: Optional[PaymentFilters] = None) -> list[PaymentRecord]:
        clauses, params = sql_filter_clauses(filters, lambda _: "?")
        sql = "SELECT * FROM payments"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, id DESC"

        limit = filters.limit if filters else None
        offset = filters.offset if filters else None
        if limit is not None or offset:
            sql += " LIMIT ? OFFSET ?"
            params.extend([-1 if limit is None else limit, offset or 0])

        rows = await asyncio.to_thread(self._fetch, sql, params)
        return [row_to_record(row) for row in rows]

    def _clear(self) -> None:
        with self._lock:
            conn = self._connection()
            conn.execute("DELETE FROM payments")
            conn.commit()

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear)

    async def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
