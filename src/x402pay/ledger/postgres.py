"""PostgreSQL payment ledger backed by an asyncpg pool.

Several agents can share one table; each ledger instance only sees the rows
tagged with its ``agent_id``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import asyncpg

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
CREATE TABLE IF NOT EXISTS x402_payments (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
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
CREATE INDEX IF NOT EXISTS idx_x402_payments_agent_direction ON x402_payments(agent_id, direction);
CREATE INDEX IF NOT EXISTS idx_x402_payments_created_at ON x402_payments(created_at);
CREATE INDEX IF NOT EXISTS idx_x402_payments_counterparty ON x402_payments(counterparty);
CREATE INDEX IF NOT EXISTS idx_x402_payments_status ON x402_payments(status);
"""


def _normalize_dsn(dsn: str) -> str:
    if dsn.startswith("postgres://"):
        return dsn.replace("postgres://", "postgresql://", 1)
    return dsn


class PostgresPaymentLedger(PaymentLedger):
    """Ledger stored in PostgreSQL.

    Args:
        dsn: Connection string, ``postgres://`` or ``postgresql://``.
        agent_id: Partition key for rows written and read by this instance.
        pool: An existing pool to use instead of creating one. A passed-in
            pool is not closed by ``close()``.
    """

    def __init__(
        self,
        dsn: Optional[str] = None,
        agent_id: str = "default",
        pool: Optional[asyncpg.Pool] = None,
        min_size: int = 1,
        max_size: int = 5,
    ) -> None:
        if dsn is None and pool is None:
            raise ValueError("Either dsn or pool is required")
        self._dsn = _normalize_dsn(dsn) if dsn else None
        self._agent_id = agent_id
        self._pool = pool
        self._owns_pool = pool is None
        self._min_size = min_size
        self._max_size = max_size
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def agent_id(self) -> str:
        return self._agent_id

    async def _get_pool(self) -> asyncpg.Pool:
        """Lazy initialization of the pool and schema."""
        if self._initialized and self._pool is not None:
            return self._pool

        async with self._init_lock:
            if self._pool is None:
                self._pool = await asyncpg.create_pool(
                    self._dsn, min_size=self._min_size, max_size=self._max_size
                )
            if not self._initialized:
                async with self._pool.acquire() as conn:
                    await conn.execute(_SCHEMA)
                self._initialized = True
                logger.debug("[x402] Initialized Postgres ledger for agent %s", self._agent_id)
        return self._pool

    def _aggregate_where(
        self,
        direction: PaymentDirection,
        window_ms: Optional[int],
        scope: Optional[str] = None,
    ) -> tuple[str, list[Any]]:
        params: list[Any] = [self._agent_id, direction, list(EXCLUDED_STATUSES)]
        clauses = ["agent_id = $1", "direction = $2", "NOT (status = ANY($3::text[]))"]

        cutoff = window_cutoff(window_ms)
        if cutoff is not None:
            params.append(cutoff)
            clauses.append(f"created_at >= ${len(params)}")
        if scope:
            params.append(scope)
            clauses.append(f"LOWER(counterparty) = LOWER(${len(params)})")
        return " AND ".join(clauses), params

    async def record(self, entry: PaymentRecord) -> None:
        columns = ("agent_id",) + RECORD_COLUMNS
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        sql = f"INSERT INTO x402_payments ({', '.join(columns)}) VALUES ({placeholders})"
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                await conn.execute(sql, self._agent_id, *record_to_row(entry))
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise LedgerWriteError(f"Failed to record payment {entry.id}: {e}") from e

    async def total(
        self,
        direction: PaymentDirection,
        window_ms: Optional[int] = None,
        scope: Optional[str] = None,
    ) -> int:
        where, params = self._aggregate_where(direction, window_ms, scope)
        # NUMERIC keeps arbitrary precision; the result comes back as Decimal
        sql = f"SELECT COALESCE(SUM(amount::numeric), 0) FROM x402_payments WHERE {where}"
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            value = await conn.fetchval(sql, *params)
        return int(value)

    async def count(self, direction: PaymentDirection, window_ms: Optional[int] = None) -> int:
        where, params = self._aggregate_where(direction, window_ms)
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            value = await conn.fetchval(f"SELECT COUNT(*) FROM x402_payments WHERE {where}", *params)
        return int(value)

    async def query(self, filters: Optional[PaymentFilters] = None) -> list[PaymentRecord]:
        params: list[Any] = [self._agent_id]
        clauses, filter_params = sql_filter_clauses(filters, lambda i: f"${i}", start=2)
        params.extend(filter_params)

        sql = "SELECT * FROM x402_payments WHERE " + " AND ".join(["agent_id = $1", *clauses])
        sql += ' ORDER BY created_at COLLATE "C" DESC, id COLLATE "C" DESC'
        if filters and filters.limit is not None:
            params.append(filters.limit)
            sql += f" LIMIT ${len(params)}"
        if filters and filters.offset:
            params.append(filters.offset)
            sql += f" OFFSET ${len(params)}"

        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(sql, *params)
        return [row_to_record(row) for row in rows]

    async def clear(self) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute("DELETE FROM x402_payments WHERE agent_id = $1", self._agent_id)

    async def close(self) -> None:
        if self._pool is not None and self._owns_pool:
            await self._pool.close()
            self._pool = None
            self._initialized = False
