"""Payment ledger contract shared by every storage backend."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from typing_extensions import Self

from x402pay.types import (
    EXCLUDED_STATUSES,
    PaymentDirection,
    PaymentFilters,
    PaymentRecord,
)

# Column order used by the SQL backends
RECORD_COLUMNS = (
    "id",
    "direction",
    "counterparty",
    "amount",
    "network",
    "tx_hash",
    "resource",
    "status",
    "created_at",
    "metadata",
)


class PaymentLedger(ABC):
    """Append-only store of payment records with windowed aggregation.

    Backends must agree exactly:
    - ``window_ms=None`` is unbounded; any integer keeps records with
      ``created_at >= now - window_ms``.
    - ``total`` and ``count`` skip records whose status is failed or refunded.
    - counterparty matching (``scope`` and ``filters.counterparty``) ignores case.
    - ``query`` returns newest first (ties broken by id), then applies
      offset and limit.
    - amounts round-trip as exact integers of any size.
    """

    @abstractmethod
    async def record(self, entry: PaymentRecord) -> None:
        """Append a record.

        Raises:
            LedgerWriteError: If the backend fails to persist it.
        """
        ...

    @abstractmethod
    async def total(
        self,
        direction: PaymentDirection,
        window_ms: Optional[int] = None,
        scope: Optional[str] = None,
    ) -> int:
        """Sum of amounts for a direction, optionally windowed and scoped to a counterparty."""
        ...

    @abstractmethod
    async def count(self, direction: PaymentDirection, window_ms: Optional[int] = None) -> int:
        """Number of counted records for a direction within an optional window."""
        ...

    @abstractmethod
    async def query(self, filters: Optional[PaymentFilters] = None) -> list[PaymentRecord]:
        """Records matching the filters, newest first."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Remove every record."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


def is_counted(record: PaymentRecord) -> bool:
    return record.status not in EXCLUDED_STATUSES


def sort_newest_first(records: list[PaymentRecord]) -> list[PaymentRecord]:
    return sorted(records, key=lambda r: (r.created_at, r.id), reverse=True)


def paginate(records: list[PaymentRecord], filters: Optional[PaymentFilters]) -> list[PaymentRecord]:
    offset = (filters.offset if filters else None) or 0
    limit = filters.limit if filters else None
    if limit is None:
        return records[offset:]
    return records[offset : offset + limit]


def sql_filter_clauses(
    filters: Optional[PaymentFilters],
    placeholder: Callable[[int], str],
    start: int = 1,
) -> tuple[list[str], list[Any]]:
    """Build WHERE fragments for ``PaymentFilters``.

    Args:
        filters: Filters to translate.
        placeholder: Maps a 1-based parameter index to the driver's
            placeholder syntax ("?" for sqlite3, "$n" for asyncpg).
        start: Index of the first parameter.

    Returns:
        (clauses, params)
    """
    clauses: list[str] = []
    params: list[Any] = []
    if filters is None:
        return clauses, params

    def add(fragment: str, value: Any) -> None:
        params.append(value)
        clauses.append(fragment.format(placeholder(start + len(params) - 1)))

    if filters.direction:
        add("direction = {}", filters.direction)
    if filters.counterparty:
        add("LOWER(counterparty) = LOWER({})", filters.counterparty)
    if filters.status:
        add("status = {}", filters.status)
    if filters.network:
        add("network = {}", filters.network)
    if filters.since:
        add("created_at >= {}", filters.since)
    if filters.until:
        add("created_at <= {}", filters.until)
    return clauses, params


def record_to_row(record: PaymentRecord) -> tuple[Any, ...]:
    """Flatten a record for insertion; amount is stored as a decimal string."""
    return (
        record.id,
        record.direction,
        record.counterparty,
        str(record.amount),
        record.network,
        record.tx_hash,
        record.resource,
        record.status,
        record.created_at,
        json.dumps(record.metadata),
    )


def row_to_record(row: Any) -> PaymentRecord:
    """Rebuild a record from a mapping-like database row."""
    raw_metadata = row["metadata"]
    metadata: dict[str, str] = {}
    if isinstance(raw_metadata, dict):
        metadata = raw_metadata
    elif raw_metadata:
        try:
            metadata = json.loads(raw_metadata)
        except ValueError:
            # metadata is display data only
            metadata = {}

    return PaymentRecord(
        id=row["id"],
        direction=row["direction"],
        counterparty=row["counterparty"],
        amount=int(row["amount"]),
        network=row["network"],
        tx_hash=row["tx_hash"],
        resource=row["resource"],
        status=row["status"],
        created_at=row["created_at"],
        metadata=metadata,
    )
