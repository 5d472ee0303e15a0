"""In-memory payment ledger. Records are lost when the process exits."""

from __future__ import annotations

from typing import Optional

from x402pay.ledger.base import PaymentLedger, is_counted, paginate, sort_newest_first
from x402pay.types import PaymentDirection, PaymentFilters, PaymentRecord
from x402pay.utils import window_cutoff


class MemoryPaymentLedger(PaymentLedger):
    """List-backed ledger.

    No method awaits between reading and writing ``_records``, so coroutines
    sharing one instance on an event loop never interleave inside a call.
    """

    def __init__(self) -> None:
        self._records: list[PaymentRecord] = []

    async def record(self, entry: PaymentRecord) -> None:
        # Copy so later mutation of the caller's metadata dict cannot leak in
        self._records.append(entry.model_copy(deep=True))

    def _matching(
        self,
        direction: PaymentDirection,
        window_ms: Optional[int],
        scope: Optional[str] = None,
    ) -> list[PaymentRecord]:
        cutoff = window_cutoff(window_ms)
        scope_lower = scope.lower() if scope else None
        matched = []
        for r in self._records:
            if r.direction != direction:
                continue
            if cutoff is not None and r.created_at < cutoff:
                continue
            if scope_lower is not None and r.counterparty.lower() != scope_lower:
                continue
            if not is_counted(r):
                continue
            matched.append(r)
        return matched

    async def total(
        self,
        direction: PaymentDirection,
        window_ms: Optional[int] = None,
        scope: Optional[str] = None,
    ) -> int:
        return sum((r.amount for r in self._matching(direction, window_ms, scope)), 0)

    async def count(self, direction: PaymentDirection, window_ms: Optional[int] = None) -> int:
        return len(self._matching(direction, window_ms))

    async def query(self, filters: Optional[PaymentFilters] = None) -> list[PaymentRecord]:
        result = list(self._records)

        if filters:
            if filters.direction:
                result = [r for r in result if r.direction == filters.direction]
            if filters.counterparty:
                counterparty = filters.counterparty.lower()
                result = [r for r in result if r.counterparty.lower() == counterparty]
            if filters.status:
                result = [r for r in result if r.status == filters.status]
            if filters.network:
                result = [r for r in result if r.network == filters.network]
            if filters.since:
                result = [r for r in result if r.created_at >= filters.since]
            if filters.until:
                result = [r for r in result if r.created_at <= filters.until]

        return [r.model_copy(deep=True) for r in paginate(sort_newest_first(result), filters)]

    async def clear(self) -> None:
        self._records = []
