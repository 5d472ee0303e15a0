"""Behaviour every ledger backend must share."""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from tests.conftest import TEST_DATABASE_URL
from x402pay.constants import ONE_DAY_MS
from x402pay.ledger.memory import MemoryPaymentLedger
from x402pay.ledger.sqlite import SqlitePaymentLedger
from x402pay.types import PaymentFilters, PaymentRecord
from x402pay.utils import format_timestamp, generate_payment_id, utc_now_iso

ALICE = "0xAaAaAaAaAaAaAaAaAaAaAaAaAaAaAaAaAaAaAaAa"
BOB = "0xBbBbBbBbBbBbBbBbBbBbBbBbBbBbBbBbBbBbBbBb"


def make_record(
    amount: int,
    direction: str = "outgoing",
    counterparty: str = ALICE,
    status: str = "confirmed",
    created_at: str | None = None,
    network: str = "eip155:84532",
    **kwargs,
) -> PaymentRecord:
    return PaymentRecord(
        id=kwargs.pop("id", None) or generate_payment_id(),
        direction=direction,
        counterparty=counterparty,
        amount=amount,
        network=network,
        status=status,
        created_at=created_at or utc_now_iso(),
        **kwargs,
    )


def days_ago(days: float) -> str:
    return format_timestamp(datetime.now(timezone.utc) - timedelta(days=days))


@pytest.fixture(params=["memory", "sqlite", "postgres"])
async def ledger(request, tmp_path):
    if request.param == "memory":
        backend = MemoryPaymentLedger()
    elif request.param == "sqlite":
        backend = SqlitePaymentLedger(tmp_path / "payments.db")
    else:
        if not TEST_DATABASE_URL:
            pytest.skip("X402_TEST_DATABASE_URL not set")
        from x402pay.ledger.postgres import PostgresPaymentLedger

        backend = PostgresPaymentLedger(TEST_DATABASE_URL, agent_id=f"test-{uuid.uuid4().hex}")

    yield backend

    await backend.clear()
    await backend.close()


class TestRecordAndQuery:
    async def test_recorded_entry_is_returned(self, ledger):
        record = make_record(50_000, resource="/premium", tx_hash="0xabc", metadata={"scheme": "upto"})
        await ledger.record(record)

        assert await ledger.query() == [record]

    async def test_newest_first(self, ledger):
        old = make_record(1, created_at=days_ago(2))
        mid = make_record(2, created_at=days_ago(1))
        new = make_record(3)
        for r in (mid, new, old):
            await ledger.record(r)

        assert [r.amount for r in await ledger.query()] == [3, 2, 1]

    async def test_ties_broken_by_id_code_point(self, ledger):
        created_at = days_ago(1)
        suffix = uuid.uuid4().hex
        # "B" < "a" by code point; locale collations put "a" first
        await ledger.record(make_record(1, id=f"B_{suffix}", created_at=created_at))
        await ledger.record(make_record(2, id=f"a_{suffix}", created_at=created_at))

        assert [r.amount for r in await ledger.query()] == [2, 1]

    async def test_limit_and_offset(self, ledger):
        for i in range(5):
            await ledger.record(make_record(i + 1, created_at=days_ago(5 - i)))

        page = await ledger.query(PaymentFilters(limit=2, offset=1))
        assert [r.amount for r in page] == [4, 3]

        assert [r.amount for r in await ledger.query(PaymentFilters(offset=3))] == [2, 1]
        assert await ledger.query(PaymentFilters(limit=0)) == []

    async def test_counterparty_filter_ignores_case(self, ledger):
        await ledger.record(make_record(1, counterparty=ALICE))
        await ledger.record(make_record(2, counterparty=BOB))

        result = await ledger.query(PaymentFilters(counterparty=ALICE.lower()))
        assert [r.amount for r in result] == [1]

    async def test_filters_combine(self, ledger):
        await ledger.record(make_record(1, direction="incoming"))
        await ledger.record(make_record(2, status="failed"))
        await ledger.record(make_record(3, network="eip155:8453"))
        await ledger.record(make_record(4, created_at=days_ago(3)))

        assert [r.amount for r in await ledger.query(PaymentFilters(direction="incoming"))] == [1]
        assert [r.amount for r in await ledger.query(PaymentFilters(status="failed"))] == [2]
        assert [r.amount for r in await ledger.query(PaymentFilters(network="eip155:8453"))] == [3]
        assert [r.amount for r in await ledger.query(PaymentFilters(until=days_ago(2)))] == [4]
        assert len(await ledger.query(PaymentFilters(since=days_ago(1)))) == 3

    async def test_time_bounds_accept_any_iso_offset(self, ledger):
        await ledger.record(make_record(1, created_at="2024-01-01T00:00:00.000000Z"))
        await ledger.record(make_record(2, created_at="2024-01-01T12:00:00.000000Z"))

        # Inclusive bound exactly on the first record, written with an offset
        until = await ledger.query(PaymentFilters(until="2024-01-01T00:00:00+00:00"))
        # 13:00 in UTC+2 is 11:00 UTC
        since = await ledger.query(PaymentFilters(since="2024-01-01T13:00:00+02:00"))

        assert [r.amount for r in until] == [1]
        assert [r.amount for r in since] == [2]

    async def test_clear(self, ledger):
        await ledger.record(make_record(1))
        await ledger.clear()

        assert await ledger.query() == []
        assert await ledger.total("outgoing") == 0


class TestAggregates:
    async def test_total_excludes_failed_and_refunded(self, ledger):
        await ledger.record(make_record(100, status="confirmed"))
        await ledger.record(make_record(200, status="pending"))
        await ledger.record(make_record(400, status="failed"))
        await ledger.record(make_record(800, status="refunded"))

        assert await ledger.total("outgoing") == 300
        assert await ledger.count("outgoing") == 2

    async def test_direction_is_separate(self, ledger):
        await ledger.record(make_record(100, direction="outgoing"))
        await ledger.record(make_record(7, direction="incoming"))

        assert await ledger.total("outgoing") == 100
        assert await ledger.total("incoming") == 7
        assert await ledger.count("incoming") == 1

    async def test_window(self, ledger):
        await ledger.record(make_record(100, created_at=days_ago(2)))
        await ledger.record(make_record(10))

        assert await ledger.total("outgoing", ONE_DAY_MS) == 10
        assert await ledger.count("outgoing", ONE_DAY_MS) == 1
        assert await ledger.total("outgoing") == 110

    async def test_zero_window_excludes_past_records(self, ledger):
        await ledger.record(make_record(100, created_at=days_ago(0.001)))

        assert await ledger.total("outgoing", 0) == 0
        assert await ledger.count("outgoing", 0) == 0

    async def test_scope_ignores_case(self, ledger):
        await ledger.record(make_record(100, counterparty=ALICE))
        await ledger.record(make_record(5, counterparty=BOB))

        assert await ledger.total("outgoing", scope=ALICE.upper().replace("0X", "0x")) == 100
        assert await ledger.total("outgoing", ONE_DAY_MS, BOB.lower()) == 5

    async def test_amounts_beyond_float_range_are_exact(self, ledger):
        big = 2**53 + 1
        huge = 2**64 + 7
        await ledger.record(make_record(big))
        await ledger.record(make_record(huge))

        assert await ledger.total("outgoing") == big + huge
        assert sorted(r.amount for r in await ledger.query()) == [big, huge]


class TestConcurrentWriters:
    async def test_parallel_records_are_all_counted(self, ledger):
        n = 50
        await asyncio.gather(*(ledger.record(make_record(i + 1)) for i in range(n)))

        assert await ledger.count("outgoing") == n
        assert await ledger.total("outgoing") == n * (n + 1) // 2
        assert len(await ledger.query()) == n
