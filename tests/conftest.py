import os

import pytest
from eth_account import Account

from x402pay.ledger.memory import MemoryPaymentLedger
from x402pay.networks import resolve_network
from x402pay.types import (
    IncomingLimit,
    OutgoingLimit,
    PaymentPolicy,
    PaymentRequirement,
)

PAY_TO = "0x209693bc6afc0c5328ba36faf03c514ef312287c"
TEST_DATABASE_URL = os.environ.get("X402_TEST_DATABASE_URL")


@pytest.fixture
def account():
    return Account.create()


@pytest.fixture
def private_key(account):
    return account.key.hex()


@pytest.fixture
def base_sepolia():
    return resolve_network("base-sepolia")


@pytest.fixture
def requirement(base_sepolia):
    return PaymentRequirement(
        scheme="upto",
        network=base_sepolia["caip2"],
        max_amount_required="50000",
        resource="/premium",
        description="Premium data",
        mime_type="application/json",
        pay_to=PAY_TO,
        max_timeout_seconds=60,
        asset=base_sepolia["usdc_address"],
        extra={"name": "USDC", "version": "2"},
    )


@pytest.fixture
def memory_ledger():
    return MemoryPaymentLedger()


def make_policy(
    max_per_transaction: int = 1_000_000,
    max_total: int = 10_000_000,
    window_ms: int = 24 * 60 * 60 * 1000,
    max_transactions: int = 1000,
    **outgoing,
) -> PaymentPolicy:
    return PaymentPolicy(
        outgoing=OutgoingLimit(
            max_per_transaction=max_per_transaction,
            max_total=max_total,
            window_ms=window_ms,
            max_transactions=max_transactions,
            **outgoing,
        ),
        incoming=IncomingLimit(),
    )


@pytest.fixture
def policy():
    return make_policy()
