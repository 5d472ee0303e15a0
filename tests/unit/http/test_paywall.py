import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from tests.conftest import PAY_TO
from x402pay.encoding import decode_payment_required_header, safe_base64_decode
from x402pay.errors import LedgerWriteError, UnknownNetworkError
from x402pay.http.facilitator_client import FacilitatorConfig, HTTPFacilitatorClient
from x402pay.http.paywall import ServerPaywall, get_header
from x402pay.ledger.memory import MemoryPaymentLedger
from x402pay.policy.engine import PolicyEngine
from x402pay.types import (
    IncomingLimit,
    OutgoingLimit,
    PaymentPolicy,
    PaywallConfig,
    SettleResult,
    VerifyResult,
)

PAYER = "0x857b06519E91e3A54538791bDbb0E22373e36b66"


class FakeRequest:
    def __init__(self, headers=None, url="/premium"):
        self.headers = headers or {}
        self.url = url


class FakeResponse:
    def __init__(self):
        self.status_code = 200
        self.body: Any = None
        self.headers: dict[str, str] = {}

    def status(self, code):
        self.status_code = code
        return self

    def json(self, body):
        self.body = body

    def set_header(self, name, value):
        self.headers[name] = value
        return self


def make_facilitator(verify=None, settle=None):
    facilitator = MagicMock()
    facilitator.verify = AsyncMock(return_value=verify or VerifyResult(valid=True, payer=PAYER))
    facilitator.settle = AsyncMock(return_value=settle or SettleResult(success=True, tx_hash="0xsettled"))
    return facilitator


@pytest.fixture
def config():
    return PaywallConfig(
        pay_to=PAY_TO,
        network="base-sepolia",
        facilitator_url="https://facilitator.test",
        amount=50_000,
        description="Premium data",
    )


@pytest.fixture
def handler():
    return AsyncMock()


async def call_paywall(paywall, handler, headers=None):
    response = FakeResponse()
    await paywall(FakeRequest(headers), response, handler)
    return response


def test_unknown_network(config):
    with pytest.raises(UnknownNetworkError):
        ServerPaywall(config.model_copy(update={"network": "solana"}), facilitator=make_facilitator())


def test_build_requirement(config, base_sepolia):
    paywall = ServerPaywall(config, facilitator=make_facilitator())

    requirement = paywall.build_requirement("/premium")

    assert requirement.scheme == "upto"
    assert requirement.network == "eip155:84532"
    assert requirement.max_amount_required == "50000"
    assert requirement.asset == base_sepolia["usdc_address"]
    assert requirement.pay_to == PAY_TO
    assert requirement.extra == {"name": "USDC", "version": "2"}


class TestGetHeader:
    def test_case_insensitive(self):
        assert get_header(FakeRequest({"x-payment": "abc"}), "X-PAYMENT") == "abc"

    def test_list_value(self):
        assert get_header(FakeRequest({"X-Payment": ["first", "second"]}), "x-payment") == "first"

    def test_empty_list(self):
        assert get_header(FakeRequest({"X-PAYMENT": []}), "X-PAYMENT") is None

    def test_missing(self):
        assert get_header(FakeRequest({}), "X-PAYMENT") is None


class TestChallenge:
    async def test_no_proof_issues_402(self, config, handler):
        facilitator = make_facilitator()
        paywall = ServerPaywall(config, facilitator=facilitator)

        response = await call_paywall(paywall, handler)

        assert response.status_code == 402
        assert response.body == {"error": "Payment Required", "message": "Premium data", "x402Version": 2}
        assert response.headers["Payment-Required"] == response.headers["x-402"]

        challenge = decode_payment_required_header(response.headers["Payment-Required"])
        assert challenge.x402_version == 2
        (requirement,) = challenge.accepts
        assert requirement.resource == "/premium"
        assert requirement.amount == 50_000

        handler.assert_not_awaited()
        facilitator.verify.assert_not_awaited()

    async def test_challenge_is_camel_case(self, config, handler):
        paywall = ServerPaywall(config, facilitator=make_facilitator())

        response = await call_paywall(paywall, handler)

        data = json.loads(safe_base64_decode(response.headers["x-402"]))
        assert data["x402Version"] == 2
        assert data["accepts"][0]["maxAmountRequired"] == "50000"
        assert data["accepts"][0]["payTo"] == PAY_TO


class TestPaidRequest:
    async def test_valid_payment(self, config, handler):
        ledger = MemoryPaymentLedger()
        facilitator = make_facilitator()
        paywall = ServerPaywall(config, ledger=ledger, facilitator=facilitator)

        response = await call_paywall(paywall, handler, {"X-PAYMENT": "proof"})

        handler.assert_awaited_once()
        assert response.status_code == 200
        assert response.headers["x-upto-session-id"] == "0xsettled"
        assert response.headers["X-PAYMENT-RESPONSE"] == "0xsettled"

        requirement = facilitator.verify.await_args.args[1]
        assert facilitator.verify.await_args.args[0] == "proof"
        assert facilitator.settle.await_args.args == ("proof", requirement)

        (record,) = await ledger.query()
        assert record.direction == "incoming"
        assert record.counterparty == PAYER
        assert record.amount == 50_000
        assert record.status == "confirmed"
        assert record.tx_hash == "0xsettled"
        assert record.network == "eip155:84532"
        assert record.resource == "/premium"
        assert record.id.startswith("x402_in_")

    async def test_sync_handler(self, config):
        calls = []
        paywall = ServerPaywall(config, facilitator=make_facilitator())

        await call_paywall(paywall, lambda: calls.append(1), {"X-PAYMENT": "proof"})

        assert calls == [1]

    async def test_invalid_payment(self, config, handler):
        ledger = MemoryPaymentLedger()
        facilitator = make_facilitator(verify=VerifyResult(valid=False, reason="Signature expired"))
        paywall = ServerPaywall(config, ledger=ledger, facilitator=facilitator)

        response = await call_paywall(paywall, handler, {"x-payment": "proof"})

        assert response.status_code == 402
        assert response.body == {"error": "Payment Invalid", "reason": "Signature expired"}
        handler.assert_not_awaited()
        facilitator.settle.assert_not_awaited()
        assert await ledger.query() == []

    async def test_invalid_payment_without_reason(self, config, handler):
        paywall = ServerPaywall(config, facilitator=make_facilitator(verify=VerifyResult(valid=False)))

        response = await call_paywall(paywall, handler, {"X-PAYMENT": "proof"})

        assert response.body["reason"] == "Payment verification failed"

    async def test_settlement_failure_still_serves(self, config, handler):
        ledger = MemoryPaymentLedger()
        facilitator = make_facilitator(settle=SettleResult(success=False, reason="insufficient_funds"))
        paywall = ServerPaywall(config, ledger=ledger, facilitator=facilitator)

        response = await call_paywall(paywall, handler, {"X-PAYMENT": "proof"})

        handler.assert_awaited_once()
        assert "x-upto-session-id" not in response.headers
        (record,) = await ledger.query()
        assert record.status == "pending"
        assert record.tx_hash == ""

    async def test_no_payer_is_not_recorded(self, config, handler):
        ledger = MemoryPaymentLedger()
        paywall = ServerPaywall(
            config, ledger=ledger, facilitator=make_facilitator(verify=VerifyResult(valid=True))
        )

        await call_paywall(paywall, handler, {"X-PAYMENT": "proof"})

        handler.assert_awaited_once()
        assert await ledger.query() == []

    async def test_ledger_error_callback(self, config, handler):
        ledger = MemoryPaymentLedger()
        ledger.record = AsyncMock(side_effect=LedgerWriteError("disk full"))
        errors = []
        paywall = ServerPaywall(
            config, ledger=ledger, on_ledger_error=errors.append, facilitator=make_facilitator()
        )

        response = await call_paywall(paywall, handler, {"X-PAYMENT": "proof"})

        handler.assert_awaited_once()
        assert response.status_code == 200
        assert len(errors) == 1
        assert isinstance(errors[0], LedgerWriteError)

    async def test_ledger_error_without_callback(self, config, handler):
        ledger = MemoryPaymentLedger()
        ledger.record = AsyncMock(side_effect=LedgerWriteError("disk full"))
        paywall = ServerPaywall(config, ledger=ledger, facilitator=make_facilitator())

        await call_paywall(paywall, handler, {"X-PAYMENT": "proof"})

        handler.assert_awaited_once()


class TestIncomingPolicy:
    def make_engine(self, ledger, **incoming):
        policy = PaymentPolicy(
            outgoing=OutgoingLimit(max_per_transaction=0, max_total=0, window_ms=0, max_transactions=0),
            incoming=IncomingLimit(**incoming),
        )
        return PolicyEngine(policy, ledger)

    async def test_blocked_sender(self, config, handler):
        ledger = MemoryPaymentLedger()
        facilitator = make_facilitator()
        paywall = ServerPaywall(
            config,
            ledger=ledger,
            policy_engine=self.make_engine(ledger, blocked_senders=[PAYER.lower()]),
            facilitator=facilitator,
        )

        response = await call_paywall(paywall, handler, {"X-PAYMENT": "proof"})

        assert response.status_code == 402
        assert response.body["error"] == "Payment Invalid"
        assert "blocked" in response.body["reason"].lower()
        handler.assert_not_awaited()
        facilitator.settle.assert_not_awaited()
        assert await ledger.query() == []

    async def test_below_minimum(self, config, handler):
        ledger = MemoryPaymentLedger()
        paywall = ServerPaywall(
            config,
            ledger=ledger,
            policy_engine=self.make_engine(ledger, min_per_transaction=100_000),
            facilitator=make_facilitator(),
        )

        response = await call_paywall(paywall, handler, {"X-PAYMENT": "proof"})

        assert response.status_code == 402
        handler.assert_not_awaited()

    async def test_allowed_sender(self, config, handler):
        ledger = MemoryPaymentLedger()
        paywall = ServerPaywall(
            config,
            ledger=ledger,
            policy_engine=self.make_engine(ledger, allowed_senders=[PAYER]),
            facilitator=make_facilitator(),
        )

        await call_paywall(paywall, handler, {"X-PAYMENT": "proof"})

        handler.assert_awaited_once()


class TestMalformedFacilitatorReply:
    def make_paywall(self, config, ledger, handler):
        facilitator = HTTPFacilitatorClient(
            FacilitatorConfig(
                url=config.facilitator_url,
                http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            )
        )
        return ServerPaywall(config, ledger=ledger, facilitator=facilitator)

    async def test_malformed_verify_reply_is_rejected(self, config, handler):
        ledger = MemoryPaymentLedger()
        paywall = self.make_paywall(
            config,
            ledger,
            lambda request: httpx.Response(200, json={"isValid": False, "invalidReason": {"code": 7}}),
        )

        response = await call_paywall(paywall, handler, {"X-PAYMENT": "{}"})

        assert response.status_code == 402
        assert response.body == {
            "error": "Payment Invalid",
            "reason": "Facilitator returned a malformed verify response",
        }
        handler.assert_not_awaited()
        assert await ledger.query() == []

    async def test_malformed_settle_reply_leaves_record_pending(self, config, handler):
        ledger = MemoryPaymentLedger()

        def facilitator(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/verify":
                return httpx.Response(200, json={"isValid": True, "payer": PAYER})
            return httpx.Response(200, json={"success": True, "transaction": {"hash": "0xtx"}})

        paywall = self.make_paywall(config, ledger, facilitator)

        response = await call_paywall(paywall, handler, {"X-PAYMENT": "{}"})

        handler.assert_awaited_once()
        assert "x-upto-session-id" not in response.headers
        (record,) = await ledger.query()
        assert record.status == "pending"
