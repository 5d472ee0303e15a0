"""Framework-agnostic server paywall.

The paywall works on small request/response protocols so any web framework
can adapt to it; ``x402pay.fastapi`` ships the FastAPI adapter.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Union

from x402pay.constants import (
    PAYMENT_REQUIRED_HEADER,
    PAYMENT_REQUIRED_STATUS,
    SCHEME_UPTO,
    UPTO_SESSION_ID_HEADER,
    X402_VERSION,
    X_402_HEADER,
    X_PAYMENT_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
)
from x402pay.encoding import encode_payment_required_header
from x402pay.http.facilitator_client import FacilitatorClient, FacilitatorConfig, HTTPFacilitatorClient
from x402pay.ledger.base import PaymentLedger
from x402pay.networks import resolve_network
from x402pay.policy.engine import PolicyEngine
from x402pay.types import (
    IncomingPaymentRequest,
    PaymentRecord,
    PaymentRequiredResponse,
    PaymentRequirement,
    PaywallConfig,
)
from x402pay.utils import generate_payment_id, utc_now_iso

logger = logging.getLogger(__name__)


class PaywallRequest(Protocol):
    """Inbound request as seen by the paywall."""

    @property
    def headers(self) -> Mapping[str, Union[str, list[str]]]: ...

    @property
    def url(self) -> str:
        """Path (or URL) of the guarded resource."""
        ...


class PaywallResponse(Protocol):
    """Outbound response the paywall writes to."""

    def status(self, code: int) -> PaywallResponse: ...

    def json(self, body: dict[str, Any]) -> None: ...

    def set_header(self, name: str, value: str) -> PaywallResponse: ...


NextHandler = Callable[[], Union[Awaitable[Any], Any]]
LedgerErrorCallback = Callable[[Exception], None]


def get_header(request: PaywallRequest, name: str) -> Optional[str]:
    """Case-insensitive header lookup; list values yield their first element."""
    lower_name = name.lower()
    for key, value in request.headers.items():
        if key.lower() == lower_name:
            if isinstance(value, list):
                return value[0] if value else None
            return value
    return None


class ServerPaywall:
    """Guards a resource behind an x402 "upto" payment.

    Args:
        config: Price, recipient and facilitator of the paywall.
        ledger: Optional ledger for incoming payments.
        on_ledger_error: Called with the exception when recording fails.
        policy_engine: Optional incoming policy applied to verified payers.
        facilitator: Facilitator client; defaults to an HTTP client for
            ``config.facilitator_url``.

    Raises:
        UnknownNetworkError: If ``config.network`` is not in the registry.
    """

    def __init__(
        self,
        config: PaywallConfig,
        ledger: Optional[PaymentLedger] = None,
        on_ledger_error: Optional[LedgerErrorCallback] = None,
        policy_engine: Optional[PolicyEngine] = None,
        facilitator: Optional[FacilitatorClient] = None,
    ) -> None:
        self._config = config
        self._network_info = resolve_network(config.network)
        self._ledger = ledger
        self._on_ledger_error = on_ledger_error
        self._policy_engine = policy_engine
        self._facilitator = facilitator or HTTPFacilitatorClient(
            FacilitatorConfig(url=config.facilitator_url)
        )

    @property
    def config(self) -> PaywallConfig:
        return self._config

    def build_requirement(self, resource: str) -> PaymentRequirement:
        """Requirement for ``resource`` at the configured price."""
        return PaymentRequirement(
            scheme=SCHEME_UPTO,
            network=self._network_info["caip2"],
            max_amount_required=str(self._config.amount),
            resource=resource,
            description=self._config.description,
            mime_type=self._config.mime_type,
            pay_to=self._config.pay_to,
            max_timeout_seconds=self._config.max_timeout_seconds,
            asset=self._network_info["usdc_address"],
            extra={
                "name": self._network_info["usdc_domain_name"],
                "version": self._network_info["usdc_permit_version"],
            },
        )

    async def __call__(
        self,
        request: PaywallRequest,
        response: PaywallResponse,
        call_next: NextHandler,
    ) -> None:
        resource = request.url or "/"
        requirement = self.build_requirement(resource)
        proof = get_header(request, X_PAYMENT_HEADER)

        if not proof:
            encoded = encode_payment_required_header(PaymentRequiredResponse(accepts=[requirement]))
            response.set_header(PAYMENT_REQUIRED_HEADER, encoded)
            response.set_header(X_402_HEADER, encoded)
            response.status(PAYMENT_REQUIRED_STATUS).json(
                {
                    "error": "Payment Required",
                    "message": self._config.description,
                    "x402Version": X402_VERSION,
                }
            )
            return

        verify_result = await self._facilitator.verify(proof, requirement)
        if not verify_result.valid:
            logger.warning("[x402] Payment verification failed for %s: %s", resource, verify_result.reason)
            self._reject(response, verify_result.reason or "Payment verification failed")
            return

        if self._policy_engine is not None:
            policy_result = await self._policy_engine.evaluate_incoming(
                IncomingPaymentRequest(amount=self._config.amount, sender=verify_result.payer or "")
            )
            if not policy_result.allowed:
                self._reject(response, policy_result.reason)
                return

        settle_result = await self._facilitator.settle(proof, requirement)
        if not settle_result.success:
            # The handler still runs; the record stays pending
            logger.warning("[x402] Settlement failed for %s: %s", resource, settle_result.reason)

        if self._ledger is not None and verify_result.payer:
            await self._record_incoming(
                PaymentRecord(
                    id=generate_payment_id("x402_in"),
                    direction="incoming",
                    counterparty=verify_result.payer,
                    amount=self._config.amount,
                    network=self._network_info["caip2"],
                    tx_hash=settle_result.tx_hash or "",
                    resource=resource,
                    status="confirmed" if settle_result.success else "pending",
                    created_at=utc_now_iso(),
                )
            )

        if settle_result.tx_hash:
            response.set_header(UPTO_SESSION_ID_HEADER, settle_result.tx_hash)
            response.set_header(X_PAYMENT_RESPONSE_HEADER, settle_result.tx_hash)

        logger.info("[x402] Payment accepted for %s from %s", resource, verify_result.payer)
        result = call_next()
        if inspect.isawaitable(result):
            await result

    def _reject(self, response: PaywallResponse, reason: str) -> None:
        response.status(PAYMENT_REQUIRED_STATUS).json({"error": "Payment Invalid", "reason": reason})

    async def _record_incoming(self, record: PaymentRecord) -> None:
        try:
            await self._ledger.record(record)
        except Exception as e:
            if self._on_ledger_error is not None:
                self._on_ledger_error(e)
            else:
                logger.error("[x402] Failed to record incoming payment %s: %s", record.id, e)
