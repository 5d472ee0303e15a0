"""httpx wrapper with automatic x402 payment handling.

``PaymentInterceptor`` issues a request and, on a 402 challenge, runs the
payment through policy and circuit breaker, signs a permit, retries with an
``X-PAYMENT`` header and records the outcome in the ledger.

Whenever payment cannot go ahead the caller gets the original 402 response
back; nothing here raises for a payment failure.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, Union

import httpx
from typing_extensions import Self

from x402pay.constants import (
    PAYMENT_REQUIRED_HEADER_ALIASES,
    PAYMENT_REQUIRED_STATUS,
    SETTLEMENT_ID_HEADER_ALIASES,
    X_PAYMENT_HEADER,
)
from x402pay.encoding import decode_payment_required_header
from x402pay.errors import ProtocolParseError, SigningError
from x402pay.ledger.base import PaymentLedger
from x402pay.policy.circuit_breaker import CircuitBreaker, SynchronizedCircuitBreaker
from x402pay.policy.engine import PolicyEngine
from x402pay.types import (
    OutgoingPaymentRequest,
    PaymentRecord,
    PaymentRequiredResponse,
    PaymentRequirement,
)
from x402pay.utils import format_usd, generate_payment_id, truncate_address, utc_now_iso

logger = logging.getLogger(__name__)


class PaymentSigner(Protocol):
    """Produces ``X-PAYMENT`` header values for a requirement."""

    @property
    def address(self) -> str: ...

    @property
    def network_id(self) -> str: ...

    async def build_payment_header(self, requirement: PaymentRequirement) -> str: ...


def parse_payment_required(response: httpx.Response) -> Optional[PaymentRequiredResponse]:
    """Read the challenge from the first alias header that decodes.

    Returns:
        The challenge, or None when no alias header holds a valid one.
    """
    for name in PAYMENT_REQUIRED_HEADER_ALIASES:
        value = response.headers.get(name)
        if not value:
            continue
        try:
            return decode_payment_required_header(value)
        except ProtocolParseError as e:
            logger.debug("[x402] Ignoring undecodable %s header: %s", name, e)
    return None


def select_payment_requirement(
    accepts: list[PaymentRequirement], network_id: str
) -> Optional[PaymentRequirement]:
    """Pick the offer on ``network_id``; never falls back to another chain."""
    for requirement in accepts:
        if requirement.network == network_id:
            return requirement
    return None


def settlement_id_from(response: httpx.Response) -> str:
    for name in SETTLEMENT_ID_HEADER_ALIASES:
        value = response.headers.get(name)
        if value:
            return value
    return ""


class PaymentInterceptor:
    """Pays for 402-guarded resources on behalf of one payer.

    Args:
        signer: Signs permits for the payer's network.
        policy_engine: Spend policy checked before signing.
        circuit_breaker: Rate/anomaly guard checked after policy.
        ledger: Where outgoing payments are recorded.
        http_client: Client used for both the original request and the
            retry. One is created (and owned) when omitted.

    Example:
        ```python
        async with PaymentInterceptor(signer, engine, breaker, ledger) as client:
            response = await client.get("https://api.example.com/data")
        ```
    """

    def __init__(
        self,
        signer: PaymentSigner,
        policy_engine: PolicyEngine,
        circuit_breaker: Union[CircuitBreaker, SynchronizedCircuitBreaker],
        ledger: PaymentLedger,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._signer = signer
        self._policy_engine = policy_engine
        self._circuit_breaker = circuit_breaker
        self._ledger = ledger
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(follow_redirects=True)
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def get(self, url: Union[str, httpx.URL], **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: Union[str, httpx.URL], **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def request(self, method: str, url: Union[str, httpx.URL], **kwargs: Any) -> httpx.Response:
        """Send a request, paying for it if the server answers 402.

        Args:
            method: HTTP method.
            url: Target URL.
            **kwargs: Passed to ``httpx.AsyncClient.request`` for both the
                original request and the retry.

        Returns:
            The retry response when a payment was attempted, otherwise the
            original response.
        """
        client = self._get_client()
        resource = str(url)

        logger.debug("[x402] Making request to %s", resource)
        response = await client.request(method, url, **kwargs)
        if response.status_code != PAYMENT_REQUIRED_STATUS:
            return response

        logger.info("[x402] Received 402 Payment Required from %s", resource)

        payment_required = parse_payment_required(response)
        if payment_required is None:
            logger.error("[x402] Could not parse payment requirement header from 402 response")
            return response
        if not payment_required.accepts:
            logger.error("[x402] No payment options in 402 response")
            return response

        requirement = select_payment_requirement(payment_required.accepts, self._signer.network_id)
        if requirement is None:
            logger.error("[x402] No compatible payment option found for %s", self._signer.network_id)
            return response

        amount = requirement.amount
        logger.info(
            "[x402] Payment required: %s (%s) to %s on %s",
            amount,
            format_usd(amount),
            truncate_address(requirement.pay_to),
            requirement.network,
        )

        policy_result = await self._policy_engine.evaluate_outgoing(
            OutgoingPaymentRequest(amount=amount, recipient=requirement.pay_to, resource=resource)
        )
        if not policy_result.allowed:
            logger.warning("[x402] Payment blocked by policy: %s", policy_result.reason)
            return response

        breaker_result = self._circuit_breaker.check(amount)
        if not breaker_result.allowed:
            logger.warning("[x402] Payment blocked by circuit breaker: %s", breaker_result.reason)
            return response

        try:
            proof = await self._signer.build_payment_header(requirement)
        except SigningError as e:
            logger.error("[x402] Failed to sign payment: %s", e)
            self._circuit_breaker.record_failure()
            return response

        retry_kwargs = dict(kwargs)
        retry_headers = httpx.Headers(kwargs.get("headers"))
        retry_headers[X_PAYMENT_HEADER] = proof
        retry_kwargs["headers"] = retry_headers

        logger.info("[x402] Retrying request with %s header", X_PAYMENT_HEADER)
        try:
            retry_response = await client.request(method, url, **retry_kwargs)
        except httpx.HTTPError as e:
            logger.error("[x402] Retry request failed: %s", e)
            self._circuit_breaker.record_failure()
            return response

        paid = retry_response.is_success
        record = PaymentRecord(
            id=generate_payment_id(),
            direction="outgoing",
            counterparty=requirement.pay_to,
            amount=amount,
            network=requirement.network,
            tx_hash=settlement_id_from(retry_response),
            resource=resource,
            status="confirmed" if paid else "failed",
            created_at=utc_now_iso(),
            metadata={"scheme": requirement.scheme, "description": requirement.description},
        )
        try:
            await self._ledger.record(record)
        except Exception as e:
            logger.error("[x402] Failed to record payment %s: %s", record.id, e)

        if paid:
            self._circuit_breaker.record_success(amount)
            logger.info(
                "[x402] Payment successful: %s to %s",
                format_usd(amount),
                truncate_address(requirement.pay_to),
            )
        else:
            self._circuit_breaker.record_failure()
            logger.warning("[x402] Payment request returned %s after payment", retry_response.status_code)

        return retry_response
