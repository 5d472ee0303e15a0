"""HTTP client for the facilitator's ``/verify`` and ``/settle`` endpoints.

Both calls are single-shot and never raise for HTTP, transport or decode
failures: those come back as ``VerifyResult(valid=False)`` or
``SettleResult(success=False)`` with a reason.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

import httpx
from pydantic import ValidationError

from x402pay.constants import DEFAULT_FACILITATOR_URL
from x402pay.encoding import decode_payment_proof
from x402pay.errors import DecodeError, FacilitatorUnavailableError
from x402pay.types import PaymentRequirement, SettleResult, VerifyResult

logger = logging.getLogger(__name__)


# ============================================================================
# Auth Provider Protocol
# ============================================================================


@dataclass
class AuthHeaders:
    """Authentication headers for facilitator endpoints."""

    verify: dict[str, str] = field(default_factory=dict)
    settle: dict[str, str] = field(default_factory=dict)


class AuthProvider(Protocol):
    """Generates authentication headers for facilitator requests."""

    def get_auth_headers(self) -> AuthHeaders:
        """Get authentication headers for each endpoint."""
        ...


class CreateHeadersAuthProvider:
    """AuthProvider that wraps a ``create_headers`` callable returning
    ``{"verify": {...}, "settle": {...}}``.
    """

    def __init__(self, create_headers: Callable[[], dict[str, dict[str, str]]]) -> None:
        self._create_headers = create_headers

    def get_auth_headers(self) -> AuthHeaders:
        result = self._create_headers()
        return AuthHeaders(verify=result.get("verify", {}), settle=result.get("settle", {}))


# ============================================================================
# FacilitatorClient Protocol
# ============================================================================


class FacilitatorClient(Protocol):
    """Verifies and settles payment proofs. Used by ``ServerPaywall``."""

    async def verify(self, proof: str, requirement: PaymentRequirement) -> VerifyResult:
        """Verify a proof. Returns ``valid=False`` on any failure."""
        ...

    async def settle(self, proof: str, requirement: PaymentRequirement) -> SettleResult:
        """Settle a proof. Returns ``success=False`` on any failure."""
        ...


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class FacilitatorConfig:
    """Configuration for HTTP facilitator client."""

    url: str = DEFAULT_FACILITATOR_URL
    timeout: float = 30.0
    http_client: Optional[httpx.AsyncClient] = None
    auth_provider: Optional[AuthProvider] = None


def build_request_body(proof: str, requirement: PaymentRequirement) -> dict[str, Any]:
    """Build the ``{paymentPayload, paymentRequirements}`` body for a proof.

    Raises:
        DecodeError: If the proof is neither base64 JSON nor raw JSON.
    """
    return {
        "paymentPayload": decode_payment_proof(proof),
        "paymentRequirements": {
            "scheme": requirement.scheme,
            "network": requirement.network,
            "asset": requirement.asset,
            "amount": requirement.max_amount_required,
            "payTo": requirement.pay_to,
            "maxTimeoutSeconds": requirement.max_timeout_seconds,
            "extra": requirement.extra,
        },
    }


# ============================================================================
# HTTP Facilitator Client
# ============================================================================


class HTTPFacilitatorClient:
    """HTTP-based facilitator client."""

    def __init__(self, config: Optional[FacilitatorConfig] = None) -> None:
        config = config or FacilitatorConfig()

        self._url = config.url.rstrip("/")
        self._timeout = config.timeout
        self._auth_provider = config.auth_provider
        self._http_client = config.http_client
        self._owns_client = config.http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._http_client

    async def aclose(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> HTTPFacilitatorClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    @property
    def url(self) -> str:
        """Get facilitator URL."""
        return self._url

    async def _post(self, endpoint: str, body: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        """POST ``body`` to ``{url}/{endpoint}`` and return the decoded JSON.

        Raises:
            FacilitatorUnavailableError: On transport failure, non-2xx status or
                a body that is not a JSON object.
        """
        request_headers = {"Content-Type": "application/json", **headers}
        try:
            response = await self._get_client().post(
                f"{self._url}/{endpoint}", json=body, headers=request_headers
            )
        except httpx.HTTPError as e:
            raise FacilitatorUnavailableError(f"Facilitator request failed: {e}") from e

        if not response.is_success:
            raise FacilitatorUnavailableError(
                f"Facilitator returned {response.status_code}: {response.text or 'unknown error'}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise FacilitatorUnavailableError(f"Facilitator request failed: invalid JSON response ({e})") from e
        if not isinstance(data, dict):
            raise FacilitatorUnavailableError("Facilitator request failed: response is not a JSON object")
        return data

    async def verify(self, proof: str, requirement: PaymentRequirement) -> VerifyResult:
        """Verify a payment proof with the facilitator.

        Args:
            proof: ``X-PAYMENT`` header value.
            requirement: Requirement the proof must satisfy.

        Returns:
            VerifyResult; ``valid`` is only True when the facilitator says so.
        """
        headers = self._auth_provider.get_auth_headers().verify if self._auth_provider else {}
        try:
            data = await self._post("verify", build_request_body(proof, requirement), headers)
        except DecodeError as e:
            return VerifyResult(valid=False, reason=f"Facilitator request failed: {e}")
        except FacilitatorUnavailableError as e:
            logger.error("[x402] Verification failed: %s", e)
            return VerifyResult(valid=False, reason=str(e))

        try:
            return VerifyResult(
                valid=data.get("isValid") is True,
                payer=data.get("payer"),
                reason=data.get("invalidReason"),
            )
        except ValidationError as e:
            logger.error("[x402] Malformed verify response: %s", e)
            return VerifyResult(valid=False, reason="Facilitator returned a malformed verify response")

    async def settle(self, proof: str, requirement: PaymentRequirement) -> SettleResult:
        """Settle a payment proof with the facilitator.

        Args:
            proof: ``X-PAYMENT`` header value.
            requirement: Requirement the proof was verified against.

        Returns:
            SettleResult with the transaction hash when settlement succeeded.
        """
        headers = self._auth_provider.get_auth_headers().settle if self._auth_provider else {}
        try:
            data = await self._post("settle", build_request_body(proof, requirement), headers)
        except DecodeError as e:
            return SettleResult(success=False, reason=f"Facilitator request failed: {e}")
        except FacilitatorUnavailableError as e:
            logger.error("[x402] Settlement failed: %s", e)
            return SettleResult(success=False, reason=str(e))

        try:
            return SettleResult(
                success=data.get("success") is True,
                tx_hash=data.get("transaction"),
                reason=data.get("errorReason"),
            )
        except ValidationError as e:
            logger.error("[x402] Malformed settle response: %s", e)
            return SettleResult(success=False, reason="Facilitator returned a malformed settle response")


# ============================================================================
# Module-level helpers
# ============================================================================


async def verify_payment_with_facilitator(
    proof: str,
    facilitator_url: str,
    requirement: PaymentRequirement,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> VerifyResult:
    """One-off ``/verify`` call against ``facilitator_url``."""
    async with HTTPFacilitatorClient(FacilitatorConfig(url=facilitator_url, http_client=http_client)) as client:
        return await client.verify(proof, requirement)


async def settle_payment_with_facilitator(
    proof: str,
    facilitator_url: str,
    requirement: PaymentRequirement,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> SettleResult:
    """One-off ``/settle`` call against ``facilitator_url``."""
    async with HTTPFacilitatorClient(FacilitatorConfig(url=facilitator_url, http_client=http_client)) as client:
        return await client.settle(proof, requirement)
