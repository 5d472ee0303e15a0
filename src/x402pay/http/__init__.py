"""HTTP client, server paywall and facilitator client for x402."""

from x402pay.http.client import PaymentInterceptor, PaymentSigner, parse_payment_required
from x402pay.http.facilitator_client import (
    AuthHeaders,
    AuthProvider,
    CreateHeadersAuthProvider,
    FacilitatorClient,
    FacilitatorConfig,
    HTTPFacilitatorClient,
    settle_payment_with_facilitator,
    verify_payment_with_facilitator,
)
from x402pay.http.paywall import PaywallRequest, PaywallResponse, ServerPaywall

__all__ = [
    "AuthHeaders",
    "AuthProvider",
    "CreateHeadersAuthProvider",
    "FacilitatorClient",
    "FacilitatorConfig",
    "HTTPFacilitatorClient",
    "PaymentInterceptor",
    "PaymentSigner",
    "PaywallRequest",
    "PaywallResponse",
    "ServerPaywall",
    "parse_payment_required",
    "settle_payment_with_facilitator",
    "verify_payment_with_facilitator",
]
