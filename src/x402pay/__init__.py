"""x402pay: pay-per-request HTTP 402 payments for agents."""

from x402pay.config import X402Settings, get_settings
from x402pay.encoding import (
    decode_payment_proof,
    decode_payment_required_header,
    encode_payment_proof,
    encode_payment_required_header,
)
from x402pay.errors import (
    DecodeError,
    FacilitatorUnavailableError,
    LedgerWriteError,
    ProtocolParseError,
    SigningError,
    UnknownNetworkError,
    X402PayError,
)
from x402pay.http import (
    FacilitatorConfig,
    HTTPFacilitatorClient,
    PaymentInterceptor,
    ServerPaywall,
    settle_payment_with_facilitator,
    verify_payment_with_facilitator,
)
from x402pay.ledger import MemoryPaymentLedger, PaymentLedger, SqlitePaymentLedger
from x402pay.mechanisms.evm import EvmPaymentSigner, StaticNonceReader, Web3NonceReader
from x402pay.networks import NETWORK_REGISTRY, network_key_from_caip2, resolve_network
from x402pay.policy import CircuitBreaker, PolicyEngine, SynchronizedCircuitBreaker
from x402pay.service import X402Service
from x402pay.types import (
    CircuitBreakerConfig,
    IncomingLimit,
    OutgoingLimit,
    PaymentFilters,
    PaymentPolicy,
    PaymentPolicyUpdate,
    PaymentProof,
    PaymentRecord,
    PaymentRequiredResponse,
    PaymentRequirement,
    PaymentSummary,
    PaywallConfig,
    PolicyResult,
    SettleResult,
    VerifyResult,
)
from x402pay.utils import format_usd, generate_payment_id, usd_to_base_units

__all__ = [
    "NETWORK_REGISTRY",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "DecodeError",
    "EvmPaymentSigner",
    "FacilitatorConfig",
    "FacilitatorUnavailableError",
    "HTTPFacilitatorClient",
    "IncomingLimit",
    "LedgerWriteError",
    "MemoryPaymentLedger",
    "OutgoingLimit",
    "PaymentFilters",
    "PaymentInterceptor",
    "PaymentLedger",
    "PaymentPolicy",
    "PaymentPolicyUpdate",
    "PaymentProof",
    "PaymentRecord",
    "PaymentRequiredResponse",
    "PaymentRequirement",
    "PaymentSummary",
    "PaywallConfig",
    "PolicyEngine",
    "PolicyResult",
    "ProtocolParseError",
    "ServerPaywall",
    "SettleResult",
    "SigningError",
    "SqlitePaymentLedger",
    "StaticNonceReader",
    "SynchronizedCircuitBreaker",
    "UnknownNetworkError",
    "VerifyResult",
    "Web3NonceReader",
    "X402PayError",
    "X402Service",
    "X402Settings",
    "decode_payment_proof",
    "decode_payment_required_header",
    "encode_payment_proof",
    "encode_payment_required_header",
    "format_usd",
    "generate_payment_id",
    "get_settings",
    "network_key_from_caip2",
    "resolve_network",
    "settle_payment_with_facilitator",
    "usd_to_base_units",
    "verify_payment_with_facilitator",
]
