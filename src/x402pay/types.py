"""Data model for the x402 wire protocol, the ledger and spend policy.

All monetary amounts are ``int`` USDC base units (6 decimals, $1 == 1_000_000).
On the wire they travel as decimal strings so that no JSON parser turns them
into floats.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, field_validator
from pydantic.alias_generators import to_camel

from x402pay.constants import X402_VERSION
from x402pay.utils import format_timestamp

PaymentDirection = Literal["outgoing", "incoming"]
PaymentStatus = Literal["pending", "confirmed", "failed", "refunded"]
CircuitState = Literal["closed", "open", "half-open"]

# Statuses that never count towards ledger totals or counts
EXCLUDED_STATUSES: tuple[str, ...] = ("failed", "refunded")


def _validate_integer_string(v: str) -> str:
    try:
        value = int(v)
    except (TypeError, ValueError):
        raise ValueError("amount must be an integer encoded as a string")
    if value < 0:
        raise ValueError("amount must be non-negative")
    return v


# ============================================================================
# Wire protocol
# ============================================================================


class PaymentRequirement(BaseModel):
    """One payment option offered by a server in a 402 challenge."""

    scheme: str
    network: str
    max_amount_required: str
    resource: str = ""
    description: str = ""
    mime_type: str = ""
    pay_to: str
    max_timeout_seconds: int
    asset: str
    extra: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        frozen=True,
    )

    @field_validator("max_amount_required")
    def validate_max_amount_required(cls, v):
        return _validate_integer_string(v)

    @property
    def amount(self) -> int:
        """Maximum payable amount as an integer."""
        return int(self.max_amount_required)


class PaymentRequiredResponse(BaseModel):
    """Decoded content of the ``Payment-Required`` challenge header."""

    x402_version: int = X402_VERSION
    accepts: list[PaymentRequirement] = Field(default_factory=list)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class AcceptedRequirement(BaseModel):
    """Subset of the requirement echoed back inside a proof."""

    scheme: str
    network: str
    asset: str
    amount: str
    pay_to: str

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class PermitAuthorization(BaseModel):
    from_: str = Field(alias="from")
    to: str
    value: str
    valid_before: str
    nonce: str

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    @field_validator("value")
    def validate_value(cls, v):
        return _validate_integer_string(v)


class ProofPayload(BaseModel):
    authorization: PermitAuthorization
    signature: str


class PaymentProof(BaseModel):
    """Versioned envelope carried, base64 encoded, in the ``X-PAYMENT`` header."""

    x402_version: int = X402_VERSION
    accepted: AcceptedRequirement
    payload: ProofPayload

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class PermitSignature(BaseModel):
    """ERC-2612 permit signature components."""

    v: int
    r: str
    s: str


class PermitParams(BaseModel):
    """Parameters for signing an ERC-2612 permit."""

    spender: str
    value: NonNegativeInt
    deadline: NonNegativeInt
    nonce: NonNegativeInt


class VerifyResult(BaseModel):
    """Outcome of a facilitator ``/verify`` call."""

    valid: bool
    payer: Optional[str] = None
    tx_hash: Optional[str] = None
    reason: Optional[str] = None


class SettleResult(BaseModel):
    """Outcome of a facilitator ``/settle`` call."""

    success: bool
    tx_hash: Optional[str] = None
    reason: Optional[str] = None


# ============================================================================
# Ledger
# ============================================================================


class PaymentRecord(BaseModel):
    """A single payment. Append-only: never modified after it is recorded."""

    id: str
    direction: PaymentDirection
    counterparty: str
    amount: NonNegativeInt
    network: str
    tx_hash: str = ""
    resource: str = ""
    status: PaymentStatus
    created_at: str
    metadata: dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class PaymentFilters(BaseModel):
    """Filters for ``PaymentLedger.query``.

    ``since``/``until`` accept any ISO-8601 timestamp and are normalised to UTC.
    """

    direction: Optional[PaymentDirection] = None
    counterparty: Optional[str] = None
    status: Optional[PaymentStatus] = None
    network: Optional[str] = None
    since: Optional[str] = None
    until: Optional[str] = None
    limit: Optional[NonNegativeInt] = None
    offset: Optional[NonNegativeInt] = None

    @field_validator("since", "until")
    def normalize_timestamp(cls, v):
        # Same fixed-width UTC form the ledgers store
        if v is None:
            return v
        moment = datetime.fromisoformat(v[:-1] + "+00:00" if v.endswith("Z") else v)
        return format_timestamp(moment)


class PaymentSummary(BaseModel):
    """Payment activity over a time window."""

    total_spent: int
    total_earned: int
    outgoing_count: int
    incoming_count: int
    window_ms: int


# ============================================================================
# Policy
# ============================================================================


class OutgoingLimit(BaseModel):
    """Limits applied when this agent pays."""

    max_per_transaction: NonNegativeInt
    max_total: NonNegativeInt
    window_ms: NonNegativeInt
    max_transactions: NonNegativeInt
    allowed_recipients: list[str] = Field(default_factory=list)
    blocked_recipients: list[str] = Field(default_factory=list)


class IncomingLimit(BaseModel):
    """Limits applied when this agent gets paid."""

    min_per_transaction: NonNegativeInt = 0
    allowed_senders: list[str] = Field(default_factory=list)
    blocked_senders: list[str] = Field(default_factory=list)


class PaymentPolicy(BaseModel):
    outgoing: OutgoingLimit
    incoming: IncomingLimit = Field(default_factory=IncomingLimit)


class PaymentPolicyUpdate(BaseModel):
    """Partial policy update. Each limb present replaces the current one whole."""

    outgoing: Optional[OutgoingLimit] = None
    incoming: Optional[IncomingLimit] = None


class PolicyResult(BaseModel):
    allowed: bool
    reason: str = ""


class OutgoingPaymentRequest(BaseModel):
    amount: NonNegativeInt
    recipient: str
    resource: str = ""


class IncomingPaymentRequest(BaseModel):
    amount: NonNegativeInt
    sender: str


# ============================================================================
# Circuit breaker & paywall configuration
# ============================================================================


class CircuitBreakerConfig(BaseModel):
    # Payments per rolling minute before tripping
    max_payments_per_minute: int = Field(default=50, ge=1)
    # Trip when a payment exceeds this multiple of the recent average
    anomaly_multiplier: int = Field(default=10, ge=1)
    cooldown_seconds: float = Field(default=60.0, ge=0)
    # Number of recent settled amounts kept for the average
    recent_window_size: int = Field(default=20, ge=1)


class PaywallConfig(BaseModel):
    """Configuration for a ``ServerPaywall``."""

    pay_to: str
    network: str = "base"
    facilitator_url: str
    amount: NonNegativeInt
    description: str = ""
    mime_type: str = "application/json"
    max_timeout_seconds: int = 60
