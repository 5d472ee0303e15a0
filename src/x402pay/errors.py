"""Exception types raised across x402pay.

Policy and circuit-breaker denials are not exceptions; they come back as
``PolicyResult`` values. Everything here marks a failure at a component
boundary that the caller is expected to catch and convert.
"""


class X402PayError(Exception):
    """Base class for x402pay errors."""

    pass


class UnknownNetworkError(X402PayError, ValueError):
    """Raised when a network key is not present in the registry."""

    def __init__(self, key: str, supported: list[str]) -> None:
        self.key = key
        self.supported = supported
        super().__init__(f'Unknown network "{key}". Supported: {", ".join(supported)}')


class ProtocolParseError(X402PayError):
    """Raised when a challenge or proof header cannot be parsed."""

    pass


class DecodeError(ProtocolParseError):
    """Raised when a payment proof is neither base64 JSON nor raw JSON."""

    pass


class SigningError(X402PayError):
    """Raised when key material is invalid or typed-data signing fails."""

    pass


class FacilitatorUnavailableError(X402PayError):
    """Raised when the facilitator cannot be reached or answers non-2xx."""

    pass


class LedgerWriteError(X402PayError):
    """Raised when a ledger backend fails to persist a record."""

    pass
