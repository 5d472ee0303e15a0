"""Protocol constants shared by the client and server halves."""

# Protocol version carried in challenges and proofs
X402_VERSION = 2

# HTTP status used for challenges
PAYMENT_REQUIRED_STATUS = 402

# Challenge headers, in lookup priority order
PAYMENT_REQUIRED_HEADER = "Payment-Required"
X_402_HEADER = "x-402"
X_PAYMENT_REQUIRED_HEADER = "x-payment-required"
PAYMENT_REQUIRED_HEADER_ALIASES = (
    PAYMENT_REQUIRED_HEADER,
    X_402_HEADER,
    X_PAYMENT_REQUIRED_HEADER,
)

# Proof header sent on the retried request
X_PAYMENT_HEADER = "X-PAYMENT"

# Settlement / session id response headers, in lookup priority order
UPTO_SESSION_ID_HEADER = "x-upto-session-id"
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"
SETTLEMENT_ID_HEADER_ALIASES = (
    UPTO_SESSION_ID_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
)

# Scheme issued by the paywall (ERC-2612 permit, amount is an upper bound)
SCHEME_UPTO = "upto"

DEFAULT_FACILITATOR_URL = "https://facilitator.daydreams.systems"
DEFAULT_NETWORK = "base"

# USDC has 6 decimals: $1 == 1_000_000 base units
USDC_DECIMALS = 6

ONE_MINUTE_SECONDS = 60
ONE_DAY_MS = 24 * 60 * 60 * 1000
