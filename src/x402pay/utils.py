"""Small helpers for amounts, timestamps and identifiers."""

import secrets
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from x402pay.constants import USDC_DECIMALS

_BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"

# Fixed-width so that lexical order equals chronological order in every backend
_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def usd_to_base_units(usd: str | float | int | Decimal) -> int:
    """Convert a USD amount to USDC base units (6 decimals).

    Args:
        usd: Dollar amount, e.g. 0.05, "1.50" or Decimal("10").

    Returns:
        Amount in base units, rounded to the nearest unit.
    """
    d = Decimal(str(usd)) if isinstance(usd, float) else Decimal(usd)
    return int((d * Decimal(10**USDC_DECIMALS)).to_integral_value())


def format_usd(base_units: int) -> str:
    """Format USDC base units as a dollar string, e.g. 50000 -> "$0.05"."""
    dollars = Decimal(base_units) / Decimal(10**USDC_DECIMALS)
    return f"${dollars:.2f}"


def truncate_address(address: str) -> str:
    """Shorten an address for display, e.g. "0x1234...5678"."""
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_payment_id(prefix: str = "x402") -> str:
    """Generate a record id like ``x402_lx3k9a0b_4f7qz1c2``."""
    timestamp = to_base36(int(time.time() * 1000))
    random = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(8))
    return f"{prefix}_{timestamp}_{random}"


def format_timestamp(moment: datetime) -> str:
    """Render a datetime as the fixed-width UTC string stored in the ledger."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def utc_now_iso() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def window_cutoff(window_ms: int | None) -> str | None:
    """Earliest ``created_at`` included by a time window, or None if unbounded."""
    if window_ms is None:
        return None
    return format_timestamp(datetime.now(timezone.utc) - timedelta(milliseconds=window_ms))
