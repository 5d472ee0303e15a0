"""Payment ledger backends.

``PostgresPaymentLedger`` lives in ``x402pay.ledger.postgres`` and needs the
``postgres`` extra (asyncpg).
"""

from x402pay.ledger.base import PaymentLedger
from x402pay.ledger.memory import MemoryPaymentLedger
from x402pay.ledger.sqlite import SqlitePaymentLedger

__all__ = ["MemoryPaymentLedger", "PaymentLedger", "SqlitePaymentLedger"]
