"""Payment service tying signer, ledger, policy and circuit breaker together.

``X402Service`` is the entry point for an agent that both pays for and sells
resources over x402. It reads ``X402Settings``, picks a ledger backend and
exposes the summary, history and policy operations an orchestrator needs.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Any, Mapping, Optional, Union

import httpx

from x402pay.config import X402Settings, get_settings
from x402pay.constants import ONE_DAY_MS
from x402pay.errors import SigningError, UnknownNetworkError
from x402pay.http.client import PaymentInterceptor
from x402pay.http.paywall import LedgerErrorCallback, ServerPaywall
from x402pay.ledger.base import PaymentLedger
from x402pay.ledger.memory import MemoryPaymentLedger
from x402pay.ledger.sqlite import SqlitePaymentLedger
from x402pay.mechanisms.evm.signer import EvmPaymentSigner
from x402pay.networks import resolve_network
from x402pay.policy.circuit_breaker import CircuitBreaker
from x402pay.policy.engine import PolicyEngine
from x402pay.types import (
    CircuitState,
    IncomingLimit,
    OutgoingLimit,
    PaymentFilters,
    PaymentPolicy,
    PaymentPolicyUpdate,
    PaymentRecord,
    PaymentSummary,
    PaywallConfig,
)
from x402pay.utils import usd_to_base_units

logger = logging.getLogger(__name__)

DEFAULT_MAX_TRANSACTIONS = 1000


def build_default_policy(max_payment_usd: float, max_total_usd: float) -> PaymentPolicy:
    """Per-transaction and daily spend caps from USD settings."""
    return PaymentPolicy(
        outgoing=OutgoingLimit(
            max_per_transaction=usd_to_base_units(max_payment_usd),
            max_total=usd_to_base_units(max_total_usd),
            window_ms=ONE_DAY_MS,
            max_transactions=DEFAULT_MAX_TRANSACTIONS,
        ),
        incoming=IncomingLimit(min_per_transaction=0),
    )


class X402Service:
    """x402 payment service for one agent.

    Construct, then ``await start()``. Until started, or when no private key
    is configured, the service is inactive: ``fetch`` sends plain requests
    and nothing is paid.

    Args:
        settings: Settings to use; defaults to ``get_settings()``.
        http_client: Client used for outgoing requests.
    """

    def __init__(
        self,
        settings: Optional[X402Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._http_client = http_client
        self._owns_client = http_client is None

        self._enabled = False
        self._signer: Optional[EvmPaymentSigner] = None
        self._ledger: PaymentLedger = MemoryPaymentLedger()
        self._policy_engine: Optional[PolicyEngine] = None
        self._circuit_breaker = CircuitBreaker()
        self._interceptor: Optional[PaymentInterceptor] = None

    async def start(self) -> None:
        """Initialize the wallet, ledger, policy and interceptor from settings.

        Configuration problems are logged and leave the service inactive.
        """
        settings = self._settings
        private_key = settings.private_key.get_secret_value() if settings.private_key else ""

        if not settings.enabled or not private_key:
            logger.info("[x402] Service inactive: no private key configured or explicitly disabled")
            return

        try:
            resolve_network(settings.network)
        except UnknownNetworkError as e:
            logger.error("[x402] Invalid network configuration: %s", e)
            return

        try:
            self._signer = EvmPaymentSigner(private_key, settings.network)
        except SigningError as e:
            logger.error("[x402] Failed to initialize signer: %s", e)
            return
        logger.info("[x402] Wallet initialized: %s on %s", self._signer.address, settings.network)

        self._ledger = self._select_ledger()
        self._policy_engine = PolicyEngine(
            build_default_policy(settings.max_payment_usd, settings.max_total_usd),
            self._ledger,
        )
        self._circuit_breaker = CircuitBreaker()
        self._interceptor = PaymentInterceptor(
            signer=self._signer,
            policy_engine=self._policy_engine,
            circuit_breaker=self._circuit_breaker,
            ledger=self._ledger,
            http_client=self._get_client(),
        )
        self._enabled = True
        logger.info(
            "[x402] Service active: max per-txn $%s, max daily $%s",
            settings.max_payment_usd,
            settings.max_total_usd,
        )

    def _select_ledger(self) -> PaymentLedger:
        settings = self._settings
        if settings.database_url:
            # asyncpg is an optional extra
            from x402pay.ledger.postgres import PostgresPaymentLedger

            logger.info("[x402] Using PostgreSQL ledger for agent %s", settings.agent_id)
            return PostgresPaymentLedger(settings.database_url, agent_id=settings.agent_id)

        if settings.db_path:
            try:
                ledger = SqlitePaymentLedger(settings.db_path)
            except (OSError, sqlite3.Error) as e:
                logger.warning(
                    "[x402] Failed to initialize SQLite ledger: %s. Falling back to memory ledger.", e
                )
                return MemoryPaymentLedger()
            logger.info("[x402] Using SQLite ledger at %s", settings.db_path)
            return ledger

        logger.info("[x402] Using in-memory ledger (set X402_DB_PATH for persistence)")
        return MemoryPaymentLedger()

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(follow_redirects=True)
        return self._http_client

    async def stop(self) -> None:
        """Deactivate the service and release the ledger and HTTP client."""
        logger.info("[x402] Service stopping")
        self._enabled = False
        self._signer = None
        self._interceptor = None
        await self._ledger.close()
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> X402Service:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()

    # =========================================================================
    # Payments
    # =========================================================================

    async def fetch(self, method: str, url: Union[str, httpx.URL], **kwargs: Any) -> httpx.Response:
        """Send a request, paying for it on 402 when the service is active."""
        if self._interceptor is None:
            return await self._get_client().request(method, url, **kwargs)
        return await self._interceptor.request(method, url, **kwargs)

    def create_paywall(
        self,
        amount: int,
        description: str = "",
        mime_type: str = "application/json",
        max_timeout_seconds: int = 60,
        on_ledger_error: Optional[LedgerErrorCallback] = None,
    ) -> ServerPaywall:
        """Paywall charging ``amount`` base units to this service's ``pay_to``.

        Incoming payments are recorded in the service ledger and checked
        against the incoming policy when the service is active.

        Raises:
            ValueError: If no ``pay_to`` address is configured.
        """
        if not self._settings.pay_to:
            raise ValueError("X402_PAY_TO must be set to create a paywall")

        config = PaywallConfig(
            pay_to=self._settings.pay_to,
            network=self._settings.network,
            facilitator_url=self._settings.facilitator_url,
            amount=amount,
            description=description,
            mime_type=mime_type,
            max_timeout_seconds=max_timeout_seconds,
        )
        return ServerPaywall(
            config,
            ledger=self._ledger,
            on_ledger_error=on_ledger_error,
            policy_engine=self._policy_engine,
        )

    # =========================================================================
    # Reporting
    # =========================================================================

    async def get_summary(self, window_ms: int = ONE_DAY_MS) -> PaymentSummary:
        """Totals and counts for both directions over ``window_ms``."""
        total_spent, total_earned, outgoing_count, incoming_count = await asyncio.gather(
            self._ledger.total("outgoing", window_ms),
            self._ledger.total("incoming", window_ms),
            self._ledger.count("outgoing", window_ms),
            self._ledger.count("incoming", window_ms),
        )
        return PaymentSummary(
            total_spent=total_spent,
            total_earned=total_earned,
            outgoing_count=outgoing_count,
            incoming_count=incoming_count,
            window_ms=window_ms,
        )

    async def get_recent_transactions(self, limit: int = 20) -> list[PaymentRecord]:
        return await self._ledger.query(PaymentFilters(limit=limit))

    # =========================================================================
    # Policy & state
    # =========================================================================

    def update_policy(self, update: Union[PaymentPolicyUpdate, Mapping[str, Any]]) -> None:
        if self._policy_engine is None:
            logger.warning("[x402] Policy update ignored: service is inactive")
            return
        self._policy_engine.update_policy(update)

    def get_policy(self) -> Optional[PaymentPolicy]:
        return self._policy_engine.get_policy() if self._policy_engine else None

    def is_active(self) -> bool:
        return self._enabled and self._signer is not None

    def can_make_payments(self) -> bool:
        return self.is_active() and self._interceptor is not None

    @property
    def wallet_address(self) -> Optional[str]:
        return self._signer.address if self._signer else None

    @property
    def network(self) -> str:
        return self._settings.network

    @property
    def facilitator_url(self) -> str:
        return self._settings.facilitator_url

    @property
    def pay_to(self) -> str:
        return self._settings.pay_to

    @property
    def ledger(self) -> PaymentLedger:
        return self._ledger

    @property
    def circuit_breaker_state(self) -> CircuitState:
        return self._circuit_breaker.state

    def reset_circuit_breaker(self) -> None:
        self._circuit_breaker.reset()
        logger.info("[x402] Circuit breaker reset")
