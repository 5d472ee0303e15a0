"""Spend policy evaluation. Checks run in a fixed order and the first violation wins."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Union

from x402pay.ledger.base import PaymentLedger
from x402pay.types import (
    IncomingPaymentRequest,
    OutgoingPaymentRequest,
    PaymentPolicy,
    PaymentPolicyUpdate,
    PolicyResult,
)

logger = logging.getLogger(__name__)

ALLOW = PolicyResult(allowed=True)


def _deny(reason: str) -> PolicyResult:
    logger.warning("[x402] Payment denied by policy: %s", reason)
    return PolicyResult(allowed=False, reason=reason)


def _contains_address(addresses: list[str], address: str) -> bool:
    normalized = address.lower()
    return any(a.lower() == normalized for a in addresses)


class PolicyEngine:
    """Evaluates payments against a ``PaymentPolicy`` and the ledger history.

    Args:
        policy: Initial policy. The engine keeps its own copy.
        ledger: Ledger queried for window totals and counts.
    """

    def __init__(self, policy: PaymentPolicy, ledger: PaymentLedger) -> None:
        self._policy = policy.model_copy(deep=True)
        self._ledger = ledger

    def get_policy(self) -> PaymentPolicy:
        """Return a copy of the current policy; mutating it has no effect."""
        return self._policy.model_copy(deep=True)

    def update_policy(self, update: Union[PaymentPolicyUpdate, Mapping[str, Any]]) -> None:
        """Replace the outgoing and/or incoming limits.

        Each limb present in ``update`` replaces the current limb whole; an
        absent limb is left unchanged.
        """
        if not isinstance(update, PaymentPolicyUpdate):
            update = PaymentPolicyUpdate.model_validate(update)

        if update.outgoing is not None:
            self._policy.outgoing = update.outgoing.model_copy(deep=True)
        if update.incoming is not None:
            self._policy.incoming = update.incoming.model_copy(deep=True)
        logger.info("[x402] Payment policy updated")

    async def evaluate_outgoing(
        self, request: Union[OutgoingPaymentRequest, Mapping[str, Any]]
    ) -> PolicyResult:
        if not isinstance(request, OutgoingPaymentRequest):
            request = OutgoingPaymentRequest.model_validate(request)
        limits = self._policy.outgoing

        if request.amount > limits.max_per_transaction:
            return _deny(
                f"Amount {request.amount} exceeds per-transaction limit of {limits.max_per_transaction}"
            )

        if limits.blocked_recipients and _contains_address(limits.blocked_recipients, request.recipient):
            return _deny(f"Recipient {request.recipient} is blocked")

        if limits.allowed_recipients and not _contains_address(
            limits.allowed_recipients, request.recipient
        ):
            return _deny(f"Recipient {request.recipient} is not in the allow list")

        current_total = await self._ledger.total("outgoing", limits.window_ms)
        if current_total + request.amount > limits.max_total:
            return _deny(
                f"Total spend would be {current_total + request.amount}, "
                f"exceeding window limit of {limits.max_total}"
            )

        current_count = await self._ledger.count("outgoing", limits.window_ms)
        if current_count >= limits.max_transactions:
            return _deny(
                f"Transaction count {current_count} has reached the limit of {limits.max_transactions}"
            )

        return ALLOW

    async def evaluate_incoming(
        self, request: Union[IncomingPaymentRequest, Mapping[str, Any]]
    ) -> PolicyResult:
        if not isinstance(request, IncomingPaymentRequest):
            request = IncomingPaymentRequest.model_validate(request)
        limits = self._policy.incoming

        if request.amount < limits.min_per_transaction:
            return _deny(f"Amount {request.amount} is below minimum of {limits.min_per_transaction}")

        if limits.blocked_senders and _contains_address(limits.blocked_senders, request.sender):
            return _deny(f"Sender {request.sender} is blocked")

        if limits.allowed_senders and not _contains_address(limits.allowed_senders, request.sender):
            return _deny(f"Sender {request.sender} is not in the allow list")

        return ALLOW
