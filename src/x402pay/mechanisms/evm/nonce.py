"""Sources for the ERC-2612 permit nonce of a token owner."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from eth_utils import to_checksum_address
from web3 import AsyncHTTPProvider, AsyncWeb3

from x402pay.mechanisms.evm.constants import NONCES_ABI

logger = logging.getLogger(__name__)


class NonceReader(Protocol):
    """Reads the next permit nonce an owner must sign for a token."""

    async def get_nonce(self, asset: str, owner: str) -> int:
        """Return ``asset.nonces(owner)``."""
        ...


class Web3NonceReader:
    """Reads ``nonces(owner)`` from the token contract over JSON-RPC.

    Args:
        rpc_url: HTTP JSON-RPC endpoint of the token's chain.
    """

    def __init__(self, rpc_url: str) -> None:
        self._rpc_url = rpc_url
        self._w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    async def get_nonce(self, asset: str, owner: str) -> int:
        contract = self._w3.eth.contract(address=to_checksum_address(asset), abi=NONCES_ABI)
        nonce = await contract.functions.nonces(to_checksum_address(owner)).call()
        logger.debug("[x402] On-chain permit nonce for %s on %s: %s", owner, asset, nonce)
        return int(nonce)


class StaticNonceReader:
    """Returns a fixed nonce, or per-(asset, owner) values when given a mapping."""

    def __init__(self, nonce: int = 0, overrides: Optional[dict[tuple[str, str], int]] = None) -> None:
        self._nonce = nonce
        self._overrides = {(a.lower(), o.lower()): n for (a, o), n in (overrides or {}).items()}

    async def get_nonce(self, asset: str, owner: str) -> int:
        return self._overrides.get((asset.lower(), owner.lower()), self._nonce)
