"""ERC-2612 permit signer producing "upto" payment proofs."""

from __future__ import annotations

import logging
import time
from typing import Any, Literal, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from x402pay.encoding import encode_payment_proof
from x402pay.errors import SigningError
from x402pay.mechanisms.evm.constants import PERMIT_TYPES, SIGNATURE_LENGTH
from x402pay.mechanisms.evm.nonce import NonceReader, Web3NonceReader
from x402pay.networks import NetworkInfo, resolve_network
from x402pay.types import (
    AcceptedRequirement,
    PaymentProof,
    PaymentRequirement,
    PermitAuthorization,
    PermitParams,
    PermitSignature,
    ProofPayload,
)

logger = logging.getLogger(__name__)

MissingNoncePolicy = Literal["query", "zero"]


def split_signature(signature: bytes) -> PermitSignature:
    """Split a 65-byte ``r || s || v`` signature into its components."""
    if len(signature) != SIGNATURE_LENGTH:
        raise SigningError(f"Expected a {SIGNATURE_LENGTH}-byte signature, got {len(signature)}")
    return PermitSignature(
        r="0x" + signature[:32].hex(),
        s="0x" + signature[32:64].hex(),
        v=signature[64],
    )


class EvmPaymentSigner:
    """Signs ERC-2612 USDC permits with an eth_account key.

    When a requirement carries no ``extra["nonce"]`` the permit nonce comes
    from ``missing_nonce``: ``"query"`` asks the nonce reader (by default the
    token contract over the network's public RPC), ``"zero"`` uses 0.

    Args:
        private_key: Hex private key, with or without the ``0x`` prefix.
        network: Registry key, e.g. ``"base"``.
        nonce_reader: Source for on-chain nonces.
        missing_nonce: Policy used when the requirement supplies no nonce.

    Raises:
        SigningError: If the private key is invalid.
        UnknownNetworkError: If ``network`` is not in the registry.
    """

    def __init__(
        self,
        private_key: str,
        network: str,
        nonce_reader: Optional[NonceReader] = None,
        missing_nonce: MissingNoncePolicy = "query",
    ) -> None:
        self._network_info: NetworkInfo = resolve_network(network)
        self._network = network

        key = private_key if private_key.startswith("0x") else f"0x{private_key}"
        try:
            self._account: LocalAccount = Account.from_key(key)
        except Exception as e:
            raise SigningError(f"Invalid private key: {e}") from e

        if missing_nonce not in ("query", "zero"):
            raise ValueError(f"missing_nonce must be 'query' or 'zero', got {missing_nonce!r}")
        self._missing_nonce = missing_nonce
        self._nonce_reader = nonce_reader

    @property
    def address(self) -> str:
        """Checksummed address of the signing key."""
        return self._account.address

    @property
    def network(self) -> str:
        """Registry key of the signer's network."""
        return self._network

    @property
    def network_id(self) -> str:
        """CAIP-2 id of the signer's network."""
        return self._network_info["caip2"]

    def _get_nonce_reader(self) -> NonceReader:
        if self._nonce_reader is None:
            self._nonce_reader = Web3NonceReader(self._network_info["rpc_url"])
        return self._nonce_reader

    def _sign(self, domain: dict[str, Any], message: dict[str, Any]) -> bytes:
        try:
            signed = self._account.sign_typed_data(
                domain_data=domain,
                message_types=PERMIT_TYPES,
                message_data=message,
            )
        except Exception as e:
            raise SigningError(f"Failed to sign permit: {e}") from e
        return bytes(signed.signature)

    def sign_permit(self, params: PermitParams) -> PermitSignature:
        """Sign a permit against the registry USDC domain of the signer's network."""
        domain = {
            "name": self._network_info["usdc_domain_name"],
            "version": self._network_info["usdc_permit_version"],
            "chainId": self._network_info["chain_id"],
            "verifyingContract": self._network_info["usdc_address"],
        }
        message = {
            "owner": self.address,
            "spender": params.spender,
            "value": params.value,
            "nonce": params.nonce,
            "deadline": params.deadline,
        }
        return split_signature(self._sign(domain, message))

    async def _resolve_nonce(self, requirement: PaymentRequirement) -> int:
        raw = requirement.extra.get("nonce")
        if raw is not None:
            try:
                return int(raw)
            except (TypeError, ValueError) as e:
                raise SigningError(f"Invalid nonce in requirement: {raw!r}") from e

        if self._missing_nonce == "zero":
            return 0

        try:
            return await self._get_nonce_reader().get_nonce(requirement.asset, self.address)
        except SigningError:
            raise
        except Exception as e:
            raise SigningError(f"Failed to read permit nonce: {e}") from e

    async def build_payment_header(self, requirement: PaymentRequirement) -> str:
        """Sign a permit for ``requirement`` and return the base64 ``X-PAYMENT`` value.

        Args:
            requirement: The offer selected from a 402 challenge.

        Returns:
            Base64-encoded ``PaymentProof`` JSON.

        Raises:
            SigningError: On a network mismatch, nonce lookup failure or
                signing failure. No proof is returned in that case.
        """
        if requirement.network != self.network_id:
            raise SigningError(
                f"Requirement network {requirement.network} does not match signer network {self.network_id}"
            )

        token_name = requirement.extra.get("name") or self._network_info["usdc_domain_name"]
        token_version = requirement.extra.get("version") or self._network_info["usdc_permit_version"]
        nonce = await self._resolve_nonce(requirement)
        deadline = int(time.time()) + requirement.max_timeout_seconds

        domain = {
            "name": token_name,
            "version": token_version,
            "chainId": self._network_info["chain_id"],
            "verifyingContract": requirement.asset,
        }
        message = {
            "owner": self.address,
            "spender": requirement.pay_to,
            "value": requirement.amount,
            "nonce": nonce,
            "deadline": deadline,
        }
        signature = self._sign(domain, message)

        proof = PaymentProof(
            accepted=AcceptedRequirement(
                scheme=requirement.scheme,
                network=requirement.network,
                asset=requirement.asset,
                amount=requirement.max_amount_required,
                pay_to=requirement.pay_to,
            ),
            payload=ProofPayload(
                authorization=PermitAuthorization(
                    from_=self.address,
                    to=requirement.pay_to,
                    value=requirement.max_amount_required,
                    valid_before=str(deadline),
                    nonce=str(nonce),
                ),
                signature="0x" + signature.hex(),
            ),
        )
        logger.debug("[x402] Signed permit of %s to %s (nonce %s)", requirement.amount, requirement.pay_to, nonce)
        return encode_payment_proof(proof)
