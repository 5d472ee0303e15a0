"""EVM mechanism: ERC-2612 permit signing for the "upto" scheme."""

from x402pay.mechanisms.evm.nonce import NonceReader, StaticNonceReader, Web3NonceReader
from x402pay.mechanisms.evm.signer import EvmPaymentSigner, split_signature

__all__ = [
    "EvmPaymentSigner",
    "NonceReader",
    "StaticNonceReader",
    "Web3NonceReader",
    "split_signature",
]
