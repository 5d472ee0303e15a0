"""EVM mechanism constants - permit typed data and token ABIs."""

# EIP-712 primary type signed for the "upto" scheme (ERC-2612)
PERMIT_PRIMARY_TYPE = "Permit"

PERMIT_TYPES = {
    "Permit": [
        {"name": "owner", "type": "address"},
        {"name": "spender", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ]
}

# ERC-2612 sequential nonce accessor
FUNCTION_NONCES = "nonces"

NONCES_ABI = [
    {
        "inputs": [{"name": "owner", "type": "address"}],
        "name": "nonces",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    }
]

# Length of a compact secp256k1 signature (r || s || v)
SIGNATURE_LENGTH = 65
