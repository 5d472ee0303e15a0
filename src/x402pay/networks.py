"""Registry of supported EVM networks and their USDC parameters.

``usdc_domain_name`` must match what the USDC contract's ``name()`` returns
on that chain ("USD Coin" on Ethereum mainnet, "USDC" on Base and the
testnets). A wrong name yields permit signatures the contract rejects.
"""

from __future__ import annotations

from typing_extensions import (
    TypedDict,
)  # use `typing_extensions.TypedDict` instead of `typing.TypedDict` on Python < 3.12

from x402pay.errors import UnknownNetworkError


class NetworkInfo(TypedDict):
    """Supported EVM network descriptor."""

    caip2: str
    chain_id: int
    name: str
    usdc_address: str
    usdc_domain_name: str
    usdc_permit_version: str
    rpc_url: str


NETWORK_REGISTRY: dict[str, NetworkInfo] = {
    "base": {
        "caip2": "eip155:8453",
        "chain_id": 8453,
        "name": "Base",
        "usdc_address": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        "usdc_domain_name": "USDC",
        "usdc_permit_version": "2",
        "rpc_url": "https://mainnet.base.org",
    },
    "base-sepolia": {
        "caip2": "eip155:84532",
        "chain_id": 84532,
        "name": "Base Sepolia",
        "usdc_address": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        "usdc_domain_name": "USDC",
        "usdc_permit_version": "2",
        "rpc_url": "https://sepolia.base.org",
    },
    "ethereum": {
        "caip2": "eip155:1",
        "chain_id": 1,
        "name": "Ethereum",
        "usdc_address": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
        "usdc_domain_name": "USD Coin",
        "usdc_permit_version": "2",
        "rpc_url": "https://ethereum-rpc.publicnode.com",
    },
    "sepolia": {
        "caip2": "eip155:11155111",
        "chain_id": 11155111,
        "name": "Sepolia",
        "usdc_address": "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
        "usdc_domain_name": "USDC",
        "usdc_permit_version": "2",
        "rpc_url": "https://ethereum-sepolia-rpc.publicnode.com",
    },
}


def supported_networks() -> list[str]:
    """Registry keys in declaration order."""
    return list(NETWORK_REGISTRY)


def resolve_network(key: str) -> NetworkInfo:
    """Get the network descriptor for a registry key.

    Args:
        key: Registry key (e.g. "base", "base-sepolia").

    Returns:
        Network descriptor.

    Raises:
        UnknownNetworkError: If the key is not registered. The message lists
            every supported key.
    """
    info = NETWORK_REGISTRY.get(key)
    if info is None:
        raise UnknownNetworkError(key, supported_networks())
    return info


def network_key_from_caip2(caip2: str) -> str | None:
    """Reverse lookup: CAIP-2 id (e.g. "eip155:8453") to registry key."""
    for key, info in NETWORK_REGISTRY.items():
        if info["caip2"] == caip2:
            return key
    return None


def validate_registry(registry: dict[str, NetworkInfo] | None = None) -> None:
    """Check that no two entries share a CAIP-2 id or a chain id.

    Raises:
        ValueError: On the first duplicate found.
    """
    registry = NETWORK_REGISTRY if registry is None else registry
    seen_caip2: dict[str, str] = {}
    seen_chain_ids: dict[int, str] = {}

    for key, info in registry.items():
        if info["caip2"] in seen_caip2:
            raise ValueError(
                f"Network {key} reuses CAIP-2 id {info['caip2']} of {seen_caip2[info['caip2']]}"
            )
        if info["chain_id"] in seen_chain_ids:
            raise ValueError(
                f"Network {key} reuses chain id {info['chain_id']} of "
                f"{seen_chain_ids[info['chain_id']]}"
            )
        seen_caip2[info["caip2"]] = key
        seen_chain_ids[info["chain_id"]] = key


validate_registry()
