"""
Identity Resolution

Maps a contract address to its network, chain id and static contract
configuration. Pure lookup: no event dependency, no store access.

The configuration is an explicitly constructed, immutable object passed
to the resolver at startup. Nothing here is process-global or mutated
after construction.

Two strategies coexist (see VariantProfile.resolution_strategy):
- STATIC_TABLE: joining amount, scope and verifier come from the table
- EVENT_PAYLOAD: the network comes from the table, and so do any
  economic attributes it carries; those it leaves at zero are filled
  from events as they arrive (the first PoolCreated)

Unknown addresses fall back to the configured default network with zero
economics and a logged warning. Resolution never fails.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

from ..observability import get_logger
from ..schemas import ContractVariant, to_hex
from ..schemas.events import parse_int


logger = get_logger(__name__)


DEFAULT_FALLBACK_NETWORK = "base-sepolia"


@dataclass(frozen=True)
class NetworkConfig:
    """Static description of one network."""
    name: str
    display_name: str
    chain_id: int


@dataclass(frozen=True)
class ContractConfig:
    """Static description of one deployed paymaster."""
    address: str
    network: str
    variant: ContractVariant
    joining_amount: int = 0
    scope: int = 0
    verifier: Optional[str] = None


@dataclass(frozen=True)
class IdentityConfig:
    """
    Immutable network + contract tables.

    Contract addresses are normalized to lower-case hex on construction.
    """
    networks: Mapping[str, NetworkConfig] = field(default_factory=dict)
    contracts: Mapping[str, ContractConfig] = field(default_factory=dict)
    fallback_network: str = DEFAULT_FALLBACK_NETWORK

    def __post_init__(self):
        contracts = {to_hex(address): entry for address, entry in self.contracts.items()}
        object.__setattr__(self, "networks", MappingProxyType(dict(self.networks)))
        object.__setattr__(self, "contracts", MappingProxyType(contracts))

    def network(self, name: str) -> NetworkConfig:
        """Network by name; unknown names resolve with chain id 0."""
        config = self.networks.get(name)
        if config is None:
            return NetworkConfig(name=name, display_name=name, chain_id=0)
        return config

    def contract(self, address: str) -> Optional[ContractConfig]:
        return self.contracts.get(to_hex(address))

    # ================================================================
    # CONSTRUCTORS
    # ================================================================

    @classmethod
    def default(cls) -> "IdentityConfig":
        """The networks and deployments known at release time."""
        networks = {
            "base-sepolia": NetworkConfig("base-sepolia", "Base Sepolia", 84532),
            "base": NetworkConfig("base", "Base", 8453),
            "ethereum": NetworkConfig("ethereum", "Ethereum Mainnet", 1),
            "sepolia": NetworkConfig("sepolia", "Sepolia", 11155111),
        }
        contracts = {
            "0x3BEeC075aC5A77fFE0F9ee4bbb3DCBd07fA93fbf": ContractConfig(
                address="0x3beec075ac5a77ffe0f9ee4bbb3dcbd07fa93fbf",
                network="base-sepolia",
                variant=ContractVariant.GAS_LIMITED,
            ),
            "0x243A735115F34BD5c0F23a33a444a8d26e31E2E7": ContractConfig(
                address="0x243a735115f34bd5c0f23a33a444a8d26e31e2e7",
                network="base-sepolia",
                variant=ContractVariant.ONE_TIME_USE,
            ),
        }
        return cls(networks=networks, contracts=contracts)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IdentityConfig":
        """
        Build from a plain mapping.

        Format:
            {
                "fallback_network": "base-sepolia",
                "networks": {"base": {"display_name": "Base", "chain_id": 8453}},
                "contracts": {
                    "0xabc...": {
                        "network": "base",
                        "variant": "CacheEnabledGasLimited",
                        "joining_amount": "1000000000000000",
                        "scope": 0,
                        "verifier": "0xdef..."
                    }
                }
            }
        """
        networks = {
            name: NetworkConfig(
                name=name,
                display_name=entry.get("display_name", name),
                chain_id=parse_int(entry.get("chain_id", 0)),
            )
            for name, entry in data.get("networks", {}).items()
        }
        contracts = {}
        for address, entry in data.get("contracts", {}).items():
            verifier = entry.get("verifier")
            contracts[address] = ContractConfig(
                address=to_hex(address),
                network=entry["network"],
                variant=ContractVariant(entry["variant"]),
                joining_amount=parse_int(entry.get("joining_amount", 0)),
                scope=parse_int(entry.get("scope", 0)),
                verifier=to_hex(verifier) if verifier else None,
            )
        return cls(
            networks=networks,
            contracts=contracts,
            fallback_network=data.get("fallback_network", DEFAULT_FALLBACK_NETWORK),
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "IdentityConfig":
        """Load from a JSON file in the from_dict format."""
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    @classmethod
    def from_env(cls) -> "IdentityConfig":
        """
        Load from PAYMASTER_LEDGER_IDENTITY_FILE if set, else the defaults.
        """
        path = os.getenv("PAYMASTER_LEDGER_IDENTITY_FILE")
        if path:
            return cls.from_file(path)
        return cls.default()


@dataclass(frozen=True)
class ContractIdentity:
    """Resolved identity of one contract address."""
    address: str
    variant: Optional[ContractVariant]
    network: str
    chain_id: int
    joining_amount: int = 0
    scope: int = 0
    verifier: Optional[str] = None
    known: bool = True


class IdentityResolver:
    """Resolves contract addresses against an IdentityConfig."""

    def __init__(self, config: Optional[IdentityConfig] = None):
        self._config = config if config is not None else IdentityConfig.default()

    @property
    def config(self) -> IdentityConfig:
        return self._config

    def network(self, name: str) -> NetworkConfig:
        return self._config.network(name)

    def resolve(
        self,
        address: str,
        variant: Optional[ContractVariant] = None,
    ) -> ContractIdentity:
        """
        Resolve an address.

        Args:
            address: Emitting contract address
            variant: Variant hint from the caller's entry point; the
                     table wins when it knows the address
        """
        address = to_hex(address)
        entry = self._config.contract(address)

        if entry is None:
            network = self._config.network(self._config.fallback_network)
            logger.warning(
                "Unknown contract address, defaulting network",
                address=address,
                network=network.name,
            )
            return ContractIdentity(
                address=address,
                variant=ContractVariant(variant) if variant else None,
                network=network.name,
                chain_id=network.chain_id,
                known=False,
            )

        if variant is not None and ContractVariant(variant) != entry.variant:
            logger.warning(
                "Variant hint disagrees with identity table",
                address=address,
                hinted=ContractVariant(variant).value,
                configured=entry.variant.value,
            )

        network = self._config.network(entry.network)

        # STATIC_TABLE variants take all economics from the table. Under
        # EVENT_PAYLOAD the table may still carry them; whatever it leaves
        # at zero is learned from events (see LedgerEngine.on_pool_created).
        return ContractIdentity(
            address=address,
            variant=entry.variant,
            network=network.name,
            chain_id=network.chain_id,
            joining_amount=entry.joining_amount,
            scope=entry.scope,
            verifier=entry.verifier,
        )
