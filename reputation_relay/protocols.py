"""
Protocol registry: which contracts are watched and which of their events count.

Each protocol is opt-in. A protocol whose contract address is not configured
is never registered.
"""

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

import structlog

from .config import Settings

logger = structlog.get_logger()

# Protocols the aggregating contract keeps a per-protocol score for
KNOWN_PROTOCOLS = ("namoshi", "dex", "lending", "nft", "multisig", "governance")


def _event_abi(name: str, inputs: list[tuple[str, str, bool]]) -> dict[str, Any]:
    return {
        "anonymous": False,
        "inputs": [
            {"indexed": indexed, "name": arg, "type": typ}
            for arg, typ, indexed in inputs
        ],
        "name": name,
        "type": "event",
    }


NAMOSHI_ABI = [
    _event_abi(
        "DomainRegistered",
        [("owner", "address", True), ("name", "string", False), ("expires", "uint256", False)],
    ),
    _event_abi(
        "DomainRenewed",
        [("owner", "address", True), ("name", "string", False), ("expires", "uint256", False)],
    ),
]

SATSUMA_ABI = [
    _event_abi(
        "Swap",
        [
            ("sender", "address", True),
            ("amount0In", "uint256", False),
            ("amount1In", "uint256", False),
            ("amount0Out", "uint256", False),
            ("amount1Out", "uint256", False),
            ("to", "address", True),
        ],
    ),
    _event_abi(
        "Mint",
        [("sender", "address", True), ("amount0", "uint256", False), ("amount1", "uint256", False)],
    ),
]

SPINE_ABI = [
    _event_abi(name, [("user", "address", True), ("amount", "uint256", False)])
    for name in ("Deposit", "Withdraw", "Borrow", "Repay")
]

MINT_PARK_ABI = [
    _event_abi(
        "Transfer",
        [
            ("from", "address", True),
            ("to", "address", True),
            ("tokenId", "uint256", True),
            ("price", "uint256", False),
        ],
    ),
]

ASIGNA_ABI = [
    _event_abi(
        "ExecutionSuccess",
        [("executor", "address", True), ("txHash", "bytes32", False), ("payment", "uint256", False)],
    ),
]


@dataclass(frozen=True)
class EventSpec:
    """A monitored event type and how to read its subject and magnitude."""

    event_name: str
    user_field: str
    value_field: Optional[str] = None
    fixed_value: Optional[int] = None


@dataclass(frozen=True)
class ProtocolConfig:
    """A watched protocol contract."""

    protocol_id: str
    contract_address: str
    event_specs: tuple[EventSpec, ...]
    abi: tuple[dict[str, Any], ...] = field(default=(), compare=False)


class ProtocolRegistry:
    """Insertion-ordered, startup-only table of watched protocols."""

    def __init__(self) -> None:
        self._protocols: dict[str, ProtocolConfig] = {}

    def register(
        self,
        protocol_id: str,
        contract_address: Optional[str],
        event_specs: list[EventSpec],
        abi: Optional[list[dict[str, Any]]] = None,
    ) -> Optional[ProtocolConfig]:
        """
        Register a protocol. Returns None (and registers nothing) when the
        address is not configured.
        """
        if not contract_address:
            logger.debug("protocol_disabled", protocol=protocol_id)
            return None
        if protocol_id in self._protocols:
            raise ValueError(f"Protocol already registered: {protocol_id}")

        config = ProtocolConfig(
            protocol_id=protocol_id,
            contract_address=contract_address,
            event_specs=tuple(event_specs),
            abi=tuple(abi or ()),
        )
        self._protocols[protocol_id] = config
        logger.info(
            "protocol_registered",
            protocol=protocol_id,
            address=contract_address,
            events=[spec.event_name for spec in config.event_specs],
        )
        return config

    def list_protocols(self) -> list[ProtocolConfig]:
        return list(self._protocols.values())

    def get(self, protocol_id: str) -> Optional[ProtocolConfig]:
        return self._protocols.get(protocol_id)

    def __len__(self) -> int:
        return len(self._protocols)

    def __iter__(self) -> Iterator[ProtocolConfig]:
        return iter(self.list_protocols())


def build_registry(settings: Settings) -> ProtocolRegistry:
    """Build the registry of every protocol with a configured address."""
    registry = ProtocolRegistry()

    registry.register(
        "namoshi",
        settings.namoshi_contract_address,
        [
            EventSpec("DomainRegistered", user_field="owner", fixed_value=1),
            EventSpec("DomainRenewed", user_field="owner", fixed_value=1),
        ],
        NAMOSHI_ABI,
    )
    registry.register(
        "dex",
        settings.satsuma_contract_address,
        [
            EventSpec("Swap", user_field="sender", value_field="amount0Out"),
            EventSpec("Mint", user_field="sender", value_field="amount0"),
        ],
        SATSUMA_ABI,
    )
    registry.register(
        "lending",
        settings.spine_contract_address,
        [
            EventSpec("Deposit", user_field="user", value_field="amount"),
            EventSpec("Borrow", user_field="user", value_field="amount"),
            EventSpec("Repay", user_field="user", value_field="amount"),
        ],
        SPINE_ABI,
    )
    registry.register(
        "nft",
        settings.mint_park_contract_address,
        [EventSpec("Transfer", user_field="to", value_field="price")],
        MINT_PARK_ABI,
    )
    registry.register(
        "multisig",
        settings.asigna_contract_address,
        [EventSpec("ExecutionSuccess", user_field="executor", fixed_value=1)],
        ASIGNA_ABI,
    )

    return registry
