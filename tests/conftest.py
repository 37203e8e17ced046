"""
Shared fakes for the chain client and the aggregating contract.
"""

from typing import Any, Optional

import pytest
from web3.exceptions import ContractLogicError

from reputation_relay.evm import RawEvent
from reputation_relay.ledger import DedupLedger
from reputation_relay.protocols import EventSpec, ProtocolRegistry
from reputation_relay.submitter import RelaySubmitter

USER = "0x" + "11" * 20
OTHER_USER = "0x" + "22" * 20
OWNER = "0x" + "99" * 20
RELAY_TX = bytes.fromhex("ab" * 32)

ETHER = 10**18


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def raw_event(
    protocol_id: str = "lending",
    event_name: str = "Deposit",
    n: int = 1,
    log_index: int = 0,
    block_number: int = 101,
    **args: Any,
) -> RawEvent:
    return RawEvent(
        protocol_id=protocol_id,
        event_name=event_name,
        transaction_hash=tx_hash(n),
        log_index=log_index,
        block_number=block_number,
        args=args or {"user": USER, "amount": ETHER},
    )


class FakeChain:
    """
    In-memory chain. send_transaction behaves like the aggregating contract:
    a transactionHash it has already accepted is rejected as already processed.
    """

    def __init__(self, head: int = 100, estimate: int = 50_000):
        self.head = head
        self.estimate = estimate
        self.logs: dict[tuple[str, str], list[RawEvent]] = {}
        self.query_errors: dict[tuple[str, str], Exception] = {}
        self.height_error: Optional[Exception] = None
        self.estimate_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.queries: list[tuple[str, str, int, int]] = []
        self.sent: list[tuple[Any, int]] = []
        self.accepted: list[tuple[Any, ...]] = []

    def add_log(self, event: RawEvent) -> None:
        self.logs.setdefault((event.protocol_id, event.event_name), []).append(event)

    async def get_block_height(self) -> int:
        if self.height_error:
            raise self.height_error
        return self.head

    async def query_logs(self, protocol, event_name, from_block, to_block):
        key = (protocol.protocol_id, event_name)
        self.queries.append((protocol.protocol_id, event_name, from_block, to_block))
        if key in self.query_errors:
            raise self.query_errors[key]
        return [
            event
            for event in self.logs.get(key, [])
            if from_block <= event.block_number <= to_block
        ]

    async def estimate_gas(self, call) -> int:
        if self.estimate_error:
            raise self.estimate_error
        return self.estimate

    async def send_transaction(self, call, gas_limit: int) -> dict[str, Any]:
        self.sent.append((call, gas_limit))
        if self.send_error:
            raise self.send_error
        source_tx = call[4]
        if any(accepted[4] == source_tx for accepted in self.accepted):
            raise ContractLogicError("execution reverted: Event already processed")
        self.accepted.append(call)
        return {"transactionHash": RELAY_TX, "status": 1, "gasUsed": gas_limit}


class FakeReputation:
    """Aggregating contract binding whose calls are plain tuples."""

    def __init__(self) -> None:
        self.totals: dict[str, int] = {}
        self.protocol_scores: dict[tuple[str, str], int] = {}
        self.read_error: Optional[Exception] = None
        self.owner_error: Optional[Exception] = None

    def update_call(self, user, protocol, event_type, value, transaction_hash, block_number):
        return (user, protocol, event_type, value, transaction_hash, block_number)

    async def owner(self) -> str:
        if self.owner_error:
            raise self.owner_error
        return OWNER

    async def get_reputation_score(self, user: str) -> int:
        if self.read_error:
            raise self.read_error
        return self.totals.get(user, 0)

    async def get_protocol_score(self, user: str, protocol: str) -> int:
        if self.read_error:
            raise self.read_error
        return self.protocol_scores.get((user, protocol), 0)


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def reputation() -> FakeReputation:
    return FakeReputation()


@pytest.fixture
def ledger() -> DedupLedger:
    return DedupLedger()


@pytest.fixture
def submitter(chain: FakeChain, reputation: FakeReputation, ledger: DedupLedger) -> RelaySubmitter:
    return RelaySubmitter(chain, reputation, ledger)  # type: ignore[arg-type]


@pytest.fixture
def registry() -> ProtocolRegistry:
    registry = ProtocolRegistry()
    registry.register(
        "lending",
        "0x" + "aa" * 20,
        [
            EventSpec("Deposit", user_field="user", value_field="amount"),
            EventSpec("Borrow", user_field="user", value_field="amount"),
        ],
    )
    registry.register(
        "namoshi",
        "0x" + "bb" * 20,
        [EventSpec("DomainRegistered", user_field="owner", fixed_value=1)],
    )
    return registry
