"""
Tests for EVM helpers and the chain client, with web3 calls stubbed out.
"""

from types import SimpleNamespace

import pytest
from web3 import Web3
from web3.datastructures import AttributeDict
from web3.exceptions import ContractLogicError

from reputation_relay.evm import (
    ALREADY_PROCESSED_REASON,
    ChainClient,
    ReputationContract,
    TransactionRevertedError,
    apply_gas_margin,
    is_already_processed,
)
from reputation_relay.protocols import EventSpec, ProtocolConfig

PRIVATE_KEY = "0x" + "01" * 32
USER = "0x" + "11" * 20
CONTRACT = "0x" + "aa" * 20
SOURCE_TX = bytes.fromhex("12" * 32)
RELAY_TX = bytes.fromhex("ab" * 32)


class TestGasMargin:
    def test_adds_twenty_percent(self):
        assert apply_gas_margin(100_000) == 120_000

    def test_floors(self):
        assert apply_gas_margin(33_333) == 39_999


class TestAlreadyProcessed:
    def test_contract_logic_error(self):
        error = ContractLogicError(f"execution reverted: {ALREADY_PROCESSED_REASON}")
        assert is_already_processed(error)

    def test_plain_exception_message(self):
        assert is_already_processed(ValueError("reverted: Event already processed (0x01)"))

    def test_other_reasons(self):
        assert not is_already_processed(ContractLogicError("execution reverted: Only owner"))
        assert not is_already_processed(TransactionRevertedError("0xdead"))
        assert not is_already_processed(ConnectionError("timeout"))


class TestReputationContract:
    def test_update_call_encodes_process_protocol_event(self):
        chain = ChainClient("http://localhost:8545", PRIVATE_KEY, chain_id=5115)
        contract = ReputationContract(chain, "0x" + "cd" * 20)

        call = contract.update_call(USER, "dex", "Swap", 2500, "0x" + "ab" * 32, 123)

        assert call.fn_name == "processProtocolEvent"
        assert call.args[0] == Web3.to_checksum_address(USER)
        assert call.args[1:4] == ("dex", "Swap", 2500)
        assert contract.address == Web3.to_checksum_address("0x" + "cd" * 20)

    def test_chain_client_sender_from_key(self):
        chain = ChainClient("http://localhost:8545", PRIVATE_KEY, chain_id=5115)
        assert Web3.is_checksum_address(chain.address)


async def _resolved(value):
    return value


class FakeEvent:
    def __init__(self, logs):
        self.logs = logs
        self.calls = []

    async def get_logs(self, from_block, to_block):
        self.calls.append((from_block, to_block))
        return self.logs


class FakeCall:
    """Contract function call whose transaction is a plain value transfer."""

    async def build_transaction(self, params):
        return {**params, "to": Web3.to_checksum_address(CONTRACT), "value": 0, "data": "0x"}


class FakeEth:
    def __init__(self, status: int = 1):
        self.status = status
        self.sent_raw = []

    @property
    def gas_price(self):
        return _resolved(1_000_000_000)

    async def get_transaction_count(self, address, block_identifier):
        return 7

    async def send_raw_transaction(self, raw):
        self.sent_raw.append(raw)
        return RELAY_TX

    async def wait_for_transaction_receipt(self, tx_hash, timeout):
        return AttributeDict({"transactionHash": tx_hash, "status": self.status, "gasUsed": 21_000})


@pytest.fixture
def chain():
    return ChainClient("http://localhost:8545", PRIVATE_KEY, chain_id=5115)


class TestQueryLogs:
    @pytest.mark.asyncio
    async def test_decodes_logs_into_raw_events(self, chain):
        protocol = ProtocolConfig(
            "lending",
            CONTRACT,
            (EventSpec("Deposit", user_field="user", value_field="amount"),),
            (),
        )
        log = AttributeDict(
            {
                "event": "Deposit",
                "transactionHash": SOURCE_TX,
                "logIndex": 3,
                "blockNumber": 104,
                "args": AttributeDict({"user": USER, "amount": 10**18}),
            }
        )
        deposit = FakeEvent([log])
        chain._contracts["lending"] = SimpleNamespace(events=SimpleNamespace(Deposit=deposit))

        events = await chain.query_logs(protocol, "Deposit", 101, 110)

        assert deposit.calls == [(101, 110)]
        assert len(events) == 1
        event = events[0]
        assert event.protocol_id == "lending"
        assert event.event_name == "Deposit"
        assert event.transaction_hash == "0x" + "12" * 32
        assert event.log_index == 3
        assert event.block_number == 104
        assert event.args == {"user": USER, "amount": 10**18}


class TestSendTransaction:
    @pytest.mark.asyncio
    async def test_signs_and_returns_receipt(self, chain):
        eth = FakeEth()
        chain.w3 = SimpleNamespace(eth=eth)

        receipt = await chain.send_transaction(FakeCall(), gas_limit=60_000)

        assert receipt["status"] == 1
        assert Web3.to_hex(receipt["transactionHash"]) == "0x" + "ab" * 32
        assert len(eth.sent_raw) == 1

    @pytest.mark.asyncio
    async def test_status_zero_raises(self, chain):
        chain.w3 = SimpleNamespace(eth=FakeEth(status=0))

        with pytest.raises(TransactionRevertedError) as exc_info:
            await chain.send_transaction(FakeCall(), gas_limit=60_000)

        assert exc_info.value.tx_hash == "0x" + "ab" * 32
        assert not is_already_processed(exc_info.value)

    @pytest.mark.asyncio
    async def test_block_height(self, chain):
        chain.w3 = SimpleNamespace(eth=SimpleNamespace(block_number=_resolved(123)))

        assert await chain.get_block_height() == 123
