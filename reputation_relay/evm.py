"""
EVM interaction: log queries on protocol contracts and calls into the
ReputationSBT aggregating contract.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.types import TxReceipt

from .protocols import ProtocolConfig

logger = structlog.get_logger()

# Revert reason the aggregating contract uses for a duplicate transactionHash
ALREADY_PROCESSED_REASON = "Event already processed"

# Gas limit = estimate + 20%
GAS_MARGIN_PERCENT = 20


# ReputationSBT ABI (minimal for relaying and score reads)
REPUTATION_ABI = [
    {
        "inputs": [],
        "name": "owner",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "protocol", "type": "string"},
            {"name": "eventType", "type": "string"},
            {"name": "value", "type": "uint256"},
            {"name": "transactionHash", "type": "bytes32"},
            {"name": "blockNumber", "type": "uint256"},
        ],
        "name": "processProtocolEvent",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "user", "type": "address"}],
        "name": "getReputationScore",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "protocol", "type": "string"},
        ],
        "name": "getProtocolScore",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]


class TransactionRevertedError(Exception):
    """A mined transaction ended with status 0."""

    def __init__(self, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__(f"Transaction reverted: {tx_hash}")


@dataclass
class RawEvent:
    """A decoded log entry from a protocol contract."""

    protocol_id: str
    event_name: str
    transaction_hash: str
    log_index: int
    block_number: int
    args: dict[str, Any] = field(default_factory=dict)


def is_already_processed(error: BaseException) -> bool:
    """True when a failure carries the aggregator's duplicate-event reason."""
    message = getattr(error, "message", None)
    if isinstance(message, str) and ALREADY_PROCESSED_REASON in message:
        return True
    return ALREADY_PROCESSED_REASON in str(error)


def apply_gas_margin(estimate: int) -> int:
    """Gas limit with the safety margin applied (floored)."""
    return estimate * (100 + GAS_MARGIN_PERCENT) // 100


class ChainClient:
    """Async client for the chain the protocols and aggregator live on."""

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        chain_id: int,
        receipt_timeout: int = 120,
    ):
        self.w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self.account = Account.from_key(private_key)
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        self._contracts: dict[str, Any] = {}

        logger.info(
            "chain_client_initialized",
            rpc_url=rpc_url,
            chain_id=chain_id,
            sender=self.account.address,
        )

    @property
    def address(self) -> str:
        return self.account.address

    async def check_connectivity(self) -> bool:
        try:
            await self.w3.eth.block_number
            return True
        except Exception:
            return False

    async def get_block_height(self) -> int:
        """Get the current chain head height."""
        return await self.w3.eth.block_number

    def _protocol_contract(self, protocol: ProtocolConfig) -> Any:
        contract = self._contracts.get(protocol.protocol_id)
        if contract is None:
            contract = self.w3.eth.contract(
                address=Web3.to_checksum_address(protocol.contract_address),
                abi=list(protocol.abi),
            )
            self._contracts[protocol.protocol_id] = contract
        return contract

    async def query_logs(
        self,
        protocol: ProtocolConfig,
        event_name: str,
        from_block: int,
        to_block: int,
    ) -> list[RawEvent]:
        """Fetch and decode one event type's logs in [from_block, to_block]."""
        contract = self._protocol_contract(protocol)
        event = getattr(contract.events, event_name)
        logs = await event.get_logs(from_block=from_block, to_block=to_block)

        return [
            RawEvent(
                protocol_id=protocol.protocol_id,
                event_name=log["event"],
                transaction_hash=Web3.to_hex(log["transactionHash"]),
                log_index=log["logIndex"],
                block_number=log["blockNumber"],
                args=dict(log["args"]),
            )
            for log in logs
        ]

    async def estimate_gas(self, call: Any) -> int:
        """Estimate gas for a contract function call from the relay account."""
        return await call.estimate_gas({"from": self.address})

    async def send_transaction(self, call: Any, gas_limit: int) -> TxReceipt:
        """
        Sign, send and wait for a contract function call.

        Raises:
            TransactionRevertedError: if the receipt status is not 1.
        """
        nonce = await self.w3.eth.get_transaction_count(self.address, "pending")
        gas_price = await self.w3.eth.gas_price

        tx = await call.build_transaction(
            {
                "from": self.address,
                "nonce": nonce,
                "gas": gas_limit,
                "gasPrice": gas_price,
                "chainId": self.chain_id,
            }
        )

        signed_tx = self.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)

        logger.info("relay_tx_sent", tx_hash=Web3.to_hex(tx_hash), gas_limit=gas_limit)

        receipt: TxReceipt = await self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.receipt_timeout
        )
        if receipt["status"] != 1:
            raise TransactionRevertedError(Web3.to_hex(tx_hash))
        return receipt


class ReputationContract:
    """Binding for the ReputationSBT aggregating contract."""

    def __init__(self, chain: ChainClient, address: str):
        self.address = Web3.to_checksum_address(address)
        self.contract = chain.w3.eth.contract(address=self.address, abi=REPUTATION_ABI)

    def update_call(
        self,
        user: str,
        protocol: str,
        event_type: str,
        value: int,
        transaction_hash: str,
        block_number: int,
    ) -> Any:
        """Build (without sending) a processProtocolEvent call."""
        return self.contract.functions.processProtocolEvent(
            Web3.to_checksum_address(user),
            protocol,
            event_type,
            value,
            transaction_hash,
            block_number,
        )

    async def owner(self) -> str:
        return await self.contract.functions.owner().call()

    async def get_reputation_score(self, user: str) -> int:
        return await self.contract.functions.getReputationScore(
            Web3.to_checksum_address(user)
        ).call()

    async def get_protocol_score(self, user: str, protocol: str) -> int:
        return await self.contract.functions.getProtocolScore(
            Web3.to_checksum_address(user), protocol
        ).call()
