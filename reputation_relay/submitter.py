"""
Per-event handling: dedup claim, extraction, validation and submission to
the aggregating contract.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog
from web3 import Web3

from .evm import ChainClient, RawEvent, ReputationContract, apply_gas_margin, is_already_processed
from .extractor import MissingUserFieldError, extract
from .ledger import DedupLedger, event_identity
from .protocols import EventSpec
from .store import RelayStore

logger = structlog.get_logger()


class Outcome(str, Enum):
    """What happened to one raw event."""

    SUBMITTED = "submitted"
    ALREADY_PROCESSED = "already_processed"
    DUPLICATE = "duplicate"
    INVALID = "invalid"
    FAILED = "failed"


@dataclass
class ExtractedUpdate:
    """Payload for processProtocolEvent."""

    user_address: str
    protocol_id: str
    event_name: str
    value: int
    transaction_hash: str
    block_number: int


@dataclass
class HandleResult:
    """Result of handling one raw event."""

    identity: str
    outcome: Outcome
    update: Optional[ExtractedUpdate] = None
    relay_tx_hash: Optional[str] = None
    gas_limit: Optional[int] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome in (Outcome.SUBMITTED, Outcome.ALREADY_PROCESSED)


class RelaySubmitter:
    """
    Turns raw protocol events into aggregating-contract updates.

    Claims are released when the event is malformed or the submission fails
    for any reason other than the contract reporting the event as already
    processed.
    """

    def __init__(
        self,
        chain: ChainClient,
        reputation: ReputationContract,
        ledger: DedupLedger,
        store: Optional[RelayStore] = None,
    ):
        self.chain = chain
        self.reputation = reputation
        self.ledger = ledger
        self.store = store

    async def handle(self, spec: EventSpec, event: RawEvent) -> HandleResult:
        identity = event_identity(event.transaction_hash, event.log_index)

        if not self.ledger.try_claim(identity):
            logger.debug("duplicate_event_skipped", event_id=identity)
            return HandleResult(identity=identity, outcome=Outcome.DUPLICATE)

        try:
            user, value = extract(event.protocol_id, spec, event.args)
        except MissingUserFieldError as e:
            self.ledger.release(identity)
            logger.warning("invalid_event", event_id=identity, error=str(e))
            return HandleResult(identity=identity, outcome=Outcome.INVALID, error=str(e))

        if not isinstance(user, str) or not Web3.is_address(user):
            self.ledger.release(identity)
            logger.warning(
                "invalid_user_address",
                event_id=identity,
                protocol=event.protocol_id,
                event_name=spec.event_name,
                user=str(user),
            )
            return HandleResult(
                identity=identity,
                outcome=Outcome.INVALID,
                error=f"Invalid user address: {user}",
            )

        update = ExtractedUpdate(
            user_address=Web3.to_checksum_address(user),
            protocol_id=event.protocol_id,
            event_name=spec.event_name,
            value=value,
            transaction_hash=event.transaction_hash,
            block_number=event.block_number,
        )

        logger.info(
            "event_detected",
            protocol=update.protocol_id,
            event_name=update.event_name,
            user=update.user_address,
            value=update.value,
            block=update.block_number,
        )

        try:
            gas_limit, relay_tx_hash = await self.submit(update)
        except Exception as e:
            if is_already_processed(e):
                logger.info(
                    "event_already_processed",
                    event_id=identity,
                    transaction_hash=update.transaction_hash,
                )
                self._record(identity, update, None, Outcome.ALREADY_PROCESSED)
                return HandleResult(
                    identity=identity,
                    outcome=Outcome.ALREADY_PROCESSED,
                    update=update,
                )

            self.ledger.release(identity)
            logger.error(
                "relay_failed",
                event_id=identity,
                protocol=update.protocol_id,
                event_name=update.event_name,
                user=update.user_address,
                error=str(e),
            )
            return HandleResult(
                identity=identity,
                outcome=Outcome.FAILED,
                update=update,
                error=str(e),
            )

        logger.info(
            "event_relayed",
            event_id=identity,
            protocol=update.protocol_id,
            event_name=update.event_name,
            user=update.user_address,
            value=update.value,
            relay_tx_hash=relay_tx_hash,
        )
        self._record(identity, update, relay_tx_hash, Outcome.SUBMITTED)
        return HandleResult(
            identity=identity,
            outcome=Outcome.SUBMITTED,
            update=update,
            relay_tx_hash=relay_tx_hash,
            gas_limit=gas_limit,
        )

    async def submit(self, update: ExtractedUpdate) -> tuple[int, str]:
        """
        Estimate gas, then send with the margin applied and wait for the receipt.

        First-time users cost more (storage initialization), so the limit is
        never fixed. Returns (gas_limit, relay_tx_hash).
        """
        call = self.reputation.update_call(
            update.user_address,
            update.protocol_id,
            update.event_name,
            update.value,
            update.transaction_hash,
            update.block_number,
        )
        estimate = await self.chain.estimate_gas(call)
        gas_limit = apply_gas_margin(estimate)

        receipt = await self.chain.send_transaction(call, gas_limit)
        return gas_limit, Web3.to_hex(receipt["transactionHash"])

    def _record(
        self,
        identity: str,
        update: ExtractedUpdate,
        relay_tx_hash: Optional[str],
        outcome: Outcome,
    ) -> None:
        if self.store is None:
            return
        try:
            self.store.record_relayed(
                identity=identity,
                protocol=update.protocol_id,
                event_name=update.event_name,
                user=update.user_address,
                value=update.value,
                source_tx_hash=update.transaction_hash,
                block_number=update.block_number,
                relay_tx_hash=relay_tx_hash,
                status=outcome.value,
            )
        except Exception as e:
            logger.error("relay_record_failed", event_id=identity, error=str(e))
