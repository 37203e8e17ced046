"""
Main relay loop: discovers new protocol events block range by block range
and hands each one to the submitter.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import structlog

from .evm import ChainClient
from .ledger import DedupLedger
from .protocols import ProtocolRegistry
from .store import RelayStore
from .submitter import HandleResult, Outcome, RelaySubmitter

logger = structlog.get_logger()


class PollPhase(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"


@dataclass
class RelayState:
    """Everything the poller mutates. Owned by a single relayer."""

    checkpoint: int = 0
    ledger: DedupLedger = field(default_factory=DedupLedger)
    phase: PollPhase = PollPhase.IDLE
    cycles: int = 0
    submitted: int = 0
    already_processed: int = 0
    duplicates: int = 0
    invalid: int = 0
    failed: int = 0
    failed_queries: int = 0
    last_poll_time: Optional[datetime] = None

    def count(self, result: HandleResult) -> None:
        if result.outcome is Outcome.SUBMITTED:
            self.submitted += 1
        elif result.outcome is Outcome.ALREADY_PROCESSED:
            self.already_processed += 1
        elif result.outcome is Outcome.DUPLICATE:
            self.duplicates += 1
        elif result.outcome is Outcome.INVALID:
            self.invalid += 1
        else:
            self.failed += 1


@dataclass
class CycleReport:
    """Summary of one poll cycle."""

    from_block: Optional[int] = None
    to_block: Optional[int] = None
    results: list[HandleResult] = field(default_factory=list)
    failed_queries: int = 0
    error: Optional[str] = None

    @property
    def scanned(self) -> bool:
        return self.to_block is not None


class EventRelayer:
    """
    Polls every registered protocol for new events and relays them.

    Cycle:
    1. Read chain head H; stop if H <= checkpoint
    2. Query logs of each (protocol, event) in (checkpoint, H]
    3. Hand each event to the submitter
    4. Advance checkpoint to H, even if some queries failed
    """

    def __init__(
        self,
        chain: ChainClient,
        registry: ProtocolRegistry,
        submitter: RelaySubmitter,
        state: Optional[RelayState] = None,
        store: Optional[RelayStore] = None,
        poll_interval_seconds: float = 10.0,
    ):
        self.chain = chain
        self.registry = registry
        self.submitter = submitter
        if state is not None and state.ledger is not submitter.ledger:
            raise ValueError("RelayState.ledger must be the submitter's ledger")
        self.state = state or RelayState(ledger=submitter.ledger)
        self.store = store
        self.poll_interval_seconds = poll_interval_seconds

        self._running = False
        self._stop_event = asyncio.Event()
        self._cycle: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def initialize_checkpoint(self, from_block: Optional[int] = None) -> int:
        """
        Set the starting checkpoint.

        Precedence: explicit from_block (scan starts at that block), then a
        persisted checkpoint, then the current chain head (no history).
        """
        if from_block is not None:
            checkpoint = max(from_block - 1, 0)
            source = "from_block"
        else:
            stored = self.store.load_checkpoint() if self.store else None
            if stored is not None:
                checkpoint = stored
                source = "store"
            else:
                checkpoint = await self.chain.get_block_height()
                source = "chain_head"

        self.state.checkpoint = checkpoint
        logger.info("checkpoint_initialized", checkpoint=checkpoint, source=source)
        return checkpoint

    async def poll_once(self) -> CycleReport:
        """
        Run one cycle. A call made while another cycle is scanning does nothing.
        """
        if self.state.phase is PollPhase.SCANNING:
            logger.warning("poll_skipped_cycle_in_progress", checkpoint=self.state.checkpoint)
            return CycleReport(error="cycle in progress")

        self.state.phase = PollPhase.SCANNING
        try:
            return await self._scan()
        finally:
            self.state.phase = PollPhase.IDLE
            self.state.last_poll_time = datetime.now(timezone.utc)

    async def _scan(self) -> CycleReport:
        try:
            head = await self.chain.get_block_height()
        except Exception as e:
            logger.error("block_height_failed", error=str(e))
            return CycleReport(error=str(e))

        checkpoint = self.state.checkpoint
        if head <= checkpoint:
            return CycleReport()

        report = CycleReport(from_block=checkpoint + 1, to_block=head)
        logger.info("scanning_blocks", from_block=report.from_block, to_block=head)

        for protocol in self.registry.list_protocols():
            for spec in protocol.event_specs:
                try:
                    events = await self.chain.query_logs(
                        protocol, spec.event_name, report.from_block, head
                    )
                except Exception as e:
                    # Range for this event type is dropped, not retried
                    report.failed_queries += 1
                    self.state.failed_queries += 1
                    logger.error(
                        "log_query_failed",
                        protocol=protocol.protocol_id,
                        event_name=spec.event_name,
                        from_block=report.from_block,
                        to_block=head,
                        error=str(e),
                    )
                    continue

                for event in events:
                    result = await self.submitter.handle(spec, event)
                    self.state.count(result)
                    report.results.append(result)

        self.state.checkpoint = max(self.state.checkpoint, head)
        self.state.cycles += 1
        self._save_checkpoint()

        logger.info(
            "poll_cycle_complete",
            checkpoint=self.state.checkpoint,
            events=len(report.results),
            failed_queries=report.failed_queries,
            submitted=self.state.submitted,
            failed=self.state.failed,
        )
        return report

    def _save_checkpoint(self) -> None:
        if self.store is None:
            return
        try:
            self.store.save_checkpoint(self.state.checkpoint)
        except Exception as e:
            logger.error("checkpoint_save_failed", checkpoint=self.state.checkpoint, error=str(e))

    def tick(self) -> bool:
        """
        Timer fire. Starts a cycle unless one is still running.

        Returns True if a cycle was started.
        """
        if self._cycle is not None and not self._cycle.done():
            logger.warning("poll_tick_skipped", checkpoint=self.state.checkpoint)
            return False
        self._cycle = asyncio.create_task(self._run_cycle())
        return True

    async def _run_cycle(self) -> None:
        try:
            await self.poll_once()
        except Exception as e:
            logger.error("poll_cycle_error", error=str(e))

    async def run(self, from_block: Optional[int] = None) -> None:
        """
        Run the relayer until stop() is called.

        Ticks are spaced poll_interval_seconds apart, measured between
        cycle starts. On stop, the in-flight cycle is allowed to finish and
        the relayer can be run again. Startup failures (owner read,
        checkpoint initialization) propagate to the caller.
        """
        loop = asyncio.get_running_loop()

        try:
            owner = await self.submitter.reputation.owner()
            logger.info("reputation_contract_connected", owner=owner)

            await self.initialize_checkpoint(from_block)
            logger.info(
                "relayer_starting",
                poll_interval=self.poll_interval_seconds,
                protocols=[p.protocol_id for p in self.registry.list_protocols()],
            )

            # A stop requested before the loop starts still wins
            self._running = not self._stop_event.is_set()
            while self._running:
                started = loop.time()
                self.tick()
                remaining = self.poll_interval_seconds - (loop.time() - started)
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=max(remaining, 0))
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            if self._cycle is not None and not self._cycle.done():
                logger.info("waiting_for_cycle")
                await self._cycle
            self._stop_event.clear()
            logger.info("relayer_stopped", checkpoint=self.state.checkpoint)

    def stop(self) -> None:
        """Stop scheduling new cycles."""
        self._running = False
        self._stop_event.set()
        logger.info("relayer_stopping")
