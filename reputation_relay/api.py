"""
Reputation read API.

Endpoints:
- GET /reputation/{address}  total and per-protocol score
- GET /health                liveness (503 once the relay task has exited)
- GET /stats                 relay counters

When given a relayer to run, the relay loop lives in the app lifespan and is
stopped (letting the current cycle finish) on shutdown.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from web3 import Web3

from . import __version__
from .models import (
    HealthResponse,
    ReputationResponse,
    ScoreData,
    StatsData,
    StatsResponse,
)
from .relayer import EventRelayer
from .scores import ScoreQueryFacade

logger = structlog.get_logger()


def _error(status_code: int, message: str) -> JSONResponse:
    body = ReputationResponse(success=False, error=message)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


def create_app(
    relayer: EventRelayer,
    scores: ScoreQueryFacade,
    run_relayer: bool = False,
    from_block: Optional[int] = None,
    allowed_origins: Optional[list[str]] = None,
) -> FastAPI:
    """Build the API around an existing relayer and score facade."""
    started_at = time.monotonic()
    relay_task: Optional[asyncio.Task] = None

    def _on_relay_exit(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "relayer_crashed",
                error=str(error),
                error_type=type(error).__name__,
            )

    def _relay_down() -> bool:
        return relay_task is not None and relay_task.done()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        nonlocal relay_task
        if run_relayer:
            relay_task = asyncio.create_task(relayer.run(from_block=from_block))
            relay_task.add_done_callback(_on_relay_exit)

        logger.info("api_started", version=__version__, relay=run_relayer)

        yield

        if relay_task is not None:
            relayer.stop()
            # A crash was already logged by the done callback
            await asyncio.gather(relay_task, return_exceptions=True)

        logger.info("api_stopped")

    app = FastAPI(
        title="Reputation Relay API",
        description="Read-only reputation scores and relay status",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins or ["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.get("/reputation/{address}", response_model=ReputationResponse)
    async def get_reputation(address: str):
        if not Web3.is_address(address):
            return _error(400, "Invalid Ethereum address")

        score = await scores.get_reputation_score(Web3.to_checksum_address(address))
        if score is None:
            return _error(404, "No reputation found")

        return ReputationResponse(
            success=True,
            data=ScoreData(
                address=score.address,
                total_score=score.total_score,
                breakdown=score.breakdown,
            ),
        )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        timestamp = datetime.now(timezone.utc).isoformat()
        if _relay_down():
            body = HealthResponse(success=False, status="unhealthy", timestamp=timestamp)
            return JSONResponse(status_code=503, content=body.model_dump(by_alias=True))
        return HealthResponse(status="healthy", timestamp=timestamp)

    @app.get("/stats", response_model=StatsResponse)
    async def stats() -> StatsResponse:
        state = relayer.state
        return StatsResponse(
            data=StatsData(
                protocols_monitored=len(relayer.registry),
                events_processed=len(state.ledger),
                checkpoint=state.checkpoint,
                cycles=state.cycles,
                submitted=state.submitted,
                already_processed=state.already_processed,
                invalid=state.invalid,
                failed=state.failed,
                failed_queries=state.failed_queries,
                uptime=time.monotonic() - started_at,
                last_poll_time=state.last_poll_time.isoformat() if state.last_poll_time else None,
            )
        )

    return app
