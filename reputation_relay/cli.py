"""
CLI entry point for the Reputation Relay.
"""

import asyncio
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog
import typer

from .config import ConfigurationError, RelayerConfig
from .evm import ChainClient, ReputationContract
from .ledger import DedupLedger
from .protocols import ProtocolRegistry, build_registry
from .relayer import EventRelayer
from .scores import ScoreQueryFacade
from .store import RelayStore
from .submitter import Outcome, RelaySubmitter

app = typer.Typer(
    name="reputation-relay",
    help="Protocol event relay for the on-chain reputation aggregator",
    add_completion=False,
)


def configure_logging(json_logs: bool = False) -> None:
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(),
        ]
    )


@dataclass
class Relay:
    """Wired-up relay components."""

    config: RelayerConfig
    registry: ProtocolRegistry
    chain: ChainClient
    reputation: ReputationContract
    relayer: EventRelayer
    scores: ScoreQueryFacade
    store: Optional[RelayStore] = None


def build_relay(config: RelayerConfig) -> Relay:
    """
    Construct every component from configuration.

    Raises:
        ConfigurationError: if the signing key or aggregator address is missing.
    """
    config.require_signing()
    settings = config.settings

    registry = build_registry(settings)
    chain = ChainClient(
        rpc_url=settings.rpc_url,
        private_key=settings.private_key,
        chain_id=settings.chain_id,
        receipt_timeout=settings.tx_receipt_timeout,
    )
    reputation = ReputationContract(chain, settings.reputation_contract_address)
    store = RelayStore(settings.database_url) if settings.database_url else None

    submitter = RelaySubmitter(chain, reputation, DedupLedger(), store=store)
    relayer = EventRelayer(
        chain,
        registry,
        submitter,
        store=store,
        poll_interval_seconds=settings.poll_interval_seconds,
    )

    return Relay(
        config=config,
        registry=registry,
        chain=chain,
        reputation=reputation,
        relayer=relayer,
        scores=ScoreQueryFacade(reputation),
        store=store,
    )


def _load(config_path: Optional[Path]) -> Relay:
    config = RelayerConfig.from_env(config_path)
    try:
        return build_relay(config)
    except ConfigurationError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1)


async def _run_without_api(relayer: EventRelayer, from_block: Optional[int]) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, relayer.stop)
    await relayer.run(from_block=from_block)


@app.command()
def run(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to .env configuration file",
    ),
    from_block: Optional[int] = typer.Option(
        None,
        "--from-block",
        help="First block to scan (default: persisted checkpoint, else chain head)",
    ),
    no_api: bool = typer.Option(
        False,
        "--no-api",
        help="Run the relay without the read API",
    ),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
) -> None:
    """
    Start the relay and (unless --no-api) the read API.
    """
    configure_logging(json_logs)
    relay = _load(config_path)
    settings = relay.config.settings

    if not len(relay.registry):
        typer.echo("Warning: no protocol contract addresses configured; nothing to watch.")

    if no_api:
        typer.echo("Running relay. Press Ctrl+C to stop.")
        try:
            asyncio.run(_run_without_api(relay.relayer, from_block))
        except Exception as e:
            typer.echo(f"Relay stopped: {e}", err=True)
            raise typer.Exit(code=1)
        return

    import uvicorn

    from .api import create_app

    api = create_app(
        relay.relayer,
        relay.scores,
        run_relayer=True,
        from_block=from_block,
        allowed_origins=settings.allowed_origins,
    )
    typer.echo(f"Reputation API on http://{settings.host}:{settings.port}")
    uvicorn.run(api, host=settings.host, port=settings.port)


@app.command()
def once(
    from_block: int = typer.Option(..., "--from-block", help="First block to scan"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to .env configuration file"
    ),
) -> None:
    """
    Scan from --from-block to the chain head once and exit.
    """
    configure_logging()
    relay = _load(config_path)

    async def _once():
        await relay.relayer.initialize_checkpoint(from_block)
        return await relay.relayer.poll_once()

    report = asyncio.run(_once())

    if report.error:
        typer.echo(f"✗ Cycle failed: {report.error}")
        raise typer.Exit(code=1)

    for result in report.results:
        if result.outcome is Outcome.SUBMITTED:
            typer.echo(f"✓ Relayed {result.identity}: {result.relay_tx_hash}")
        elif result.outcome is Outcome.ALREADY_PROCESSED:
            typer.echo(f"= Already processed {result.identity}")
        elif result.outcome is not Outcome.DUPLICATE:
            typer.echo(f"✗ {result.outcome.value} {result.identity}: {result.error}")

    typer.echo(
        f"Scanned blocks {report.from_block}-{report.to_block}: "
        f"{len(report.results)} events, {report.failed_queries} failed queries"
        if report.scanned
        else "No new blocks."
    )


@app.command()
def score(
    address: str = typer.Argument(..., help="EVM address to look up"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to .env configuration file"
    ),
) -> None:
    """
    Show the reputation score of an address.
    """
    configure_logging()
    relay = _load(config_path)

    result = asyncio.run(relay.scores.get_reputation_score(address))
    if result is None:
        typer.echo("No reputation found.")
        raise typer.Exit(code=1)

    typer.echo(f"Address: {result.address}")
    typer.echo(f"Total:   {result.total_score}")
    for protocol, points in result.breakdown.items():
        typer.echo(f"  {protocol:<10} {points}")


@app.command()
def protocols(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to .env configuration file"
    ),
) -> None:
    """
    List the protocols and events the relay would watch.
    """
    configure_logging()
    registry = build_registry(RelayerConfig.from_env(config_path).settings)

    if not len(registry):
        typer.echo("No protocols configured.")
        return

    for protocol in registry:
        typer.echo(f"{protocol.protocol_id} @ {protocol.contract_address}")
        for spec in protocol.event_specs:
            if spec.fixed_value is not None:
                rule = f"fixed {spec.fixed_value}"
            else:
                rule = f"value from '{spec.value_field}'"
            typer.echo(f"  {spec.event_name}: user '{spec.user_field}', {rule}")


@app.command()
def version() -> None:
    """Show the relay version."""
    from reputation_relay import __version__
    typer.echo(f"reputation-relay v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
