"""
Reputation Relay

Watches events emitted by protocol contracts (name service, DEX, lending,
NFT marketplace, multisig), turns each one into a reputation update and
submits it exactly once to the ReputationSBT aggregating contract.

Usage:
    # Run the relay with the read API
    reputation-relay run

    # Scan a block range once
    reputation-relay once --from-block 1200000

    # Read a score
    reputation-relay score 0x...
"""

__version__ = "0.1.0"

from .config import ConfigurationError, RelayerConfig, Settings
from .evm import ChainClient, RawEvent, ReputationContract
from .extractor import MissingUserFieldError, extract
from .ledger import DedupLedger, event_identity
from .protocols import EventSpec, ProtocolConfig, ProtocolRegistry, build_registry
from .relayer import CycleReport, EventRelayer, PollPhase, RelayState
from .scores import ReputationScore, ScoreQueryFacade
from .store import RelayStore
from .submitter import ExtractedUpdate, HandleResult, Outcome, RelaySubmitter

__all__ = [
    "__version__",
    "ConfigurationError",
    "RelayerConfig",
    "Settings",
    "ChainClient",
    "RawEvent",
    "ReputationContract",
    "MissingUserFieldError",
    "extract",
    "DedupLedger",
    "event_identity",
    "EventSpec",
    "ProtocolConfig",
    "ProtocolRegistry",
    "build_registry",
    "CycleReport",
    "EventRelayer",
    "PollPhase",
    "RelayState",
    "ReputationScore",
    "ScoreQueryFacade",
    "RelayStore",
    "ExtractedUpdate",
    "HandleResult",
    "Outcome",
    "RelaySubmitter",
]
