"""
Read-only reputation score lookups against the aggregating contract.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence

import structlog

from .evm import ReputationContract
from .protocols import KNOWN_PROTOCOLS

logger = structlog.get_logger()


@dataclass
class ReputationScore:
    """Total and per-protocol score for one address."""

    address: str
    total_score: int
    breakdown: dict[str, int] = field(default_factory=dict)


class ScoreQueryFacade:
    """Best-effort reads: any failed call yields None instead of raising."""

    def __init__(
        self,
        reputation: ReputationContract,
        protocols: Sequence[str] = KNOWN_PROTOCOLS,
    ):
        self.reputation = reputation
        self.protocols = tuple(protocols)

    async def get_reputation_score(self, address: str) -> Optional[ReputationScore]:
        try:
            total = await self.reputation.get_reputation_score(address)
            breakdown = {}
            for protocol in self.protocols:
                breakdown[protocol] = int(
                    await self.reputation.get_protocol_score(address, protocol)
                )
        except Exception as e:
            logger.error("reputation_read_failed", address=address, error=str(e))
            return None

        return ReputationScore(address=address, total_score=int(total), breakdown=breakdown)
