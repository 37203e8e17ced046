"""
Pydantic models for read API responses.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Reputation
# ============================================================================


class ScoreData(_CamelModel):
    """Reputation score of one address."""

    address: str = Field(..., description="Checksummed EVM address")
    total_score: int = Field(..., ge=0, description="Aggregated reputation score")
    breakdown: dict[str, int] = Field(default_factory=dict, description="Score per protocol")


class ReputationResponse(_CamelModel):
    success: bool
    data: Optional[ScoreData] = None
    error: Optional[str] = None


# ============================================================================
# Health / Stats
# ============================================================================


class HealthResponse(_CamelModel):
    success: bool = True
    status: str = Field(..., description="healthy or unhealthy")
    timestamp: str = Field(..., description="ISO-8601 server time")


class StatsData(_CamelModel):
    """Relay counters."""

    protocols_monitored: int
    events_processed: int = Field(..., description="Event identities currently claimed")
    checkpoint: int = Field(..., description="Last fully scanned block")
    cycles: int
    submitted: int
    already_processed: int
    invalid: int
    failed: int
    failed_queries: int
    uptime: float = Field(..., description="Seconds since API start")
    last_poll_time: Optional[str] = Field(None, description="ISO-8601 UTC end of the last cycle")


class StatsResponse(_CamelModel):
    success: bool = True
    data: StatsData
