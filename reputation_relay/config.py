"""
Configuration management for the Reputation Relay.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Required configuration is missing or unusable."""


class Settings(BaseSettings):
    """Environment-based settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # EVM Network
    rpc_url: str = "https://rpc.testnet.citrea.xyz"
    chain_id: int = 5115
    private_key: str = ""

    # Aggregating contract
    reputation_contract_address: str = ""

    # Monitored protocols (unset = disabled)
    namoshi_contract_address: str = ""
    satsuma_contract_address: str = ""
    spine_contract_address: str = ""
    mint_park_contract_address: str = ""
    asigna_contract_address: str = ""

    # Relay settings
    poll_interval_seconds: float = 10.0
    tx_receipt_timeout: int = 120

    # Read API
    host: str = "127.0.0.1"
    port: int = 3001
    allowed_origins: list[str] = ["*"]

    # Optional checkpoint persistence (sqlite:///./relay.db or postgresql://...)
    database_url: str = ""


@dataclass
class RelayerConfig:
    """Full relayer configuration."""

    settings: Settings

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "RelayerConfig":
        """Load configuration from environment."""
        settings = Settings(_env_file=env_path) if env_path else Settings()
        return cls(settings=settings)

    def require_signing(self) -> None:
        """
        Fail fast when the relay cannot submit anything.

        Raises:
            ConfigurationError: naming every missing value.
        """
        missing = []
        if not self.settings.private_key:
            missing.append("PRIVATE_KEY")
        if not self.settings.reputation_contract_address:
            missing.append("REPUTATION_CONTRACT_ADDRESS")
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )
