"""Configuration for the swap indexer.

Settings come from SWAPINDEXER_* environment variables (and .env), optionally
overlaid by a YAML file. Pool addresses may be given inline or as paths to
files holding them, the way the pool's deploy scripts write them out.
"""

import json
import os
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Optional

import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from swapcore.config import TOKEN_SWAP_PROGRAM_ID, PoolConfig, RoleStrategy


class ConfigError(ValueError):
    """Missing or invalid configuration; the indexer cannot start."""


class IndexerMode(StrEnum):
    LIVE = "live"  # logsSubscribe plus backfill on every (re)connect
    POLL = "poll"  # backfill on a fixed interval


class IndexerConfig(BaseSettings):
    """Configuration for the swap indexer.

    Environment variables:
    - SWAPINDEXER_RPC_URL: JSON-RPC endpoint (default: http://localhost:8899)
    - SWAPINDEXER_WS_URL: WebSocket endpoint (default: derived from RPC URL)
    - SWAPINDEXER_SWAP_ACCOUNT_KEY_PATH: Pool keypair file (JSON byte array)
    - SWAPINDEXER_MODE: live or poll (default: live)
    - SWAPINDEXER_DATABASE_URL: Database connection URL (default: sqlite:///swap_events.db)
    """

    # Ledger endpoints
    rpc_url: str = Field(default="http://localhost:8899", description="Solana JSON-RPC URL")
    ws_url: Optional[str] = Field(default=None, description="Solana WebSocket URL")
    commitment: str = Field(default="confirmed", description="Commitment level for reads")

    # Pool
    program_id: str = Field(default=TOKEN_SWAP_PROGRAM_ID, description="Swap program id")
    swap_account_key_path: Optional[str] = Field(default=None, description="Pool keypair file")
    swap_account_address: Optional[str] = Field(default=None, description="Pool address")
    mint_a_path: Optional[str] = None
    mint_a: Optional[str] = None
    mint_b_path: Optional[str] = None
    mint_b: Optional[str] = None
    vault_a_path: Optional[str] = None
    vault_a: Optional[str] = None
    vault_b_path: Optional[str] = None
    vault_b: Optional[str] = None
    role_strategy: RoleStrategy = Field(
        default=RoleStrategy.POSITIONAL, description="How input/output accounts are found"
    )

    # Reconciliation
    mode: IndexerMode = IndexerMode.LIVE
    poll_interval: float = Field(default=5.0, gt=0, description="Seconds between poll passes")
    page_size: int = Field(default=40, ge=1, le=1000, description="Signatures per page")
    max_backfill_pages: Optional[int] = Field(
        default=None, ge=1, description="Page limit per pass; a truncated pass holds the cursor"
    )
    seen_cache_size: int = Field(default=10_000, ge=1, description="Seen-signature LRU size")
    retry_delay: float = Field(default=5.0, ge=0, description="Seconds before a failed item is retried by backfill")
    max_retry_attempts: int = Field(default=5, ge=1, description="Consecutive failures before retries stop")
    max_retry_elapsed: float = Field(default=300.0, gt=0, description="Seconds of failures before retries stop")

    # RPC client
    rpc_max_retries: int = Field(default=3, ge=0)
    rpc_timeout: float = Field(default=30.0, gt=0)
    rpc_rate_limit: int = Field(default=40, ge=1, description="Requests per 10s window")

    # Writer settings
    batch_size: int = Field(default=100, ge=1, description="Events to batch before bulk insert")
    flush_interval: float = Field(default=5.0, gt=0, description="Max seconds between flushes")

    # Health monitoring
    health_log_interval: float = Field(default=300.0, gt=0, description="Seconds between health log lines")

    # Database URL
    database_url: str = "sqlite:///swap_events.db"

    # Query API
    api_enabled: bool = True
    api_host: str = "0.0.0.0"
    api_port: int = Field(default=3001, ge=1, le=65535)

    model_config = SettingsConfigDict(
        env_prefix="SWAPINDEXER_",
        env_file=".env",
        extra="ignore",
    )

    def get_ws_url(self) -> str:
        """WebSocket URL, derived from the RPC URL when not set.

        Follows the validator's convention: http -> ws, https -> wss and the
        default RPC port 8899 -> 8900.
        """
        if self.ws_url:
            return self.ws_url
        if self.rpc_url.startswith("https://"):
            url = "wss://" + self.rpc_url[len("https://"):]
        elif self.rpc_url.startswith("http://"):
            url = "ws://" + self.rpc_url[len("http://"):]
        else:
            url = self.rpc_url
        return url.replace(":8899", ":8900")


@dataclass(frozen=True)
class PoolAddresses:
    """Validated base58 addresses of the indexed pool."""
    swap_account: str
    mint_a: Optional[str] = None
    mint_b: Optional[str] = None
    vault_a: Optional[str] = None
    vault_b: Optional[str] = None


def load_config(config_path: Optional[str] = None) -> IndexerConfig:
    """Load configuration from environment, overlaid by an optional YAML file.

    Args:
        config_path: Path to config file. If None, checks:
            1. SWAPINDEXER_CONFIG_PATH environment variable
            2. conf/swap_indexer.yaml
            3. swap_indexer.yaml
            Without any file, environment variables alone are used.

    Returns:
        Validated IndexerConfig.

    Raises:
        ConfigError: If the file is missing, not valid YAML, or fails validation.
    """
    if config_path is None:
        config_path = os.environ.get("SWAPINDEXER_CONFIG_PATH")

    if config_path is None:
        search_paths = [
            Path("conf/swap_indexer.yaml"),
            Path("swap_indexer.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    data = {}
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {config_path} must contain a mapping")

    try:
        return IndexerConfig(**data)
    except ValidationError as e:
        raise ConfigError(str(e)) from e


def _read_file(path: str, what: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ConfigError(f"Cannot read {what} file {path}: {e}") from e


def _validate_address(value: str, what: str) -> str:
    try:
        return str(Pubkey.from_string(value))
    except ValueError as e:
        raise ConfigError(f"Invalid {what} address {value!r}: {e}") from e


def read_keypair_address(path: str) -> str:
    """Public key of a keypair file (JSON array of 64 secret key bytes)."""
    raw = _read_file(path, "swap account keypair")
    try:
        secret = bytes(json.loads(raw))
        return str(Keypair.from_bytes(secret).pubkey())
    except (ValueError, TypeError) as e:
        raise ConfigError(f"Invalid keypair file {path}: {e}") from e


def _optional_address(config: IndexerConfig, name: str) -> Optional[str]:
    inline = getattr(config, name)
    path = getattr(config, f"{name}_path")
    if inline:
        return _validate_address(inline, name)
    if path:
        return _validate_address(_read_file(path, name), name)
    return None


def resolve_pool(config: IndexerConfig) -> PoolAddresses:
    """Read and validate every pool address the configuration points at.

    Raises:
        ConfigError: If the pool address is missing or any address is unreadable
            or malformed.
    """
    if config.swap_account_address:
        swap_account = _validate_address(config.swap_account_address, "swap account")
    elif config.swap_account_key_path:
        swap_account = read_keypair_address(config.swap_account_key_path)
    else:
        raise ConfigError(
            "No pool configured. Set SWAPINDEXER_SWAP_ACCOUNT_KEY_PATH or SWAPINDEXER_SWAP_ACCOUNT_ADDRESS"
        )

    _validate_address(config.program_id, "program")

    addresses = PoolAddresses(
        swap_account=swap_account,
        mint_a=_optional_address(config, "mint_a"),
        mint_b=_optional_address(config, "mint_b"),
        vault_a=_optional_address(config, "vault_a"),
        vault_b=_optional_address(config, "vault_b"),
    )
    if (addresses.mint_a is None) != (addresses.mint_b is None):
        raise ConfigError("mint_a and mint_b must be configured together")
    if addresses.mint_a is not None and addresses.mint_a == addresses.mint_b:
        raise ConfigError("mint_a and mint_b must differ")
    if (addresses.vault_a is None) != (addresses.vault_b is None):
        raise ConfigError("vault_a and vault_b must be configured together")
    return addresses


def to_pool_config(config: IndexerConfig, addresses: PoolAddresses) -> PoolConfig:
    """Build the reconstructor's PoolConfig from resolved addresses."""
    return PoolConfig(
        program_id=config.program_id,
        swap_account=addresses.swap_account,
        mint_a=addresses.mint_a,
        mint_b=addresses.mint_b,
        vault_a=addresses.vault_a,
        vault_b=addresses.vault_b,
        role_strategy=config.role_strategy,
    )
