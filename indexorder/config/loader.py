"""
Index Order TOML Configuration Loader

Loads every section of config.toml at startup with environment variable
overrides. Defaults come from ``indexorder.constants`` so a bare ``.env``
is enough to run the service.

Environment variable mapping:
    [chain] chain_id                  → CHAIN_ID
    [chain] rpc_url                   → RPC_URL
    [contracts] index_oracle          → INDEX_ORACLE_ADDRESS
    [contracts] limit_order_protocol  → LIMIT_ORDER_PROTOCOL
    [orderbook] api_url               → ORDERBOOK_API_URL
    [server] port                     → INDEXORDER_PORT
    ...

The order-book API key is a secret and is read from ONEINCH_API_KEY only.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from eth_utils import is_address, to_checksum_address

from ..constants import (
    CHAIN_ID,
    RPC_URL,
    INDEX_ORACLE_ADDRESS,
    LIMIT_ORDER_PROTOCOL,
    ONEINCH_API_KEY,
    ORDERBOOK_API_URL,
    INDEXORDER_HOST,
    INDEXORDER_PORT,
    INDEXORDER_MONITOR_ENABLED,
    CONNECTION_TIMEOUT,
    DEFAULT_EXPIRATION_HOURS,
    MAX_EXPIRATION_HOURS,
    PENDING_ORDER_TTL,
    PENDING_SWEEP_INTERVAL,
    FEED_STALENESS_THRESHOLD,
    MONITOR_INTERVAL,
    MONITOR_CALL_TIMEOUT,
    SUBMISSION_MAX_ATTEMPTS,
    SUBMISSION_RETRY_DELAY,
    ZERO_ADDRESS,
)
from ..exceptions import ConfigurationError

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# ---------------------------------------------------------------------------
# Section dataclasses, one per [section] of config.example.toml
# ---------------------------------------------------------------------------


@dataclass
class ChainConfig:
    """[chain] section."""
    chain_id: int = int(CHAIN_ID)
    rpc_url: str = str(RPC_URL)
    rpc_timeout: float = CONNECTION_TIMEOUT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChainConfig":
        return cls(
            chain_id=int(data.get("chain_id", int(CHAIN_ID))),
            rpc_url=data.get("rpc_url", str(RPC_URL)),
            rpc_timeout=float(data.get("rpc_timeout", CONNECTION_TIMEOUT)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("CHAIN_ID"):
            self.chain_id = int(v)
        if v := os.environ.get("RPC_URL"):
            self.rpc_url = v


@dataclass
class ContractsConfig:
    """[contracts] section."""
    index_oracle: str = str(INDEX_ORACLE_ADDRESS)
    limit_order_protocol: str = str(LIMIT_ORDER_PROTOCOL)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContractsConfig":
        return cls(
            index_oracle=data.get("index_oracle", str(INDEX_ORACLE_ADDRESS)),
            limit_order_protocol=data.get("limit_order_protocol", str(LIMIT_ORDER_PROTOCOL)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("INDEX_ORACLE_ADDRESS"):
            self.index_oracle = v
        if v := os.environ.get("LIMIT_ORDER_PROTOCOL"):
            self.limit_order_protocol = v

    def validate(self) -> None:
        for name in ("index_oracle", "limit_order_protocol"):
            value = getattr(self, name)
            if not is_address(value) or value.lower() == ZERO_ADDRESS:
                raise ConfigurationError(f"contracts.{name} is not a valid address: {value!r}")
            setattr(self, name, to_checksum_address(value))


@dataclass
class OracleConfig:
    """[oracle] section.

    ``mode = "contract"`` reads indices from the on-chain oracle through the
    JSON-RPC endpoint; ``mode = "local"`` serves them from the in-process
    registry seeded with the predefined indices.
    """
    mode: str = "contract"
    owner: str = ""
    default_feed_address: str = ""
    feed_staleness: float = FEED_STALENESS_THRESHOLD

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OracleConfig":
        return cls(
            mode=data.get("mode", "contract"),
            owner=data.get("owner", ""),
            default_feed_address=data.get("default_feed_address", ""),
            feed_staleness=float(data.get("feed_staleness", FEED_STALENESS_THRESHOLD)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("INDEXORDER_ORACLE_MODE"):
            self.mode = v
        if v := os.environ.get("INDEXORDER_ORACLE_OWNER"):
            self.owner = v

    def validate(self) -> None:
        if self.mode not in ("contract", "local"):
            raise ConfigurationError(f"oracle.mode must be 'contract' or 'local', got {self.mode!r}")
        if self.feed_staleness <= 0:
            raise ConfigurationError("oracle.feed_staleness must be positive")


@dataclass
class OrderBookConfig:
    """[orderbook] section."""
    api_url: str = str(ORDERBOOK_API_URL)
    api_key: str = str(ONEINCH_API_KEY)
    timeout: float = CONNECTION_TIMEOUT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderBookConfig":
        if "api_key" in data:
            logger.warning("Ignoring orderbook.api_key in TOML; set ONEINCH_API_KEY instead")
        return cls(
            api_url=data.get("api_url", str(ORDERBOOK_API_URL)),
            timeout=float(data.get("timeout", CONNECTION_TIMEOUT)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("ORDERBOOK_API_URL"):
            self.api_url = v
        if v := os.environ.get("ONEINCH_API_KEY"):
            self.api_key = v


@dataclass
class SubmissionConfig:
    """[submission] section."""
    max_attempts: int = SUBMISSION_MAX_ATTEMPTS
    base_delay: float = SUBMISSION_RETRY_DELAY
    multiplier: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubmissionConfig":
        return cls(
            max_attempts=int(data.get("max_attempts", SUBMISSION_MAX_ATTEMPTS)),
            base_delay=float(data.get("base_delay", SUBMISSION_RETRY_DELAY)),
            multiplier=float(data.get("multiplier", 1.0)),
            max_delay=float(data.get("max_delay", 30.0)),
            jitter=float(data.get("jitter", 0.0)),
        )

    def validate(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("submission.max_attempts must be >= 1")
        if self.base_delay < 0 or self.jitter < 0:
            raise ConfigurationError("submission delays must not be negative")


@dataclass
class PendingConfig:
    """[pending] section."""
    backend: str = "memory"
    sqlite_path: str = "data/pending_orders.db"
    ttl: float = PENDING_ORDER_TTL
    sweep_interval: float = PENDING_SWEEP_INTERVAL

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingConfig":
        return cls(
            backend=data.get("backend", "memory"),
            sqlite_path=data.get("sqlite_path", "data/pending_orders.db"),
            ttl=float(data.get("ttl", PENDING_ORDER_TTL)),
            sweep_interval=float(data.get("sweep_interval", PENDING_SWEEP_INTERVAL)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("INDEXORDER_PENDING_BACKEND"):
            self.backend = v
        if v := os.environ.get("INDEXORDER_PENDING_DB"):
            self.sqlite_path = v

    def validate(self) -> None:
        if self.backend not in ("memory", "sqlite"):
            raise ConfigurationError(f"pending.backend must be 'memory' or 'sqlite', got {self.backend!r}")
        if self.ttl <= 0:
            raise ConfigurationError("pending.ttl must be positive")


@dataclass
class MonitorConfig:
    """[monitor] section."""
    enabled: bool = bool(INDEXORDER_MONITOR_ENABLED)
    interval: float = MONITOR_INTERVAL
    call_timeout: float = MONITOR_CALL_TIMEOUT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonitorConfig":
        return cls(
            enabled=data.get("enabled", bool(INDEXORDER_MONITOR_ENABLED)),
            interval=float(data.get("interval", MONITOR_INTERVAL)),
            call_timeout=float(data.get("call_timeout", MONITOR_CALL_TIMEOUT)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("INDEXORDER_MONITOR_ENABLED"):
            self.enabled = _env_flag(v)
        if v := os.environ.get("INDEXORDER_MONITOR_INTERVAL"):
            self.interval = float(v)

    def validate(self) -> None:
        if self.interval <= 0 or self.call_timeout <= 0:
            raise ConfigurationError("monitor.interval and monitor.call_timeout must be positive")


@dataclass
class ServerConfig:
    """[server] section."""
    host: str = str(INDEXORDER_HOST)
    port: int = int(INDEXORDER_PORT)
    default_expiration_hours: int = DEFAULT_EXPIRATION_HOURS
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServerConfig":
        return cls(
            host=data.get("host", str(INDEXORDER_HOST)),
            port=int(data.get("port", int(INDEXORDER_PORT))),
            default_expiration_hours=int(data.get("default_expiration_hours", DEFAULT_EXPIRATION_HOURS)),
            log_level=data.get("log_level", "INFO"),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("INDEXORDER_HOST"):
            self.host = v
        if v := os.environ.get("INDEXORDER_PORT"):
            self.port = int(v)
        if v := os.environ.get("LOG_LEVEL"):
            self.log_level = v

    def validate(self) -> None:
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"server.port out of range: {self.port}")
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ConfigurationError(f"Invalid log_level: {self.log_level}")
        if not 0 < self.default_expiration_hours <= MAX_EXPIRATION_HOURS:
            raise ConfigurationError("server.default_expiration_hours out of range")


# ---------------------------------------------------------------------------
# Root configuration
# ---------------------------------------------------------------------------


@dataclass
class ServiceConfig:
    """Complete service configuration."""
    chain: ChainConfig = field(default_factory=ChainConfig)
    contracts: ContractsConfig = field(default_factory=ContractsConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)
    orderbook: OrderBookConfig = field(default_factory=OrderBookConfig)
    submission: SubmissionConfig = field(default_factory=SubmissionConfig)
    pending: PendingConfig = field(default_factory=PendingConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceConfig":
        return cls(
            chain=ChainConfig.from_dict(data.get("chain", {})),
            contracts=ContractsConfig.from_dict(data.get("contracts", {})),
            oracle=OracleConfig.from_dict(data.get("oracle", {})),
            orderbook=OrderBookConfig.from_dict(data.get("orderbook", {})),
            submission=SubmissionConfig.from_dict(data.get("submission", {})),
            pending=PendingConfig.from_dict(data.get("pending", {})),
            monitor=MonitorConfig.from_dict(data.get("monitor", {})),
            server=ServerConfig.from_dict(data.get("server", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "ServiceConfig":
        """
        Load configuration from a TOML file.

        A missing file is not an error: defaults plus environment
        overrides are used instead.
        """
        path = Path(config_path)
        if not path.exists():
            logger.info("Config file not found: %s, using defaults", config_path)
            cfg = cls()
            cfg.apply_env()
            return cfg

        with open(path, "rb") as f:
            try:
                raw = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

        cfg = cls.from_dict(raw)
        cfg.apply_env()
        return cfg

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        self.chain.apply_env()
        self.contracts.apply_env()
        self.oracle.apply_env()
        self.orderbook.apply_env()
        self.pending.apply_env()
        self.monitor.apply_env()
        self.server.apply_env()

    def validate(self) -> bool:
        """
        Validate all configuration sections.

        Raises:
            ConfigurationError: on invalid config
        """
        if self.chain.chain_id < 1:
            raise ConfigurationError("chain_id must be >= 1")
        if not self.chain.rpc_url.startswith(("http://", "https://")):
            raise ConfigurationError(f"rpc_url must be an http(s) URL: {self.chain.rpc_url!r}")
        self.contracts.validate()
        self.oracle.validate()
        self.submission.validate()
        self.pending.validate()
        self.monitor.validate()
        self.server.validate()
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for diagnostics. Secrets are masked."""
        return {
            "chain": {
                "chain_id": self.chain.chain_id,
                "rpc_url": self.chain.rpc_url,
            },
            "contracts": {
                "index_oracle": self.contracts.index_oracle,
                "limit_order_protocol": self.contracts.limit_order_protocol,
            },
            "oracle": {"mode": self.oracle.mode},
            "orderbook": {
                "api_url": self.orderbook.api_url,
                "api_key": "***" if self.orderbook.api_key else "",
            },
            "submission": {
                "max_attempts": self.submission.max_attempts,
                "base_delay": self.submission.base_delay,
            },
            "pending": {
                "backend": self.pending.backend,
                "ttl": self.pending.ttl,
            },
            "monitor": {
                "enabled": self.monitor.enabled,
                "interval": self.monitor.interval,
            },
        }


# -----------------------------------------------------------------------
# Convenience function
# -----------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> ServiceConfig:
    """
    Load service configuration.

    Resolution order:
        1. Explicit *path* argument
        2. INDEXORDER_CONFIG env var
        3. ./config.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("INDEXORDER_CONFIG", "config.toml")

    return ServiceConfig.from_file(path)
