"""
Index Order Configuration

Loads all sections of config.toml at startup.
Environment variables override TOML values.
"""

from .loader import (
    ServiceConfig,
    ChainConfig,
    ContractsConfig,
    OracleConfig,
    OrderBookConfig,
    SubmissionConfig,
    PendingConfig,
    MonitorConfig,
    ServerConfig,
    load_config,
)

__all__ = [
    "ServiceConfig",
    "ChainConfig",
    "ContractsConfig",
    "OracleConfig",
    "OrderBookConfig",
    "SubmissionConfig",
    "PendingConfig",
    "MonitorConfig",
    "ServerConfig",
    "load_config",
]
