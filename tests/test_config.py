"""
Service Configuration Test Suite

Run with:
    pytest tests/test_config.py -v
"""

import pytest

from indexorder.config import ServiceConfig, load_config
from indexorder.exceptions import ConfigurationError

ENV_KEYS = (
    "CHAIN_ID", "RPC_URL", "INDEX_ORACLE_ADDRESS", "LIMIT_ORDER_PROTOCOL", "ORDERBOOK_API_URL",
    "ONEINCH_API_KEY", "INDEXORDER_ORACLE_MODE", "INDEXORDER_ORACLE_OWNER", "INDEXORDER_PENDING_BACKEND",
    "INDEXORDER_PENDING_DB", "INDEXORDER_MONITOR_ENABLED", "INDEXORDER_MONITOR_INTERVAL",
    "INDEXORDER_HOST", "INDEXORDER_PORT", "LOG_LEVEL", "INDEXORDER_CONFIG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestServiceConfig:

    def test_defaults_validate(self):
        cfg = ServiceConfig()
        assert cfg.validate()
        assert cfg.chain.chain_id == 8453
        assert cfg.pending.backend == "memory"
        assert cfg.submission.max_attempts == 3

    def test_from_dict(self):
        cfg = ServiceConfig.from_dict({
            "chain": {"chain_id": 1, "rpc_url": "http://localhost:8545"},
            "oracle": {"mode": "local", "feed_staleness": 120},
            "submission": {"max_attempts": 5, "base_delay": 0.5, "multiplier": 2},
            "pending": {"backend": "sqlite", "ttl": 600},
            "monitor": {"enabled": False, "interval": 5},
        })
        assert cfg.chain.chain_id == 1
        assert cfg.oracle.mode == "local"
        assert cfg.oracle.feed_staleness == 120.0
        assert cfg.submission.multiplier == 2.0
        assert cfg.pending.ttl == 600.0
        assert cfg.monitor.enabled is False
        assert cfg.validate()

    def test_api_key_only_from_env(self, monkeypatch):
        cfg = ServiceConfig.from_dict({"orderbook": {"api_key": "from-toml"}})
        assert cfg.orderbook.api_key != "from-toml"

        monkeypatch.setenv("ONEINCH_API_KEY", "from-env")
        cfg.apply_env()
        assert cfg.orderbook.api_key == "from-env"
        assert cfg.to_dict()["orderbook"]["api_key"] == "***"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("CHAIN_ID", "10")
        monkeypatch.setenv("INDEXORDER_PORT", "4000")
        monkeypatch.setenv("INDEXORDER_MONITOR_ENABLED", "false")
        monkeypatch.setenv("INDEXORDER_PENDING_BACKEND", "sqlite")

        cfg = ServiceConfig.from_dict({"chain": {"chain_id": 1}})
        cfg.apply_env()

        assert cfg.chain.chain_id == 10
        assert cfg.server.port == 4000
        assert cfg.monitor.enabled is False
        assert cfg.pending.backend == "sqlite"

    def test_addresses_checksummed_on_validate(self):
        cfg = ServiceConfig.from_dict({"contracts": {"index_oracle": "0x" + "ab" * 20}})
        cfg.validate()
        assert cfg.contracts.index_oracle.lower() == "0x" + "ab" * 20
        assert cfg.contracts.index_oracle != "0x" + "ab" * 20

    @pytest.mark.parametrize("data", [
        {"chain": {"chain_id": 0}},
        {"chain": {"rpc_url": "ws://node"}},
        {"contracts": {"index_oracle": "0x1234"}},
        {"contracts": {"limit_order_protocol": "0x" + "00" * 20}},
        {"oracle": {"mode": "chainlink"}},
        {"submission": {"max_attempts": 0}},
        {"pending": {"backend": "redis"}},
        {"pending": {"ttl": 0}},
        {"monitor": {"interval": 0}},
        {"server": {"port": 70000}},
        {"server": {"log_level": "chatty"}},
    ])
    def test_invalid(self, data):
        with pytest.raises(ConfigurationError):
            ServiceConfig.from_dict(data).validate()


class TestLoadConfig:

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = load_config(str(tmp_path / "missing.toml"))
        assert cfg.chain.chain_id == 8453

    def test_toml_file(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(
            '[chain]\nchain_id = 137\nrpc_url = "https://polygon.example"\n\n'
            '[pending]\nbackend = "sqlite"\nsqlite_path = "db/pending.db"\n'
        )
        cfg = load_config(str(path))
        assert cfg.chain.chain_id == 137
        assert cfg.pending.sqlite_path == "db/pending.db"

    def test_config_path_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.toml"
        path.write_text("[server]\nport = 5050\n")
        monkeypatch.setenv("INDEXORDER_CONFIG", str(path))
        assert load_config().server.port == 5050

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("[chain\nchain_id = ")
        with pytest.raises(ConfigurationError):
            load_config(str(path))
