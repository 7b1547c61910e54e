"""
Tests for tradebridge/utils/config.py
"""

import pytest

from tradebridge.utils.config import DEFAULT_SYMBOL_VARIANTS, Config, ExecutionSettings

ENV_KEYS = [
    "ACCOUNT_ID", "PRICE_CACHE_TTL_MS", "EXECUTION_TIMEOUT_MS", "SLIPPAGE_POINTS",
    "MIN_LOT_SIZE", "MAX_LOT_SIZE", "LOG_LEVEL", "MT5_LOGIN", "MT5_PASSWORD", "MT5_SERVER",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def custom_config(tmp_path):
    (tmp_path / "config.yaml").write_text(
        "account:\n"
        "  account_id: live-7\n"
        "cache:\n"
        "  price_ttl_ms: 500\n"
        "execution:\n"
        "  timeout_ms: 3000\n"
        "  magic_number: 42\n"
        "symbols:\n"
        "  variants:\n"
        "    xagusd: [SILVER, XAGUSD]\n"
        "    US30: [US30, DJ30]\n"
    )
    return Config(config_dir=str(tmp_path))


class TestConfig:

    def test_project_defaults(self):
        config = Config()

        assert config.price_ttl_ms == 1000
        assert config.execution_timeout_ms == 5000
        assert config.get("execution.magic_number") == 29301991
        assert config.get("risk.default_stop") == {"type": "points", "value": 50}

    def test_dot_notation_default(self):
        config = Config()

        assert config.get("missing.key", "fallback") == "fallback"
        assert config.get("cache.price_ttl_ms.deeper") is None

    def test_missing_config_file(self, tmp_path):
        config = Config(config_dir=str(tmp_path))

        assert config.main_config == {}
        assert config.price_ttl_ms == 1000

    def test_environment_overrides_yaml(self, monkeypatch, custom_config):
        monkeypatch.setenv("PRICE_CACHE_TTL_MS", "250")
        monkeypatch.setenv("ACCOUNT_ID", "env-account")

        assert custom_config.price_ttl_ms == 250
        assert custom_config.account_id == "env-account"

    def test_mt5_credentials_required(self):
        config = Config()

        with pytest.raises(ValueError, match="MT5_LOGIN"):
            _ = config.mt5_login

    def test_mt5_credentials_from_env(self, monkeypatch):
        monkeypatch.setenv("MT5_LOGIN", "123456")
        monkeypatch.setenv("MT5_PASSWORD", "secret")
        monkeypatch.setenv("MT5_SERVER", "Demo-Server")
        config = Config()

        assert config.mt5_login == 123456
        assert config.mt5_password == "secret"
        assert config.mt5_server == "Demo-Server"


class TestExecutionSettings:

    def test_defaults(self):
        settings = ExecutionSettings()

        assert settings.price_ttl == 1.0
        assert settings.execution_timeout == 5.0
        assert settings.read_timeout == 5.0
        assert settings.magic_number == 29301991
        assert settings.symbol_variants["XAUUSD"][:2] == ["XAUUSD", "GOLD"]

    def test_default_variants_are_copied(self):
        settings = ExecutionSettings()
        settings.symbol_variants["XAUUSD"].append("OTHER")

        assert "OTHER" not in DEFAULT_SYMBOL_VARIANTS["XAUUSD"]

    def test_from_config(self, custom_config):
        settings = ExecutionSettings.from_config(custom_config)

        assert settings.account_id == "live-7"
        assert settings.price_ttl == 0.5
        assert settings.execution_timeout == 3.0
        assert settings.magic_number == 42
        assert settings.max_workers == 16

    def test_variants_merge_over_defaults(self, custom_config):
        variants = ExecutionSettings.from_config(custom_config).symbol_variants

        assert variants["XAGUSD"] == ["SILVER", "XAGUSD"]
        assert variants["US30"] == ["US30", "DJ30"]
        assert variants["XAUUSD"] == DEFAULT_SYMBOL_VARIANTS["XAUUSD"]

    def test_from_config_env_override(self, monkeypatch, custom_config):
        monkeypatch.setenv("MAX_LOT_SIZE", "5")

        assert ExecutionSettings.from_config(custom_config).max_lot_size == 5.0
