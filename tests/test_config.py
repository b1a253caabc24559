"""Unit tests for config module."""

import os
from unittest.mock import patch

import pytest

from paywatch.core.config import Config


class TestConfig:
    """Tests for Config class."""

    def test_defaults(self) -> None:
        config = Config()

        assert config.storage_backend == "memory"
        assert config.poll_interval == 5.0
        assert config.intent_ttl == 86400
        assert config.session_ttl == 300
        assert config.rate_cache_ttl == 60.0
        assert config.default_cooldown_hours == 24.0
        assert config.default_min_confirmations == 3
        assert config.qr_renderer == "native"
        assert config.test_mode is False

    def test_config_is_immutable(self) -> None:
        config = Config()

        with pytest.raises(AttributeError):
            config.poll_interval = 1.0  # type: ignore

    @pytest.mark.parametrize(
        "field",
        ["poll_interval", "intent_ttl", "session_ttl", "rate_cache_ttl", "ledger_query_timeout"],
    )
    def test_non_positive_intervals_raise(self, field: str) -> None:
        with pytest.raises(ValueError, match=f"{field} must be positive"):
            Config(**{field: 0})

    def test_negative_cooldown_raises(self) -> None:
        with pytest.raises(ValueError, match="cannot be negative"):
            Config(default_cooldown_hours=-1)

    def test_min_confirmations_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="at least 1"):
            Config(default_min_confirmations=0)

    def test_unknown_qr_renderer_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown qr_renderer"):
            Config(qr_renderer="ascii")

    def test_with_updates_returns_copy(self) -> None:
        config = Config()
        updated = config.with_updates(poll_interval=2.0)

        assert updated.poll_interval == 2.0
        assert config.poll_interval == 5.0

    def test_network_urls_follow_testnet_flag(self) -> None:
        testnet = Config(use_testnet=True)
        mainnet = Config(use_testnet=False)

        assert testnet.ledger_rpc_url == testnet.xrpl_testnet_rpc_url
        assert testnet.ledger_ws_url == testnet.xrpl_testnet_ws_url
        assert mainnet.ledger_rpc_url == mainnet.xrpl_rpc_url
        assert mainnet.ledger_ws_url == mainnet.xrpl_ws_url

    def test_masked_price_api_key(self) -> None:
        assert Config().masked_price_api_key() == ""
        assert Config(price_api_key="short").masked_price_api_key() == "****"
        assert Config(price_api_key="CG-abcdefghijkl").masked_price_api_key() == "CG-a...ijkl"


class TestConfigFromEnv:
    """Tests for Config.from_env()."""

    def test_from_env_reads_variables(self) -> None:
        env = {
            "PAYWATCH_ENV": "production",
            "PAYWATCH_STORAGE_BACKEND": "redis",
            "PAYWATCH_REDIS_URL": "redis://cache:6379/1",
            "PAYWATCH_TEST_MODE": "true",
            "PAYWATCH_POLL_INTERVAL": "2.5",
            "PAYWATCH_INTENT_TTL": "3600",
            "PAYWATCH_PRICE_API_KEY": "CG-secret",
            "PAYWATCH_QR_RENDERER": "remote",
            "PAYWATCH_LOG_JSON": "1",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.env == "production"
        assert config.storage_backend == "redis"
        assert config.redis_url == "redis://cache:6379/1"
        assert config.test_mode is True
        assert config.poll_interval == 2.5
        assert config.intent_ttl == 3600
        assert config.price_api_key == "CG-secret"
        assert config.qr_renderer == "remote"
        assert config.log_json is True
        # Production defaults to mainnet
        assert config.use_testnet is False

    def test_development_defaults_to_testnet(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            config = Config.from_env()

        assert config.env == "development"
        assert config.use_testnet is True

    def test_ledger_url_override_targets_selected_network(self) -> None:
        env = {"PAYWATCH_USE_TESTNET": "false", "PAYWATCH_XRPL_RPC_URL": "https://node.example/"}
        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.ledger_rpc_url == "https://node.example/"

    def test_overrides_win(self) -> None:
        with patch.dict(os.environ, {"PAYWATCH_POLL_INTERVAL": "9"}, clear=True):
            config = Config.from_env(poll_interval=1.0)

        assert config.poll_interval == 1.0
