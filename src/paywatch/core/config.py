"""
Configuration management for PayWatch.

Handles loading configuration from environment variables and validation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any

QR_RENDERERS = ("native", "remote")


def _get_env_var(name: str, default: str | None = None, required: bool = False) -> str | None:
    """Get environment variable with optional default."""
    value = os.environ.get(name, default)
    if required and not value:
        raise ValueError(f"Required environment variable {name} is not set")
    return value


def _get_env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Config:
    """PayWatch configuration."""

    storage_backend: str = "memory"
    redis_url: str | None = None
    log_level: str = "INFO"
    log_json: bool = False
    env: str = "development"

    # Sandbox ledger: synthesize transactions instead of querying a real one
    test_mode: bool = False
    use_testnet: bool = True

    # Price source (CoinGecko compatible)
    price_api_url: str = "https://api.coingecko.com/api/v3"
    price_api_key: str | None = None
    rate_cache_ttl: float = 60.0

    # Observation
    poll_interval: float = 5.0
    ledger_query_timeout: float = 5.0
    subscription_timeout: float = 10.0

    # Intent lifecycle
    intent_ttl: int = 86400  # 24 hours
    session_ttl: int = 300  # 5 minutes
    default_fiat_currency: str = "USD"

    # Organization defaults (used when the organization has no explicit setting)
    default_cooldown_hours: float = 24.0
    default_min_confirmations: int = 3

    # XRP Ledger endpoints
    xrpl_rpc_url: str = "https://xrplcluster.com/"
    xrpl_ws_url: str = "wss://xrplcluster.com"
    xrpl_testnet_rpc_url: str = "https://s.altnet.rippletest.net:51234/"
    xrpl_testnet_ws_url: str = "wss://s.altnet.rippletest.net:51233"

    qr_renderer: str = "native"
    qr_service_url: str = "https://api.qrserver.com/v1/create-qr-code/"

    def __post_init__(self) -> None:
        for name in (
            "rate_cache_ttl",
            "poll_interval",
            "ledger_query_timeout",
            "subscription_timeout",
            "intent_ttl",
            "session_ttl",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.default_cooldown_hours < 0:
            raise ValueError("default_cooldown_hours cannot be negative")
        if self.default_min_confirmations < 1:
            raise ValueError("default_min_confirmations must be at least 1")
        if self.qr_renderer not in QR_RENDERERS:
            raise ValueError(
                f"Unknown qr_renderer: {self.qr_renderer}. Supported: {list(QR_RENDERERS)}"
            )

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables."""
        env = overrides.get("env") or _get_env_var("PAYWATCH_ENV", default="development")

        values: dict[str, Any] = {
            "env": env,
            "storage_backend": _get_env_var("PAYWATCH_STORAGE_BACKEND", default="memory"),
            "redis_url": _get_env_var("PAYWATCH_REDIS_URL"),
            "log_level": _get_env_var("PAYWATCH_LOG_LEVEL", default="INFO"),
            "log_json": _get_env_bool("PAYWATCH_LOG_JSON"),
            "test_mode": _get_env_bool("PAYWATCH_TEST_MODE"),
            "use_testnet": _get_env_bool("PAYWATCH_USE_TESTNET", default=env == "development"),
            "price_api_url": _get_env_var("PAYWATCH_PRICE_API_URL", default=cls.price_api_url),
            "price_api_key": _get_env_var("PAYWATCH_PRICE_API_KEY"),
            "default_fiat_currency": _get_env_var(
                "PAYWATCH_FIAT_CURRENCY", default=cls.default_fiat_currency
            ),
            "qr_renderer": _get_env_var("PAYWATCH_QR_RENDERER", default=cls.qr_renderer),
        }

        poll_interval = _get_env_var("PAYWATCH_POLL_INTERVAL")
        if poll_interval:
            values["poll_interval"] = float(poll_interval)

        intent_ttl = _get_env_var("PAYWATCH_INTENT_TTL")
        if intent_ttl:
            values["intent_ttl"] = int(intent_ttl)

        rpc_url = _get_env_var("PAYWATCH_XRPL_RPC_URL")
        ws_url = _get_env_var("PAYWATCH_XRPL_WS_URL")
        if rpc_url:
            values["xrpl_testnet_rpc_url" if values["use_testnet"] else "xrpl_rpc_url"] = rpc_url
        if ws_url:
            values["xrpl_testnet_ws_url" if values["use_testnet"] else "xrpl_ws_url"] = ws_url

        values.update(overrides)
        return cls(**values)

    def with_updates(self, **updates: Any) -> Config:
        """Create a new Config with updated values."""
        return replace(self, **updates)

    @property
    def ledger_rpc_url(self) -> str:
        """JSON-RPC endpoint for the selected network."""
        return self.xrpl_testnet_rpc_url if self.use_testnet else self.xrpl_rpc_url

    @property
    def ledger_ws_url(self) -> str:
        """WebSocket endpoint for the selected network."""
        return self.xrpl_testnet_ws_url if self.use_testnet else self.xrpl_ws_url

    def masked_price_api_key(self) -> str:
        """Return the price API key with most characters masked for safe logging."""
        if not self.price_api_key:
            return ""
        if len(self.price_api_key) <= 8:
            return "****"
        return self.price_api_key[:4] + "..." + self.price_api_key[-4:]
