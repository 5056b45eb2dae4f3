"""
Application Settings - Load from YAML configs + .env overrides

Design Philosophy:
- Engine configs (retry, backoff, indicators) → YAML file (public, versioned in git)
- Environment / per-machine values → .env file (gitignored)

Uses Pydantic for validation and type safety
"""

from typing import Any

from pydantic import Field, PrivateAttr
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.utils.config import get_nested, load_yaml_safe

DEFAULT_CONFIG_PATH = "config/providers/market_data.yaml"

DEFAULT_INDICATORS = [
    {"name": "sma20", "type": "sma", "params": {"period": 20}},
    {"name": "sma50", "type": "sma", "params": {"period": 50}},
    {"name": "rsi14", "type": "rsi", "params": {"period": 14}},
]


class Settings(BaseSettings):
    """
    Application settings

    Architecture:
    - Engine configs → config/providers/market_data.yaml (public)
    - Environment → .env (gitignored)

    Usage:
        from config.settings import get_settings

        settings = get_settings()
        print(settings.FETCH_MAX_ATTEMPTS)  # From market_data.yaml
        print(settings.LOG_LEVEL)  # From .env
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields in .env
    )

    # ============================================
    # ENVIRONMENT (.env only)
    # ============================================
    ENVIRONMENT: str = Field(default="local", description="Environment: local, dev, staging, prod")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_DIR: str = Field(default="data/logs", description="Directory for rotating error logs")

    MARKET_DATA_CONFIG_PATH: str = Field(default=DEFAULT_CONFIG_PATH)

    # Overrides YAML market_data.exchange when set
    MARKET_DATA_EXCHANGE: str | None = Field(default=None)

    _config: dict[str, Any] = PrivateAttr(default_factory=dict)

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._config = load_yaml_safe(self.MARKET_DATA_CONFIG_PATH)

    def _market(self, path: str, default: Any) -> Any:
        return get_nested(self._config, f"market_data.{path}", default)

    # ============================================
    # SELECTION DEFAULTS (from YAML)
    # ============================================
    @property
    def EXCHANGE(self) -> str:
        """Exchange used for history + live feed"""
        return self.MARKET_DATA_EXCHANGE or self._market("exchange", "binance")

    @property
    def DEFAULT_SYMBOL(self) -> str:
        return self._market("default_symbol", "BTCUSDT")

    @property
    def DEFAULT_INTERVAL(self) -> str:
        return self._market("default_interval", "1m")

    @property
    def HISTORY_LIMIT(self) -> int:
        """Number of candles fetched on select()"""
        return int(self._market("history_limit", 500))

    # ============================================
    # HISTORICAL FETCH (from YAML)
    # ============================================
    @property
    def FETCH_MAX_ATTEMPTS(self) -> int:
        return int(self._market("fetch.max_attempts", 3))

    @property
    def FETCH_RETRY_DELAY_SECONDS(self) -> float:
        return float(self._market("fetch.retry_delay_seconds", 1.0))

    @property
    def BACKFILL_LIMIT(self) -> int:
        """Max candles requested per backfill"""
        return int(self._market("backfill_limit", 1000))

    # ============================================
    # REST API (from YAML)
    # ============================================
    @property
    def REST_API_TIMEOUT_MS(self) -> int:
        return int(get_nested(self._config, "rest_api.timeout_ms", 10000))

    @property
    def REST_API_ENABLE_RATE_LIMIT(self) -> bool:
        return bool(get_nested(self._config, "rest_api.enable_rate_limit", True))

    # ============================================
    # LIVE FEED RECONNECT (from YAML)
    # ============================================
    @property
    def RECONNECT_BASE_DELAY_SECONDS(self) -> float:
        return float(self._market("reconnect.base_delay_seconds", 1.0))

    @property
    def RECONNECT_MAX_DELAY_SECONDS(self) -> float:
        return float(self._market("reconnect.max_delay_seconds", 30.0))

    # ============================================
    # GAPS (from YAML)
    # ============================================
    @property
    def ENABLE_GAP_FILLING(self) -> bool:
        """Whether to forward-fill exchange-side gaps with synthetic candles"""
        return bool(self._market("gaps.enable_filling", True))

    @property
    def MAX_GAP_RATIO(self) -> float:
        """Max allowed ratio of synthetic candles in a seed"""
        return float(self._market("gaps.max_gap_ratio", 0.1))

    # ============================================
    # INDICATORS (from YAML)
    # ============================================
    @property
    def INDICATORS(self) -> list[dict]:
        """List of enabled indicators: [{name, type, params}, ...]"""
        return self._config.get("indicators") or DEFAULT_INDICATORS


# Singleton pattern
_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """
    Get application settings (singleton)

    Example:
        >>> settings = get_settings()
        >>> print(settings.EXCHANGE)
        binance
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance


def reset_settings() -> None:
    """Drop the cached singleton (tests, config reload)"""
    global _settings_instance
    _settings_instance = None
