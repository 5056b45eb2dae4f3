"""
Indicator Loader - Load indicators from config

Responsibility: Bridge between config layer and domain layer
- Load indicator configs from settings (config layer)
- Use IndicatorRegistry to create instances (domain layer)
- Return ready-to-use indicator instances

This is SERVICE layer - knows about config, uses domain factories
"""

import logging

from config.settings import Settings, get_settings
from core.interfaces.indicators import BaseIndicator
from domain.indicators.registry import IndicatorRegistry

logger = logging.getLogger(__name__)


class IndicatorLoader:
    """Load indicators from YAML config using registry"""

    @staticmethod
    def load_from_settings(settings: Settings | None = None) -> dict[str, BaseIndicator]:
        """
        Load indicators from settings.INDICATORS

        Returns:
            Dict of indicator instances: {"sma20": SMA(20), "sma50": SMA(50), "rsi14": RSI(14)}

        Example:
            >>> indicators = IndicatorLoader.load_from_settings()
            >>> print(indicators.keys())
            dict_keys(['sma20', 'sma50', 'rsi14'])
        """
        settings = settings or get_settings()
        return IndicatorLoader.load(settings.INDICATORS)

    @staticmethod
    def load(configs: list[dict]) -> dict[str, BaseIndicator]:
        """Create indicators from [{name, type, params}, ...], skipping invalid entries"""
        indicators = {}

        for config in configs:
            name = config["name"]
            indicator_type = config["type"]
            params = config.get("params", {})

            try:
                # Use domain registry to create indicator
                indicators[name] = IndicatorRegistry.create(indicator_type, name=name, **params)
                logger.debug(f"  ✓ Loaded {name}: {indicators[name]}")

            except (TypeError, ValueError) as e:
                logger.warning(f"  ✗ Skipping {name}: {e}")

        logger.info(f"✓ Loaded {len(indicators)} indicators: {list(indicators.keys())}")
        return indicators
