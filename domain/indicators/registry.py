"""
Indicator registry for managing and creating indicators

Factory pattern for indicator creation
"""

from core.interfaces.indicators import BaseIndicator
from domain.indicators.momentum import RSI
from domain.indicators.moving_averages import SMA


class IndicatorRegistry:
    """
    Registry for indicator creation

    Provides factory methods for creating indicators
    """

    # Registry of available indicators
    _indicators: dict[str, type[BaseIndicator]] = {
        "sma": SMA,
        "rsi": RSI,
    }

    @classmethod
    def create(cls, indicator_type: str, **params) -> BaseIndicator:
        """
        Create indicator by type

        Args:
            indicator_type: Indicator type (sma, rsi)
            **params: Indicator parameters (including optional 'name' for custom naming)

        Returns:
            Indicator instance

        Raises:
            ValueError: If indicator type is not found

        Example:
            >>> sma = IndicatorRegistry.create("sma", period=20, name="sma20")
            >>> rsi = IndicatorRegistry.create("rsi", period=14, name="rsi14")
        """
        indicator_class = cls._indicators.get(indicator_type.lower())
        if not indicator_class:
            available = ", ".join(cls._indicators.keys())
            raise ValueError(f"Unknown indicator: {indicator_type}. Available: {available}")

        return indicator_class(**params)

    @classmethod
    def register(cls, name: str, indicator_class: type[BaseIndicator]) -> None:
        """Register a new indicator class (must inherit from BaseIndicator)"""
        cls._indicators[name.lower()] = indicator_class

    @classmethod
    def list_indicators(cls) -> list[str]:
        """
        List all available indicators

        Example:
            >>> IndicatorRegistry.list_indicators()
            ['rsi', 'sma']
        """
        return sorted(cls._indicators.keys())
