"""Factory package - Dependency injection for exchange-agnostic code"""

from .client_factory import create_candle_stream, create_historical_source

__all__ = [
    "create_historical_source",
    "create_candle_stream",
]
