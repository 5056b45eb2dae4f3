"""Interfaces module - Abstract base classes for market data collaborators"""

from .indicators import BaseIndicator
from .market_data import BaseCandleStream, BaseHistoricalDataSource

__all__ = [
    "BaseIndicator",
    "BaseCandleStream",
    "BaseHistoricalDataSource",
]
