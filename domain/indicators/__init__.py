"""
Technical indicators module

Exports:
- BaseIndicator (core/interfaces/indicators.py)
- Moving averages: SMA
- Momentum: RSI
- Registry: IndicatorRegistry
"""

from core.interfaces.indicators import BaseIndicator
from domain.indicators.momentum import RSI
from domain.indicators.moving_averages import SMA
from domain.indicators.registry import IndicatorRegistry

__all__ = [
    "BaseIndicator",
    "SMA",
    "RSI",
    "IndicatorRegistry",
]
