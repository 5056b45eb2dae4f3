"""Models module - Pydantic data models"""

from .market_data import (
    Candle,
    CandleUpdate,
    ConnectionState,
    GapInfo,
    IndicatorPoint,
    Interval,
    MarketSnapshot,
)

__all__ = [
    "Interval",
    "Candle",
    "CandleUpdate",
    "ConnectionState",
    "GapInfo",
    "IndicatorPoint",
    "MarketSnapshot",
]
