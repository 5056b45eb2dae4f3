"""
Market Data Service - Live candles + technical indicators

Per selection (symbol, interval):
1. Seeds a CandleSeries from the exchange REST API
2. Merges the live kline stream (dedup, ordering, gap backfill, reconnect)
3. Maintains SMA / RSI incrementally over the closed candles
4. Publishes immutable MarketSnapshots
"""

from services.market_data.candle_series import CandleSeries, UpsertResult
from services.market_data.coordinator import MarketDataCoordinator, MarketSession
from services.market_data.indicator_engine import IndicatorEngine
from services.market_data.indicator_loader import IndicatorLoader
from services.market_data.reconciler import LiveFeedReconciler

__all__ = [
    "CandleSeries",
    "UpsertResult",
    "IndicatorEngine",
    "IndicatorLoader",
    "LiveFeedReconciler",
    "MarketDataCoordinator",
    "MarketSession",
]
