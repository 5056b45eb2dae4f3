"""
Market data exceptions

Hierarchy:
    MarketDataError
    ├── DataUnavailable      historical fetch exhausted / empty / invalid
    ├── InvalidSeed          seed or backfill payload breaks series invariants
    ├── SelectionSuperseded  select() cancelled by a newer select()
    └── TransportLost        live stream closed or errored

Stale, gap and corrupt-revision events are not exceptions; they are
reported as UpsertResult values by CandleSeries.upsert().
"""


class MarketDataError(Exception):
    """Base class for market data engine errors"""


class DataUnavailable(MarketDataError):
    """Historical data could not be obtained for a selection"""

    def __init__(self, symbol: str, interval: str, reason: str):
        super().__init__(f"No data for {symbol}/{interval}: {reason}")
        self.symbol = symbol
        self.interval = interval
        self.reason = reason


class InvalidSeed(MarketDataError):
    """Candle payload violates ordering or closed-ness"""


class SelectionSuperseded(MarketDataError):
    """A newer select() call replaced this one before it completed"""


class TransportLost(MarketDataError):
    """The streaming transport ended or failed"""
