"""
Abstract base classes for exchange market data collaborators

- BaseHistoricalDataSource: request/response fetch of closed candles
- BaseCandleStream: push stream of normalized candle updates
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from core.models.market_data import Candle, CandleUpdate, Interval

MAX_FETCH_LIMIT = 1000


class BaseHistoricalDataSource(ABC):
    """
    Historical candle source (REST)

    Implementations:
    - BinanceRestAPI (providers/binance/rest_api.py)

    Contract:
    - Returns CLOSED candles only, ordered oldest first
    - Raises on any non-success response
    - An empty list is a valid response, but callers treat it as "no data"
    """

    def __init__(self, exchange_name: str):
        self.exchange_name = exchange_name

    @abstractmethod
    async def fetch_candles(
        self,
        symbol: str,
        interval: Interval,
        limit: int = 500,
        start_time: int | None = None,
    ) -> list[Candle]:
        """
        Fetch closed candles

        Args:
            symbol: Exchange symbol (e.g., "BTCUSDT")
            interval: Candle interval
            limit: Max candles to return (<= 1000)
            start_time: First open time to include (ms). None = most recent `limit`.

        Returns:
            Closed candles, oldest first

        Raises:
            ValueError: If limit is out of range
        """

    async def close(self) -> None:
        """Release client resources"""

    @staticmethod
    def validate_limit(limit: int) -> None:
        """Reject limits outside 1..MAX_FETCH_LIMIT"""
        if not 1 <= limit <= MAX_FETCH_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_FETCH_LIMIT}, got {limit}")


class BaseCandleStream(ABC):
    """
    Live candle update transport (one handle per connection attempt)

    Implementations:
    - BinanceKlineStream (providers/binance/websocket.py)

    Lifecycle:
        >>> stream = BinanceKlineStream()
        >>> await stream.connect("BTCUSDT", Interval.M1)
        >>> async for update in stream.updates():
        ...     print(update.open_time, update.close, update.is_final)
        >>> await stream.close()

    The transport envelope is parsed here; consumers only ever see
    CandleUpdate. `updates()` finishes or raises when the transport is lost.
    """

    def __init__(self, exchange_name: str):
        self.exchange_name = exchange_name

    @abstractmethod
    async def connect(self, symbol: str, interval: Interval) -> None:
        """
        Open the transport and subscribe to (symbol, interval)

        Raises:
            ConnectionError / OSError: If the transport cannot be opened
        """

    @abstractmethod
    def updates(self) -> AsyncIterator[CandleUpdate]:
        """Iterate normalized updates until the transport closes"""

    @abstractmethod
    async def close(self) -> None:
        """Close the transport (idempotent)"""
