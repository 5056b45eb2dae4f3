"""
Market data models

Pydantic models for market data structures:
- Interval: Supported candle intervals and their step duration
- Candle: OHLCV candlestick keyed by open time
- CandleUpdate: Normalized live-feed event for one candle
- IndicatorPoint: One computed indicator value
- ConnectionState: Live feed connectivity
- MarketSnapshot: Read-only view published to presentation layers
- GapInfo: Run of missing candles in a series
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Interval(str, Enum):
    """Candle interval (bucket duration)"""

    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"

    @property
    def step_ms(self) -> int:
        """Interval step in milliseconds (used for gap detection)"""
        return _INTERVAL_STEP_MS[self]


_MINUTE_MS = 60_000

_INTERVAL_STEP_MS = {
    Interval.M1: _MINUTE_MS,
    Interval.M5: 5 * _MINUTE_MS,
    Interval.M15: 15 * _MINUTE_MS,
    Interval.H1: 60 * _MINUTE_MS,
    Interval.H4: 240 * _MINUTE_MS,
    Interval.D1: 1440 * _MINUTE_MS,
}


class ConnectionState(str, Enum):
    """Live feed connectivity (owned by LiveFeedReconciler)"""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    LIVE = "live"
    RECONNECTING = "reconnecting"


class Candle(BaseModel):
    """
    OHLCV candlestick

    Aggregated price data for one interval bucket. `open_time` is the unique
    key within a series. A candle is `closed` once no further revision will
    occur.
    """

    model_config = ConfigDict(frozen=True)

    open_time: int = Field(description="Candle open time (ms since epoch, UTC)")
    open: float = Field(ge=0, description="Opening price")
    high: float = Field(ge=0, description="Highest price in interval")
    low: float = Field(ge=0, description="Lowest price in interval")
    close: float = Field(ge=0, description="Closing price")
    volume: float = Field(ge=0, description="Total volume traded")
    closed: bool = Field(default=True, description="True once the bucket is final")
    synthetic: bool = Field(default=False, description="Forward-filled gap candle")

    @property
    def timestamp(self) -> datetime:
        """Open time as an aware UTC datetime"""
        return datetime.fromtimestamp(self.open_time / 1000, tz=UTC)

    def same_values(self, other: "Candle") -> bool:
        """Compare OHLCV content, ignoring flags"""
        return (
            self.open == other.open
            and self.high == other.high
            and self.low == other.low
            and self.close == other.close
            and self.volume == other.volume
        )


class CandleUpdate(BaseModel):
    """
    Normalized live-feed event

    Produced by the streaming collaborator from its transport envelope.
    Delivery is at-least-once: duplicates are expected, drops are possible
    across reconnects.
    """

    model_config = ConfigDict(frozen=True)

    open_time: int
    open: float = Field(ge=0)
    high: float = Field(ge=0)
    low: float = Field(ge=0)
    close: float = Field(ge=0)
    volume: float = Field(ge=0)
    is_final: bool = False

    def to_candle(self) -> Candle:
        """Convert to Candle (closed = is_final)"""
        return Candle(
            open_time=self.open_time,
            open=self.open,
            high=self.high,
            low=self.low,
            close=self.close,
            volume=self.volume,
            closed=self.is_final,
        )


class IndicatorPoint(BaseModel):
    """Indicator value aligned with a closed candle's open time"""

    model_config = ConfigDict(frozen=True)

    timestamp: int = Field(description="Open time of the closed candle (ms)")
    value: float


class GapInfo(BaseModel):
    """Run of missing candles between two known candles"""

    start_time: int = Field(description="First missing open time (ms)")
    end_time: int = Field(description="Last missing open time (ms)")
    missing_count: int
    step_ms: int


class MarketSnapshot(BaseModel):
    """
    Immutable view of one selection for presentation collaborators

    `indicators` maps indicator name (sma20, sma50, rsi14) to its points,
    aligned by timestamp with the closed candles. Consumers must not mutate.
    """

    model_config = ConfigDict(frozen=True)

    symbol: str | None = None
    interval: Interval | None = None
    candles: tuple[Candle, ...] = ()
    indicators: dict[str, tuple[IndicatorPoint, ...]] = Field(default_factory=dict)
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    last_price: float | None = None
    last_updated: datetime | None = None
