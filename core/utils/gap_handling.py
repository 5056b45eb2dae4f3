"""
Gap detection and filling utilities for candle series

Handles missing candles in market data due to:
- Exchange downtime
- Network issues
- Maintenance windows
"""

from core.models.market_data import Candle, GapInfo, Interval


def detect_gaps(candles: list[Candle], step_ms: int) -> list[GapInfo]:
    """
    Detect missing candles in a time series

    Args:
        candles: List of candles (must be sorted by open_time ASC)
        step_ms: Expected interval between consecutive open times

    Returns:
        List of gaps detected (empty list if no gaps)

    Example:
        >>> candles = [candle_at_09_00, candle_at_09_05]  # Missing 09:01-09:04
        >>> gaps = detect_gaps(candles, step_ms=60_000)
        >>> gaps[0].missing_count
        4
    """
    gaps = []

    for previous, current in zip(candles, candles[1:]):
        delta = current.open_time - previous.open_time
        if delta > step_ms:
            gaps.append(
                GapInfo(
                    start_time=previous.open_time + step_ms,
                    end_time=current.open_time - step_ms,
                    missing_count=delta // step_ms - 1,
                    step_ms=step_ms,
                )
            )

    return gaps


def fill_gaps(candles: list[Candle], gaps: list[GapInfo]) -> list[Candle]:
    """
    Forward-fill missing candles

    Strategy:
    - OHLC = previous candle's close
    - Volume = 0
    - Flag: synthetic = True

    Args:
        candles: Original candles (sorted by open_time ASC)
        gaps: List of gaps from detect_gaps()

    Returns:
        Complete list of candles with synthetic candles inserted

    Example:
        >>> candles = [candle_at_09_00, candle_at_09_05]
        >>> filled = fill_gaps(candles, detect_gaps(candles, 60_000))
        >>> len(filled)  # Original 2 + 4 synthetic = 6
        6
    """
    if not gaps:
        return list(candles)

    by_time = {c.open_time: c for c in candles}

    for gap in gaps:
        last_close = by_time[gap.start_time - gap.step_ms].close

        for open_time in range(gap.start_time, gap.end_time + 1, gap.step_ms):
            by_time[open_time] = Candle(
                open_time=open_time,
                open=last_close,
                high=last_close,
                low=last_close,
                close=last_close,
                volume=0,
                closed=True,
                synthetic=True,
            )

    return [by_time[t] for t in sorted(by_time)]


def parse_interval(interval: str | Interval) -> Interval:
    """
    Convert interval string to Interval

    Args:
        interval: Interval string (1m, 5m, 15m, 1h, 4h, 1d)

    Returns:
        Interval enum member

    Raises:
        ValueError: If interval is not supported

    Example:
        >>> parse_interval("1h").step_ms
        3600000
    """
    try:
        return Interval(interval)
    except ValueError:
        supported = ", ".join(i.value for i in Interval)
        raise ValueError(f"Unsupported interval: {interval}. Supported: {supported}") from None
