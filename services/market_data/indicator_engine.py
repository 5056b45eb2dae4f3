"""
Indicator Engine - incremental indicators over a CandleSeries

Keeps one IndicatorSeries per configured indicator, aligned by timestamp with
the closed candles. The open candle never contributes a point.

Update rules (see sync()):
- Newly closed candles → O(1) incremental update per indicator
- A change at an already-processed closed index → recompute every
  indicator from that index forward
"""

import logging

from core.interfaces.indicators import BaseIndicator
from core.models.market_data import Candle, IndicatorPoint
from services.market_data.candle_series import CandleSeries

logger = logging.getLogger(__name__)


class IndicatorEngine:
    """Maintain derived indicator series for one selection"""

    def __init__(self, indicators: dict[str, BaseIndicator]):
        """
        Args:
            indicators: {name: indicator}, e.g. from IndicatorLoader.load_from_settings()
        """
        self.indicators = indicators
        self._points: dict[str, list[IndicatorPoint]] = {name: [] for name in indicators}
        self._processed = 0

    @property
    def processed(self) -> int:
        """Number of closed candles consumed"""
        return self._processed

    def sync(self, series: CandleSeries) -> int:
        """
        Bring indicators up to date with the series' closed candles

        Returns:
            Number of closed candles processed by this call
        """
        dirty = series.take_dirty()
        closed = series.closed_candles()

        if dirty is not None and dirty < self._processed:
            self._rebuild_from(dirty, closed)

        start = self._processed
        for candle in closed[start:]:
            self._append(candle)

        return self._processed - start

    def series(self, name: str) -> tuple[IndicatorPoint, ...]:
        return tuple(self._points[name])

    def snapshot(self) -> dict[str, tuple[IndicatorPoint, ...]]:
        """Immutable copy of every indicator series"""
        return {name: tuple(points) for name, points in self._points.items()}

    def warming_up(self) -> list[str]:
        """Indicators without a value yet (fewer closed candles than their warmup)"""
        return [name for name, indicator in self.indicators.items() if self._processed < indicator.warmup]

    def reset(self) -> None:
        for name, indicator in self.indicators.items():
            indicator.reset()
            self._points[name] = []
        self._processed = 0

    def _append(self, candle: Candle) -> None:
        for name, indicator in self.indicators.items():
            value = indicator.update(candle.close)
            if value is not None:
                self._points[name].append(IndicatorPoint(timestamp=candle.open_time, value=value))
        self._processed += 1

    def _rebuild_from(self, index: int, closed: list[Candle]) -> None:
        """Drop points from `index` on and replay state up to it"""
        if index == 0:
            self.reset()
            return

        logger.warning(f"⚠️ Historical candle changed at closed index {index}, recomputing indicators")

        cutoff = closed[index].open_time if index < len(closed) else None
        for name, indicator in self.indicators.items():
            indicator.reset()
            if cutoff is not None:
                self._points[name] = [p for p in self._points[name] if p.timestamp < cutoff]

            for candle in closed[:index]:
                indicator.update(candle.close)

        self._processed = index
