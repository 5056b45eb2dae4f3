"""
Moving average indicators

Implementations:
- SMA: Simple Moving Average (running-sum recurrence)
"""

import logging
from collections import deque
from collections.abc import Sequence

import numpy as np
import talib

from core.interfaces.indicators import BaseIndicator

logger = logging.getLogger(__name__)


class SMA(BaseIndicator):
    """
    Simple Moving Average

    Formula: SMA = SUM(Close) / N

    Incremental update: keep the trailing window and its running sum; on each
    close add the new value and subtract the one leaving the window. O(1) per
    close.

    Example:
        >>> sma = SMA(period=3)
        >>> [sma.update(c) for c in [1.0, 2.0, 3.0, 4.0]]
        [None, None, 2.0, 3.0]
    """

    def __init__(self, period: int, name: str | None = None):
        """
        Initialize SMA

        Args:
            period: Look-back period
            name: Custom name for this indicator (e.g., "sma20"). If None, uses class name.
        """
        super().__init__(period=period, name=name)
        self._window: deque[float] = deque()
        self._sum = 0.0

    @property
    def warmup(self) -> int:
        return self.period

    def update(self, close: float) -> float | None:
        self.count += 1
        self._window.append(close)
        self._sum += close

        if len(self._window) > self.period:
            self._sum -= self._window.popleft()

        if len(self._window) < self.period:
            return None

        # Re-sum once per full window to stop float drift from accumulating
        if self.count % self.period == 0:
            self._sum = float(np.sum(self._window))

        return self._sum / self.period

    def reset(self) -> None:
        self.count = 0
        self._window.clear()
        self._sum = 0.0

    def calculate_series(self, closes: Sequence[float]) -> np.ndarray:
        """Full-series SMA via TA-Lib (NaN for the warm-up prefix)"""
        values = np.asarray(closes, dtype=float)
        if len(values) < self.period:
            return np.full(len(values), np.nan)
        return talib.SMA(values, timeperiod=self.period)
