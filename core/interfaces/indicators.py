"""
Abstract interface for incremental technical indicators
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence

import numpy as np


class BaseIndicator(ABC):
    """
    Incremental indicator over a stream of closed-candle closes

    Design principle:
    - Pure calculation logic (no I/O, no candle storage)
    - O(1) update per appended close via running state
    - Full-series calculation kept for rebuilds and cross-checks

    Implementations:
    - SMA (domain/indicators/moving_averages.py)
    - RSI (domain/indicators/momentum.py)
    """

    def __init__(self, period: int, name: str | None = None, **kwargs):
        """
        Initialize indicator

        Args:
            period: Look-back period for calculation
            name: Custom name (e.g., "sma20"). If None, uses class name.
            **kwargs: Additional indicator-specific parameters
        """
        if period < 1:
            raise ValueError(f"{self.__class__.__name__}: period must be >= 1, got {period}")

        self.period = period
        self.name = name or self.__class__.__name__
        self.params = {"period": period, **kwargs}
        self.count = 0

    @property
    @abstractmethod
    def warmup(self) -> int:
        """Number of closes required before the first value is defined"""

    @abstractmethod
    def update(self, close: float) -> float | None:
        """
        Consume the next closed-candle close

        Returns:
            Indicator value at this close, or None while warming up
        """

    @abstractmethod
    def reset(self) -> None:
        """Drop all running state"""

    def calculate_series(self, closes: Sequence[float]) -> np.ndarray:
        """
        Compute the indicator for every close from scratch

        Returns:
            Array aligned with `closes`, NaN where undefined

        Default implementation replays update() on a fresh instance, leaving
        this instance's running state untouched. Subclasses may override with
        a vectorized version.
        """
        fresh = self.__class__(name=self.name, **self.params)
        values = [fresh.update(float(c)) for c in closes]
        return np.array([np.nan if v is None else v for v in values], dtype=float)

    def __repr__(self) -> str:
        """String representation"""
        params_str = ", ".join(f"{k}={v}" for k, v in self.params.items())
        return f"{self.name}({params_str})"
