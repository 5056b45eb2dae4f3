"""
Momentum indicators

Implementations:
- RSI: Relative Strength Index (Wilder's smoothing)
"""

from core.interfaces.indicators import BaseIndicator

DEFAULT_RSI_EPSILON = 1e-10


class RSI(BaseIndicator):
    """
    Relative Strength Index

    Formula:
        Seed:   avg_gain / avg_loss = mean gain / mean loss over the first N changes
        Then:   avg = (avg * (N - 1) + current) / N
        RS  = avg_gain / avg_loss
        RSI = 100 - (100 / (1 + RS))

    A zero average loss is replaced by `epsilon`, so a run of pure gains
    saturates just under 100 instead of dividing by zero. Output is never
    clamped.

    Interpretation:
        - RSI > 70: Overbought
        - RSI < 30: Oversold

    Example:
        >>> rsi = RSI(period=14)
        >>> values = [rsi.update(c) for c in closes]
        >>> values[13] is None, values[14] is None  # first value at the 15th close
        (True, False)
    """

    def __init__(self, period: int = 14, name: str | None = None, epsilon: float = DEFAULT_RSI_EPSILON):
        """
        Initialize RSI

        Args:
            period: Look-back period (default: 14)
            name: Custom name (e.g., "rsi14")
            epsilon: Substitute for a zero average loss (must be > 0)
        """
        if epsilon <= 0:
            raise ValueError(f"RSI epsilon must be > 0, got {epsilon}")

        super().__init__(period=period, name=name, epsilon=epsilon)
        self.epsilon = epsilon
        self.reset()

    @property
    def warmup(self) -> int:
        return self.period + 1

    def update(self, close: float) -> float | None:
        self.count += 1

        if self._prev_close is None:
            self._prev_close = close
            return None

        change = close - self._prev_close
        self._prev_close = close
        gain = max(change, 0.0)
        loss = max(-change, 0.0)

        if self.count <= self.period:
            self._gain_sum += gain
            self._loss_sum += loss
            return None

        if self.count == self.period + 1:
            # Seed phase: simple mean over the first `period` changes
            self._avg_gain = (self._gain_sum + gain) / self.period
            self._avg_loss = (self._loss_sum + loss) / self.period
        else:
            self._avg_gain = (self._avg_gain * (self.period - 1) + gain) / self.period
            self._avg_loss = (self._avg_loss * (self.period - 1) + loss) / self.period

        return self._value()

    def _value(self) -> float:
        avg_loss = self._avg_loss if self._avg_loss > 0 else self.epsilon
        rs = self._avg_gain / avg_loss
        return 100.0 - 100.0 / (1.0 + rs)

    def reset(self) -> None:
        self.count = 0
        self._prev_close: float | None = None
        self._gain_sum = 0.0
        self._loss_sum = 0.0
        self._avg_gain = 0.0
        self._avg_loss = 0.0
