"""Technical indicators for strategy evaluation.

All functions are pure and return a list aligned index-for-index with
their input. Positions without enough history hold ``None``; the
functions never raise on short input and never emit NaN or Inf.

Arithmetic runs on NumPy float64 arrays where it vectorises cleanly;
the recursive smoothers (EMA, Wilder RSI) are evaluated sequentially so
results are reproducible bit-for-bit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Sequence

import numpy as np

from core.models.candle import Candle

if TYPE_CHECKING:
    from core.models.strategy import Strategy


def _to_optional(arr: np.ndarray) -> list[float | None]:
    """Convert a float array with NaN placeholders to a list with None."""
    return [None if np.isnan(v) else float(v) for v in arr]


def _closes(candles: Sequence[Candle]) -> np.ndarray:
    return np.array([c.close for c in candles], dtype=np.float64)


# =============================================================================
# Moving averages
# =============================================================================

def ema(values: Sequence[float], period: int) -> list[float | None]:
    """
    Calculate Exponential Moving Average.

    The first value is the simple mean of the first ``period`` values,
    placed at index ``period - 1``. After that
    ``ema[i] = v[i] * k + ema[i-1] * (1 - k)`` with ``k = 2 / (period + 1)``.

    Args:
        values: Sequence of prices
        period: EMA period

    Returns:
        List of EMA values (same length as input, None for initial values)
    """
    if period < 1 or len(values) < period:
        return [None] * len(values)

    arr = np.asarray(values, dtype=np.float64)
    multiplier = 2.0 / (period + 1)

    result = np.full_like(arr, np.nan)
    result[period - 1] = np.mean(arr[:period])

    for i in range(period, len(arr)):
        result[i] = arr[i] * multiplier + result[i - 1] * (1 - multiplier)

    return _to_optional(result)


def sma(values: Sequence[float], period: int) -> list[float | None]:
    """
    Calculate Simple Moving Average.

    Args:
        values: Sequence of prices
        period: SMA period

    Returns:
        List of SMA values (None before index ``period - 1``)
    """
    if period < 1 or len(values) < period:
        return [None] * len(values)

    arr = np.asarray(values, dtype=np.float64)
    result = np.full_like(arr, np.nan)

    for i in range(period - 1, len(arr)):
        result[i] = np.mean(arr[i - period + 1 : i + 1])

    return _to_optional(result)


# =============================================================================
# Oscillators
# =============================================================================

def mfi(candles: Sequence[Candle], period: int = 14) -> list[float | None]:
    """
    Calculate Money Flow Index.

    Each value looks at ``period + 1`` consecutive candles. Money flow
    (typical price * volume) of a candle counts as positive when its
    typical price is strictly above the previous one, negative when
    strictly below, and is ignored when equal.

    MFI = 100 - 100 / (1 + positive / negative), with the ratio taken
    as 0 when there is no negative flow.

    Args:
        candles: Candles, oldest first
        period: Lookback period

    Returns:
        List of MFI values; the first ``period`` entries are None
    """
    n = len(candles)
    if period < 1 or n < period + 1:
        return [None] * n

    highs = np.array([c.high for c in candles], dtype=np.float64)
    lows = np.array([c.low for c in candles], dtype=np.float64)
    closes = _closes(candles)
    volumes = np.array([c.volume for c in candles], dtype=np.float64)

    typical = (highs + lows + closes) / 3
    money_flow = typical * volumes

    # Flow at j is classified against j-1; index 0 has no predecessor
    positive = np.zeros(n, dtype=np.float64)
    negative = np.zeros(n, dtype=np.float64)
    up = typical[1:] > typical[:-1]
    down = typical[1:] < typical[:-1]
    positive[1:][up] = money_flow[1:][up]
    negative[1:][down] = money_flow[1:][down]

    result = np.full(n, np.nan, dtype=np.float64)
    for i in range(period, n):
        pos = positive[i - period + 1 : i + 1].sum()
        neg = negative[i - period + 1 : i + 1].sum()
        ratio = pos / neg if neg != 0 else 0.0
        result[i] = 100.0 - 100.0 / (1.0 + ratio)

    return _to_optional(result)


def rsi(candles: Sequence[Candle], period: int = 14) -> list[float | None]:
    """
    Calculate Relative Strength Index with Wilder smoothing.

    Average gain and loss are seeded with the simple mean of the first
    ``period`` close-to-close changes; the first RSI lands at index
    ``period``. Subsequent averages use
    ``avg = (avg * (period - 1) + x) / period``.

    Args:
        candles: Candles, oldest first
        period: RSI period

    Returns:
        List of RSI values; the first ``period`` entries are None
    """
    n = len(candles)
    if period < 1 or n < period + 1:
        return [None] * n

    deltas = np.diff(_closes(candles))
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = float(np.mean(gains[:period]))
    avg_loss = float(np.mean(losses[:period]))

    def _value(g: float, l: float) -> float:
        if l == 0:
            return 100.0
        return 100.0 - 100.0 / (1.0 + g / l)

    result: list[float | None] = [None] * period
    result.append(_value(avg_gain, avg_loss))

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        result.append(_value(float(avg_gain), float(avg_loss)))

    return result


def macd(
    candles: Sequence[Candle],
    short_period: int = 12,
    long_period: int = 26,
    signal_period: int = 9,
) -> tuple[list[float | None], list[float | None], list[float | None]]:
    """
    Calculate MACD line, signal line and histogram.

    macd = EMA(short) - EMA(long) wherever both exist. The signal line is
    the EMA of the defined MACD values only, mapped back onto their
    original positions.

    Args:
        candles: Candles, oldest first
        short_period: Fast EMA period
        long_period: Slow EMA period
        signal_period: Signal EMA period

    Returns:
        Tuple of (macd_line, signal_line, histogram)
    """
    closes = [c.close for c in candles]
    short_ema = ema(closes, short_period)
    long_ema = ema(closes, long_period)

    macd_line: list[float | None] = [
        s - l if s is not None and l is not None else None
        for s, l in zip(short_ema, long_ema)
    ]

    defined = [v for v in macd_line if v is not None]
    compact_signal = iter(ema(defined, signal_period))
    signal_line: list[float | None] = [
        next(compact_signal) if v is not None else None for v in macd_line
    ]

    histogram: list[float | None] = [
        m - s if m is not None and s is not None else None
        for m, s in zip(macd_line, signal_line)
    ]

    return macd_line, signal_line, histogram


# =============================================================================
# Aligned series
# =============================================================================

@dataclass(frozen=True)
class IndicatorValues:
    """Indicator readings for a single bar."""

    mfi: float | None = None
    rsi: float | None = None
    macd: float | None = None
    signal: float | None = None
    histogram: float | None = None


@dataclass
class IndicatorSeries:
    """Indicator lists aligned index-for-index with a candle sequence."""

    mfi: list[float | None] = field(default_factory=list)
    rsi: list[float | None] = field(default_factory=list)
    macd: list[float | None] = field(default_factory=list)
    signal: list[float | None] = field(default_factory=list)
    histogram: list[float | None] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.mfi)

    def at(self, index: int) -> IndicatorValues:
        return IndicatorValues(
            mfi=self.mfi[index],
            rsi=self.rsi[index],
            macd=self.macd[index],
            signal=self.signal[index],
            histogram=self.histogram[index],
        )


class IndicatorCalculator:
    """Calculator for all indicators a strategy can use."""

    def __init__(
        self,
        mfi_period: int = 14,
        rsi_period: int = 14,
        macd_short: int = 12,
        macd_long: int = 26,
        macd_signal: int = 9,
    ):
        self.mfi_period = mfi_period
        self.rsi_period = rsi_period
        self.macd_short = macd_short
        self.macd_long = macd_long
        self.macd_signal = macd_signal

    @classmethod
    def from_strategy(cls, strategy: "Strategy") -> "IndicatorCalculator":
        return cls(
            mfi_period=strategy.mfi_period,
            rsi_period=strategy.rsi_period,
            macd_short=strategy.macd_short_period,
            macd_long=strategy.macd_long_period,
            macd_signal=strategy.macd_signal_period,
        )

    def calculate_all(self, candles: Sequence[Candle]) -> IndicatorSeries:
        """
        Calculate every indicator for the given candles.

        Args:
            candles: Candles, oldest first

        Returns:
            IndicatorSeries aligned with ``candles``
        """
        macd_line, signal_line, histogram = macd(
            candles, self.macd_short, self.macd_long, self.macd_signal
        )
        return IndicatorSeries(
            mfi=mfi(candles, self.mfi_period),
            rsi=rsi(candles, self.rsi_period),
            macd=macd_line,
            signal=signal_line,
            histogram=histogram,
        )

    def calculate_latest(self, candles: Sequence[Candle]) -> IndicatorValues | None:
        """
        Calculate indicators for the latest bar only.

        Returns:
            IndicatorValues for the last candle, or None if there are no candles
        """
        if not candles:
            return None
        return self.calculate_all(candles).at(len(candles) - 1)
