"""Technical indicators (pure math, no I/O)."""

from core.indicators.indicators import (
    ema,
    sma,
    mfi,
    rsi,
    macd,
    IndicatorCalculator,
    IndicatorSeries,
    IndicatorValues,
)

__all__ = [
    "ema",
    "sma",
    "mfi",
    "rsi",
    "macd",
    "IndicatorCalculator",
    "IndicatorSeries",
    "IndicatorValues",
]
