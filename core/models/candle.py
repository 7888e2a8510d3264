"""Candle (OHLCV) data model."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class Candle(BaseModel):
    """One minute of market activity for a single market.

    Identity is ``(market, timestamp)``; instances are immutable once built.
    """

    model_config = ConfigDict(frozen=True)

    market: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float
    acc_trade_value: float = 0.0
    timeframe: str = "1m"

    @property
    def typical_price(self) -> float:
        """(high + low + close) / 3, the price used by money-flow indicators."""
        return (self.high + self.low + self.close) / 3

    @property
    def is_rising(self) -> bool:
        return self.close > self.open

    @property
    def body_size(self) -> float:
        """Get the absolute size of the candle body."""
        return abs(self.close - self.open)

    @property
    def upper_shadow(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_shadow(self) -> float:
        return min(self.open, self.close) - self.low
