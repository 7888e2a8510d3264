"""Backtest trade and result models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class TradeType(str, Enum):
    """Trade side."""

    BUY = "buy"
    SELL = "sell"


class ExitReason(str, Enum):
    """Why a position was closed."""

    SIGNAL = "signal"  # Strategy sell rule
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    END_OF_DATA = "end_of_data"  # Forced liquidation at the last candle


class Trade(BaseModel):
    """A simulated fill. Only sells carry profit_percent and exit_reason."""

    model_config = ConfigDict(frozen=True)

    type: TradeType
    price: float
    amount: float
    timestamp: datetime
    mfi: float | None = None
    rsi: float | None = None
    macd: float | None = None
    profit_percent: float | None = None
    exit_reason: ExitReason | None = None


class BacktestResult(BaseModel):
    """Aggregated outcome of one backtest run."""

    model_config = ConfigDict(frozen=True)

    strategy_name: str
    initial_amount: float
    final_amount: float
    total_return_percent: float
    max_drawdown_percent: float
    total_trades: int
    winning_trades: int
    win_rate_percent: float
    start_date: datetime
    end_date: datetime
    trades: tuple[Trade, ...] = ()

    @property
    def losing_trades(self) -> int:
        return self.total_trades - self.winning_trades
