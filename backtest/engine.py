"""Single-market backtest simulation.

Replays one chronological candle series against a Strategy with a single
long-only position slot:

1. Buy when flat and every enabled indicator agrees
2. While holding, sell on any sell signal, stop loss or take profit
3. Track equity and the deepest drawdown from its running peak
4. Liquidate whatever is still held at the final close
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from core.errors import InsufficientDataError
from core.indicators import IndicatorCalculator, IndicatorSeries, IndicatorValues
from core.models import BacktestResult, Candle, ExitReason, Strategy, Trade, TradeType

logger = logging.getLogger(__name__)

MIN_CANDLES = 100


@dataclass
class _Position:
    """Open long position."""

    quantity: float
    invested: float

    def profit_percent(self, price: float) -> float:
        return (self.quantity * price - self.invested) / self.invested * 100


class BacktestEngine:
    """Simulate a Strategy over a candle series.

    The engine holds no state between runs, so the same inputs always
    produce an equal BacktestResult.
    """

    def __init__(
        self,
        strategy: Strategy,
        initial_amount: float,
        min_candles: int = MIN_CANDLES,
    ):
        if initial_amount <= 0:
            raise ValueError("initial_amount must be positive")
        self.strategy = strategy
        self.initial_amount = initial_amount
        self.min_candles = min_candles

    def run(
        self,
        candles: Sequence[Candle],
        series: IndicatorSeries | None = None,
    ) -> BacktestResult:
        """
        Run the simulation.

        Args:
            candles: Candles, oldest first
            series: Precomputed indicators aligned with ``candles``;
                calculated from the strategy's periods when omitted

        Returns:
            BacktestResult with the full trade log

        Raises:
            InsufficientDataError: Fewer than ``min_candles`` candles
        """
        if len(candles) < max(self.min_candles, 1):
            raise InsufficientDataError(self.min_candles, len(candles))

        if series is None:
            series = IndicatorCalculator.from_strategy(self.strategy).calculate_all(candles)
        if len(series) != len(candles):
            raise ValueError(
                f"Indicator series length {len(series)} does not match {len(candles)} candles"
            )

        strategy = self.strategy
        cash = self.initial_amount
        position: _Position | None = None
        trades: list[Trade] = []
        entries = 0
        winners = 0
        peak = self.initial_amount
        max_drawdown = 0.0

        for i, candle in enumerate(candles):
            values = series.at(i)
            price = candle.close

            if position is None:
                if strategy.should_buy(values.mfi, values.rsi, values.macd, values.signal):
                    invest = cash * strategy.allocation_percent / 100
                    if invest > 0:
                        position = _Position(
                            quantity=invest / price,
                            invested=invest,
                        )
                        cash -= invest
                        entries += 1
                        trades.append(self._trade(TradeType.BUY, candle, position, values))
                        logger.debug(
                            f"BUY {position.quantity:.8f} @ {price:,.2f} ({candle.timestamp})"
                        )
            else:
                profit = position.profit_percent(price)
                reason = self._exit_reason(profit, values)
                if reason is not None:
                    cash += position.quantity * price
                    if profit > 0:
                        winners += 1
                    trades.append(
                        self._trade(TradeType.SELL, candle, position, values, profit, reason)
                    )
                    logger.debug(
                        f"SELL {position.quantity:.8f} @ {price:,.2f} "
                        f"({profit:+.2f}%, {reason.value})"
                    )
                    position = None

            equity = cash + (position.quantity * price if position else 0.0)
            if equity > peak:
                peak = equity
            drawdown = (peak - equity) / peak * 100
            if drawdown > max_drawdown:
                max_drawdown = drawdown

        if position is not None:
            last = candles[-1]
            profit = position.profit_percent(last.close)
            cash += position.quantity * last.close
            if profit > 0:
                winners += 1
            trades.append(
                self._trade(
                    TradeType.SELL,
                    last,
                    position,
                    series.at(len(candles) - 1),
                    profit,
                    ExitReason.END_OF_DATA,
                )
            )

        total_return = (cash - self.initial_amount) / self.initial_amount * 100
        win_rate = winners / entries * 100 if entries else 0.0

        result = BacktestResult(
            strategy_name=strategy.name,
            initial_amount=self.initial_amount,
            final_amount=cash,
            total_return_percent=total_return,
            max_drawdown_percent=max_drawdown,
            total_trades=entries,
            winning_trades=winners,
            win_rate_percent=win_rate,
            start_date=candles[0].timestamp,
            end_date=candles[-1].timestamp,
            trades=tuple(trades),
        )
        logger.info(
            f"[{strategy.name}] {len(candles):,} candles: {entries} trades, "
            f"return {total_return:+.2f}%, MDD {max_drawdown:.2f}%"
        )
        return result

    def _exit_reason(self, profit: float, values: IndicatorValues) -> ExitReason | None:
        """First matching exit rule; the sell signal takes precedence."""
        strategy = self.strategy
        if strategy.should_sell(values.mfi, values.rsi, values.macd, values.signal):
            return ExitReason.SIGNAL
        if profit <= -strategy.stop_loss_percent:
            return ExitReason.STOP_LOSS
        if profit >= strategy.take_profit_percent:
            return ExitReason.TAKE_PROFIT
        return None

    @staticmethod
    def _trade(
        trade_type: TradeType,
        candle: Candle,
        position: _Position,
        values: IndicatorValues,
        profit_percent: float | None = None,
        exit_reason: ExitReason | None = None,
    ) -> Trade:
        return Trade(
            type=trade_type,
            price=candle.close,
            amount=position.quantity,
            timestamp=candle.timestamp,
            mfi=values.mfi,
            rsi=values.rsi,
            macd=values.macd,
            profit_percent=profit_percent,
            exit_reason=exit_reason,
        )
