"""BacktestRunner: load candles from a store and simulate a strategy.

Independent of the collector. Uses:
- any CandleStore for candle access
- core/ for indicators and strategy rules
"""

from __future__ import annotations

import logging
import time
from datetime import datetime

from app.config import Settings, get_settings
from core.models import BacktestResult, Strategy
from core.store_protocol import CandleStore

from backtest.engine import BacktestEngine

logger = logging.getLogger(__name__)


class BacktestRunner:
    """Run backtests for one market at a time over stored candles."""

    def __init__(self, store: CandleStore, settings: Settings | None = None):
        self._store = store
        self.settings = settings or get_settings()

    async def run(
        self,
        market: str,
        strategy: Strategy,
        start: datetime,
        end: datetime,
        initial_amount: float | None = None,
    ) -> BacktestResult:
        """
        Backtest a strategy over ``[start, end]`` of stored candles.

        Args:
            market: Market code (e.g., "KRW-BTC")
            strategy: Strategy to simulate
            start: First candle time (inclusive)
            end: Last candle time (inclusive)
            initial_amount: Starting cash; defaults to the configured amount

        Raises:
            InsufficientDataError: Too few candles in the range
            ValueError: ``initial_amount`` is not positive
        """
        start_time = time.time()
        amount = initial_amount
        if amount is None:
            amount = self.settings.backtest_initial_amount

        logger.info(
            f"[{market}] Backtesting '{strategy.name}': "
            f"{start:%Y-%m-%d %H:%M} → {end:%Y-%m-%d %H:%M}, initial {amount:,.0f}"
        )

        candles = await self._store.query(market, start, end)
        logger.info(f"[{market}] Loaded {len(candles):,} candles")

        engine = BacktestEngine(
            strategy=strategy,
            initial_amount=amount,
            min_candles=self.settings.backtest_min_candles,
        )
        result = engine.run(candles)

        elapsed = time.time() - start_time
        logger.info(
            f"[{market}] Backtest completed in {elapsed:.2f}s: "
            f"{result.total_trades} trades, return {result.total_return_percent:+.2f}%"
        )
        return result
