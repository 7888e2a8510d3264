"""Backtesting system for indicator strategies on minute candles.

Only depends on core/ for business logic and on a CandleStore for data.

Usage:
    runner = BacktestRunner(store)
    result = await runner.run("KRW-BTC", Strategy.conservative(), start, end)
    ReportFormatter.print_console(result)
"""

from backtest.engine import BacktestEngine
from backtest.report import ReportFormatter
from backtest.runner import BacktestRunner

__all__ = ["BacktestEngine", "BacktestRunner", "ReportFormatter"]
