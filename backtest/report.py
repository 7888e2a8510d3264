"""Report formatting for backtest results.

Outputs results to console (formatted tables) and JSON files.
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum

from core.models import BacktestResult, TradeType


class ReportEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


class ReportFormatter:
    """Format backtest results for display and export."""

    @staticmethod
    def print_console(result: BacktestResult, max_trades: int = 20) -> None:
        """Print formatted report to console."""
        print("\n" + "=" * 70)
        print(f"  BACKTEST RESULTS: {result.strategy_name}")
        print("=" * 70)
        print(f"  Period: {result.start_date:%Y-%m-%d %H:%M} → {result.end_date:%Y-%m-%d %H:%M}")

        print("\n" + "-" * 70)
        print("  OVERALL")
        print("-" * 70)
        print(f"  Initial amount: {result.initial_amount:,.0f}")
        print(f"  Final amount:   {result.final_amount:,.0f}")
        print(f"  Total return:   {result.total_return_percent:+.2f}%")
        print(f"  Max drawdown:   {result.max_drawdown_percent:.2f}%")
        print(f"  Total trades:   {result.total_trades}")
        print(f"  Wins:           {result.winning_trades}")
        print(f"  Losses:         {result.losing_trades}")
        print(f"  Win rate:       {result.win_rate_percent:.1f}%")

        if result.trades:
            shown = result.trades[-max_trades:]
            print("\n" + "-" * 70)
            print(f"  TRADES (last {len(shown)} of {len(result.trades)})")
            print("-" * 70)
            print(f"  {'Time':<17} {'Side':<5} {'Price':>14} {'Amount':>14} {'P/L%':>8} {'Reason':>12}")
            for t in shown:
                pl = f"{t.profit_percent:+.2f}" if t.profit_percent is not None else "-"
                reason = t.exit_reason.value if t.exit_reason else "-"
                side = "BUY" if t.type == TradeType.BUY else "SELL"
                print(
                    f"  {t.timestamp:%Y-%m-%d %H:%M} {side:<5} {t.price:>14,.2f} "
                    f"{t.amount:>14.8f} {pl:>8} {reason:>12}"
                )

        print("\n" + "=" * 70)

    @staticmethod
    def to_dict(result: BacktestResult) -> dict:
        """Convert results to JSON-serializable dict."""
        return {
            "metadata": {
                "strategy_name": result.strategy_name,
                "start_date": result.start_date.isoformat(),
                "end_date": result.end_date.isoformat(),
            },
            "overall": {
                "initial_amount": result.initial_amount,
                "final_amount": round(result.final_amount, 2),
                "total_return_percent": round(result.total_return_percent, 4),
                "max_drawdown_percent": round(result.max_drawdown_percent, 4),
                "total_trades": result.total_trades,
                "winning_trades": result.winning_trades,
                "losing_trades": result.losing_trades,
                "win_rate_percent": round(result.win_rate_percent, 2),
            },
            "trades": [
                {
                    "type": t.type.value,
                    "timestamp": t.timestamp.isoformat(),
                    "price": t.price,
                    "amount": t.amount,
                    "mfi": t.mfi,
                    "rsi": t.rsi,
                    "macd": t.macd,
                    "profit_percent": t.profit_percent,
                    "exit_reason": t.exit_reason.value if t.exit_reason else None,
                }
                for t in result.trades
            ],
        }

    @staticmethod
    def save_json(result: BacktestResult, filepath: str) -> None:
        """Save results to JSON file."""
        data = ReportFormatter.to_dict(result)
        with open(filepath, "w") as f:
            json.dump(data, f, indent=2, cls=ReportEncoder)
        print(f"\nResults saved to {filepath}")
