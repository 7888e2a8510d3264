"""Data models."""

from core.models.candle import Candle
from core.models.collection import CollectionPhase, CollectionState
from core.models.strategy import Indicator, Strategy
from core.models.trade import BacktestResult, ExitReason, Trade, TradeType

__all__ = [
    "Candle",
    "CollectionPhase",
    "CollectionState",
    "Indicator",
    "Strategy",
    "BacktestResult",
    "ExitReason",
    "Trade",
    "TradeType",
]
