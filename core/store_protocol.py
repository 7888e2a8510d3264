"""Candle store protocol for storage-agnostic collection and backtesting.

Any storage backend (SQL database, in-memory fake, etc.) can implement
this protocol to be used by the DataCollector and the BacktestRunner.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence, runtime_checkable

from core.models.candle import Candle


@runtime_checkable
class CandleStore(Protocol):
    """Protocol that candle storage backends must implement.

    Implementations keep at most one candle per market within the
    deduplication tolerance and apply every batch mutation atomically.
    """

    async def insert(self, candle: Candle) -> bool:
        """Insert one candle. Returns False if it was a near-duplicate."""
        ...

    async def insert_batch(self, candles: Sequence[Candle]) -> int:
        """Insert candles in one transaction. Returns the number inserted."""
        ...

    async def query(self, market: str, start: datetime, end: datetime) -> list[Candle]:
        """Candles with ``start <= timestamp <= end``, oldest first."""
        ...

    async def count(self, market: str) -> int:
        ...

    async def first_timestamp(self, market: str) -> datetime | None:
        ...

    async def last_timestamp(self, market: str) -> datetime | None:
        ...

    async def list_markets(self) -> list[str]:
        """Markets that have at least one stored candle, sorted."""
        ...

    async def delete_all(self, market: str) -> int:
        ...

    async def delete_range(self, market: str, start: datetime, end: datetime) -> int:
        """Delete candles with ``start <= timestamp <= end``."""
        ...

    async def delete_oldest(self, market: str, count: int) -> int:
        ...
