"""Shared fixtures: candle factory and an in-memory CandleStore."""

import bisect
from datetime import datetime, timedelta, timezone
from typing import Sequence

import pytest

from app.config import Settings
from core.models import Candle

BASE_TIME = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)


def build_candle(
    close: float = 100.0,
    timestamp: datetime | None = None,
    market: str = "KRW-BTC",
    high: float | None = None,
    low: float | None = None,
    open: float | None = None,
    volume: float = 1.0,
) -> Candle:
    """Build a Candle with sensible defaults around ``close``."""
    return Candle(
        market=market,
        timestamp=timestamp or BASE_TIME,
        open=close if open is None else open,
        high=close + 1 if high is None else high,
        low=close - 1 if low is None else low,
        close=close,
        volume=volume,
    )


def build_series(closes: Sequence[float], market: str = "KRW-BTC", start: datetime = BASE_TIME) -> list[Candle]:
    """One candle per minute with the given closes."""
    return [
        build_candle(close=c, timestamp=start + timedelta(minutes=i), market=market)
        for i, c in enumerate(closes)
    ]


class InMemoryCandleStore:
    """CandleStore backed by per-market sorted lists."""

    def __init__(self, dedup_tolerance_seconds: int = 60):
        self.tolerance = timedelta(seconds=dedup_tolerance_seconds)
        self.candles: dict[str, list[Candle]] = {}
        self.insert_calls = 0

    def _keys(self, market: str) -> list[datetime]:
        return [c.timestamp for c in self.candles.get(market, [])]

    async def insert(self, candle: Candle) -> bool:
        return await self.insert_batch([candle]) == 1

    async def insert_batch(self, candles: Sequence[Candle]) -> int:
        self.insert_calls += 1
        inserted = 0
        for candle in candles:
            rows = self.candles.setdefault(candle.market, [])
            keys = [c.timestamp for c in rows]
            i = bisect.bisect_left(keys, candle.timestamp)
            if i < len(keys) and keys[i] - candle.timestamp < self.tolerance:
                continue
            if i > 0 and candle.timestamp - keys[i - 1] < self.tolerance:
                continue
            rows.insert(i, candle)
            inserted += 1
        return inserted

    async def query(self, market: str, start: datetime, end: datetime) -> list[Candle]:
        return [c for c in self.candles.get(market, []) if start <= c.timestamp <= end]

    async def count(self, market: str) -> int:
        return len(self.candles.get(market, []))

    async def first_timestamp(self, market: str) -> datetime | None:
        keys = self._keys(market)
        return keys[0] if keys else None

    async def last_timestamp(self, market: str) -> datetime | None:
        keys = self._keys(market)
        return keys[-1] if keys else None

    async def list_markets(self) -> list[str]:
        return sorted(m for m, rows in self.candles.items() if rows)

    async def delete_all(self, market: str) -> int:
        return len(self.candles.pop(market, []))

    async def delete_range(self, market: str, start: datetime, end: datetime) -> int:
        rows = self.candles.get(market, [])
        kept = [c for c in rows if not start <= c.timestamp <= end]
        self.candles[market] = kept
        return len(rows) - len(kept)

    async def delete_oldest(self, market: str, count: int) -> int:
        rows = self.candles.get(market, [])
        removed = rows[: max(count, 0)]
        self.candles[market] = rows[len(removed):]
        return len(removed)


@pytest.fixture
def store() -> InMemoryCandleStore:
    return InMemoryCandleStore()


@pytest.fixture
def settings() -> Settings:
    """Settings with all delays disabled."""
    return Settings(
        database_url="sqlite:///:memory:",
        batch_size=200,
        batch_delay=0.0,
        error_backoff=0.0,
        max_consecutive_errors=3,
        api_calls_per_second=0,
        backtest_initial_amount=10_000.0,
    )
