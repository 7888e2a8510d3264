"""Candle data repository."""

from __future__ import annotations

import bisect
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Sequence

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError

from app.config import get_settings
from app.storage.database import CandleTable, Database
from core.errors import StoreError
from core.models import Candle

logger = logging.getLogger(__name__)


def _utc(ts: datetime) -> datetime:
    """Normalise to aware UTC (SQLite hands back naive datetimes)."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _row_to_candle(row: CandleTable) -> Candle:
    return Candle(
        market=row.market,
        timestamp=_utc(row.timestamp),
        open=row.open,
        high=row.high,
        low=row.low,
        close=row.close,
        volume=row.volume,
        acc_trade_value=row.acc_trade_value,
        timeframe=row.timeframe,
    )


class CandleRepository:
    """SQL-backed CandleStore.

    A candle is dropped when another candle of the same market already
    exists, in the table or earlier in the same batch, less than
    ``dedup_tolerance_seconds`` away. Each call runs in one transaction.
    """

    def __init__(self, db: Database, dedup_tolerance_seconds: int | None = None):
        if dedup_tolerance_seconds is None:
            dedup_tolerance_seconds = get_settings().dedup_tolerance_seconds
        self._db = db
        self._tolerance = timedelta(seconds=dedup_tolerance_seconds)

    async def insert(self, candle: Candle) -> bool:
        """Insert a single candle. Returns False if it was a near-duplicate."""
        return await self.insert_batch([candle]) == 1

    async def insert_batch(self, candles: Sequence[Candle]) -> int:
        """Insert candles atomically, skipping near-duplicates.

        Returns:
            Number of candles actually inserted
        """
        if not candles:
            return 0

        by_market: dict[str, list[Candle]] = defaultdict(list)
        for candle in candles:
            by_market[candle.market].append(candle)

        rows: list[dict] = []
        try:
            async with self._db.session() as session:
                for market, group in by_market.items():
                    group.sort(key=lambda c: c.timestamp)
                    lo = _utc(group[0].timestamp) - self._tolerance
                    hi = _utc(group[-1].timestamp) + self._tolerance

                    result = await session.execute(
                        select(CandleTable.timestamp)
                        .where(
                            CandleTable.market == market,
                            CandleTable.timestamp > lo,
                            CandleTable.timestamp < hi,
                        )
                        .order_by(CandleTable.timestamp.asc())
                    )
                    taken = [_utc(ts) for ts in result.scalars().all()]

                    for candle in group:
                        ts = _utc(candle.timestamp)
                        if self._is_near(taken, ts):
                            continue
                        bisect.insort(taken, ts)
                        rows.append(
                            {
                                "market": candle.market,
                                "timestamp": ts,
                                "open": candle.open,
                                "high": candle.high,
                                "low": candle.low,
                                "close": candle.close,
                                "volume": candle.volume,
                                "acc_trade_value": candle.acc_trade_value,
                                "timeframe": candle.timeframe,
                            }
                        )

                if rows:
                    await session.execute(insert(CandleTable), rows)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to insert {len(candles)} candles: {e}") from e

        skipped = len(candles) - len(rows)
        if skipped:
            logger.debug(f"Skipped {skipped} duplicate candles")
        return len(rows)

    def _is_near(self, taken: list[datetime], ts: datetime) -> bool:
        """Check sorted ``taken`` for a timestamp within the tolerance of ``ts``."""
        i = bisect.bisect_left(taken, ts)
        if i < len(taken) and taken[i] - ts < self._tolerance:
            return True
        if i > 0 and ts - taken[i - 1] < self._tolerance:
            return True
        return False

    async def query(self, market: str, start: datetime, end: datetime) -> list[Candle]:
        """Get candles within a time range, oldest first."""
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(CandleTable)
                    .where(
                        CandleTable.market == market,
                        CandleTable.timestamp >= _utc(start),
                        CandleTable.timestamp <= _utc(end),
                    )
                    .order_by(CandleTable.timestamp.asc())
                )
                return [_row_to_candle(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to query candles for {market}: {e}") from e

    async def count(self, market: str) -> int:
        """Count stored candles for a market."""
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(func.count()).select_from(CandleTable).where(CandleTable.market == market)
                )
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to count candles for {market}: {e}") from e

    async def first_timestamp(self, market: str) -> datetime | None:
        """Get the timestamp of the oldest candle."""
        return await self._edge_timestamp(market, func.min)

    async def last_timestamp(self, market: str) -> datetime | None:
        """Get the timestamp of the most recent candle."""
        return await self._edge_timestamp(market, func.max)

    async def _edge_timestamp(self, market: str, agg) -> datetime | None:
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(agg(CandleTable.timestamp)).where(CandleTable.market == market)
                )
                ts = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read timestamps for {market}: {e}") from e
        return _utc(ts) if ts is not None else None

    async def list_markets(self) -> list[str]:
        """Markets with at least one stored candle."""
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(CandleTable.market).distinct().order_by(CandleTable.market)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list markets: {e}") from e

    async def delete_all(self, market: str) -> int:
        """Delete every candle of a market. Returns count deleted."""
        return await self._delete(market, delete(CandleTable).where(CandleTable.market == market))

    async def delete_range(self, market: str, start: datetime, end: datetime) -> int:
        """Delete candles within a time range. Returns count deleted."""
        stmt = delete(CandleTable).where(
            CandleTable.market == market,
            CandleTable.timestamp >= _utc(start),
            CandleTable.timestamp <= _utc(end),
        )
        return await self._delete(market, stmt)

    async def delete_oldest(self, market: str, count: int) -> int:
        """Delete the ``count`` oldest candles of a market. Returns count deleted."""
        if count <= 0:
            return 0
        oldest = (
            select(CandleTable.timestamp)
            .where(CandleTable.market == market)
            .order_by(CandleTable.timestamp.asc())
            .limit(count)
        )
        stmt = delete(CandleTable).where(
            CandleTable.market == market,
            CandleTable.timestamp.in_(oldest),
        )
        return await self._delete(market, stmt)

    async def _delete(self, market: str, stmt) -> int:
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    stmt.execution_options(synchronize_session=False)
                )
                deleted = result.rowcount or 0
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to delete candles for {market}: {e}") from e
        logger.info(f"[{market}] Deleted {deleted} candles")
        return deleted
