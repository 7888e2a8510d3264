"""Tests for the SQLAlchemy CandleRepository on a temporary SQLite file."""

from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy import Insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import BASE_TIME, build_candle, build_series
from app.config import Settings
from app.storage import CandleRepository, Database, init_database
from app.storage import candle_repo
from app.storage.database import _async_url
from core.errors import StoreError
from core.store_protocol import CandleStore


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'candles.db'}", echo=False)
    await database.create_tables()
    yield database
    await database.close()


@pytest.fixture
def repo(db):
    return CandleRepository(db, dedup_tolerance_seconds=60)


def test_async_url():
    assert _async_url("postgresql://u@h/db") == "postgresql+asyncpg://u@h/db"
    assert _async_url("sqlite:///x.db") == "sqlite+aiosqlite:///x.db"
    assert _async_url("postgresql+asyncpg://u@h/db") == "postgresql+asyncpg://u@h/db"


class TestInsert:

    @pytest.mark.asyncio
    async def test_satisfies_protocol(self, repo):
        assert isinstance(repo, CandleStore)

    @pytest.mark.asyncio
    async def test_insert_and_query_round_trip(self, repo):
        candles = build_series([100.0, 101.0, 102.0])
        assert await repo.insert_batch(candles) == 3

        stored = await repo.query("KRW-BTC", BASE_TIME, BASE_TIME + timedelta(minutes=2))
        assert stored == candles

    @pytest.mark.asyncio
    async def test_exact_duplicate_is_skipped(self, repo):
        candle = build_candle()
        assert await repo.insert(candle) is True
        assert await repo.insert(candle) is False
        assert await repo.count("KRW-BTC") == 1

    @pytest.mark.asyncio
    async def test_near_duplicate_is_skipped(self, repo):
        await repo.insert(build_candle(timestamp=BASE_TIME))

        assert await repo.insert(build_candle(timestamp=BASE_TIME + timedelta(seconds=59))) is False
        assert await repo.insert(build_candle(timestamp=BASE_TIME - timedelta(seconds=30))) is False
        assert await repo.insert(build_candle(timestamp=BASE_TIME + timedelta(seconds=60))) is True

    @pytest.mark.asyncio
    async def test_duplicates_within_batch(self, repo):
        batch = [
            build_candle(timestamp=BASE_TIME),
            build_candle(timestamp=BASE_TIME + timedelta(seconds=20)),
            build_candle(timestamp=BASE_TIME + timedelta(minutes=1)),
        ]
        assert await repo.insert_batch(batch) == 2

    @pytest.mark.asyncio
    async def test_markets_are_independent(self, repo):
        await repo.insert(build_candle(market="KRW-BTC"))
        assert await repo.insert(build_candle(market="KRW-ETH")) is True
        assert await repo.list_markets() == ["KRW-BTC", "KRW-ETH"]

    @pytest.mark.asyncio
    async def test_empty_batch(self, repo):
        assert await repo.insert_batch([]) == 0


class TestQueries:

    @pytest.mark.asyncio
    async def test_count_and_edges(self, repo):
        assert await repo.count("KRW-BTC") == 0
        assert await repo.first_timestamp("KRW-BTC") is None
        assert await repo.last_timestamp("KRW-BTC") is None

        await repo.insert_batch(build_series([100.0] * 10))

        assert await repo.count("KRW-BTC") == 10
        assert await repo.first_timestamp("KRW-BTC") == BASE_TIME
        assert await repo.last_timestamp("KRW-BTC") == BASE_TIME + timedelta(minutes=9)

    @pytest.mark.asyncio
    async def test_query_is_inclusive_and_ordered(self, repo):
        await repo.insert_batch(list(reversed(build_series([float(i) for i in range(10)]))))

        result = await repo.query(
            "KRW-BTC", BASE_TIME + timedelta(minutes=2), BASE_TIME + timedelta(minutes=5)
        )

        assert [c.close for c in result] == [2.0, 3.0, 4.0, 5.0]


class TestDelete:

    @pytest.mark.asyncio
    async def test_delete_range(self, repo):
        await repo.insert_batch(build_series([100.0] * 10))

        deleted = await repo.delete_range(
            "KRW-BTC", BASE_TIME + timedelta(minutes=2), BASE_TIME + timedelta(minutes=4)
        )

        assert deleted == 3
        assert await repo.count("KRW-BTC") == 7

    @pytest.mark.asyncio
    async def test_delete_oldest(self, repo):
        await repo.insert_batch(build_series([100.0] * 10))

        assert await repo.delete_oldest("KRW-BTC", 4) == 4
        assert await repo.first_timestamp("KRW-BTC") == BASE_TIME + timedelta(minutes=4)
        assert await repo.delete_oldest("KRW-BTC", 0) == 0

    @pytest.mark.asyncio
    async def test_delete_all_only_touches_one_market(self, repo):
        await repo.insert_batch(build_series([100.0] * 5))
        await repo.insert_batch(build_series([100.0] * 3, market="KRW-ETH"))

        assert await repo.delete_all("KRW-BTC") == 5
        assert await repo.count("KRW-ETH") == 3
        assert await repo.list_markets() == ["KRW-ETH"]


@pytest.mark.asyncio
async def test_init_database_creates_tables(tmp_path):
    db = await init_database(f"sqlite:///{tmp_path / 'init.db'}")
    try:
        repo = CandleRepository(db)
        assert await repo.insert(build_candle()) is True
    finally:
        await db.close()


class TestTolerance:
    """Dedup window comes from settings unless given explicitly."""

    @pytest.mark.asyncio
    async def test_tolerance_from_settings(self, db, monkeypatch):
        monkeypatch.setattr(
            candle_repo, "get_settings", lambda: Settings(dedup_tolerance_seconds=10)
        )
        repo = CandleRepository(db)

        await repo.insert(build_candle(timestamp=BASE_TIME))

        assert await repo.insert(build_candle(timestamp=BASE_TIME + timedelta(seconds=5))) is False
        assert await repo.insert(build_candle(timestamp=BASE_TIME + timedelta(seconds=20))) is True

    @pytest.mark.asyncio
    async def test_explicit_tolerance_wins(self, db, monkeypatch):
        monkeypatch.setattr(
            candle_repo, "get_settings", lambda: Settings(dedup_tolerance_seconds=10)
        )
        repo = CandleRepository(db, dedup_tolerance_seconds=120)

        await repo.insert(build_candle(timestamp=BASE_TIME))

        assert await repo.insert(build_candle(timestamp=BASE_TIME + timedelta(seconds=90))) is False


class TestAtomicity:
    """A failed batch leaves nothing behind and can be retried."""

    @pytest.mark.asyncio
    async def test_failed_insert_rolls_back_whole_batch(self, repo, monkeypatch):
        await repo.insert_batch(build_series([100.0] * 2, market="KRW-BTC"))
        batch = build_series(
            [101.0] * 5, start=BASE_TIME + timedelta(minutes=10)
        ) + build_series([50.0] * 3, market="KRW-ETH")

        original_execute = AsyncSession.execute

        async def failing_execute(self, statement, *args, **kwargs):
            result = await original_execute(self, statement, *args, **kwargs)
            if isinstance(statement, Insert):
                # rows are already written inside the transaction
                raise SQLAlchemyError("disk I/O error")
            return result

        monkeypatch.setattr(AsyncSession, "execute", failing_execute)
        with pytest.raises(StoreError):
            await repo.insert_batch(batch)
        monkeypatch.undo()

        assert await repo.count("KRW-BTC") == 2
        assert await repo.count("KRW-ETH") == 0

        assert await repo.insert_batch(batch) == 8
        assert await repo.count("KRW-BTC") == 7
        assert await repo.count("KRW-ETH") == 3

        assert await repo.insert_batch(batch) == 0
        assert await repo.count("KRW-BTC") == 7
