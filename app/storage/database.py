"""Database connection and table definitions."""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy import Column, DateTime, Double, Index, String
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.config import get_settings

Base = declarative_base()


class CandleTable(Base):
    """Minute candle table.

    The primary key guards exact duplicates; near-duplicates inside the
    tolerance window are rejected by CandleRepository before insert.
    """

    __tablename__ = "candles"

    market = Column(String(20), primary_key=True)
    timestamp = Column(DateTime(timezone=True), primary_key=True)
    open = Column(Double, nullable=False)
    high = Column(Double, nullable=False)
    low = Column(Double, nullable=False)
    close = Column(Double, nullable=False)
    volume = Column(Double, nullable=False)
    acc_trade_value = Column(Double, nullable=False, default=0.0)
    timeframe = Column(String(10), nullable=False, default="1m")

    __table_args__ = (
        Index("idx_candles_market_timestamp", "market", "timestamp"),
    )


def _async_url(url: str) -> str:
    """Pick the async driver for plain postgresql:// and sqlite:// URLs."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None, echo: bool | None = None):
        settings = get_settings()
        url = _async_url(database_url or settings.database_url)

        engine_kwargs: dict[str, Any] = {
            "echo": settings.debug if echo is None else echo,
        }
        if url.startswith("postgresql+asyncpg://"):
            # One writer per market plus a handful of readers
            engine_kwargs.update(
                pool_size=5,
                max_overflow=10,
                pool_pre_ping=True,
                pool_recycle=3600,
                pool_timeout=30,
                connect_args={
                    "timeout": 10,
                    "command_timeout": 60,
                },
            )

        self.engine = create_async_engine(url, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self) -> None:
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session. Commits on success, rolls back on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Close database connection."""
        await self.engine.dispose()


async def init_database(database_url: str | None = None) -> Database:
    """Create a Database and make sure its tables exist."""
    db = Database(database_url)
    await db.create_tables()
    return db
