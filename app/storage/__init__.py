"""Data storage layer."""

from app.storage.database import Base, CandleTable, Database, init_database
from app.storage.candle_repo import CandleRepository

__all__ = [
    "Base",
    "CandleTable",
    "Database",
    "init_database",
    "CandleRepository",
]
