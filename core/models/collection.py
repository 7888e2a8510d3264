"""Data collection progress state."""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class CollectionPhase(str, Enum):
    """Lifecycle of a collection run."""

    IDLE = "idle"
    COLLECTING = "collecting"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CollectionState(BaseModel):
    """Snapshot of a DataCollector's progress.

    Snapshots are immutable; the collector publishes a new one on every
    change. ``error_message`` holds the most recent batch error and survives
    until the next run starts.
    """

    model_config = ConfigDict(frozen=True)

    phase: CollectionPhase = CollectionPhase.IDLE
    market: str | None = None
    is_collecting: bool = False
    progress: float = 0.0
    progress_message: str = ""
    error_message: str | None = None
    is_cancelled: bool = False
    batches_done: int = 0
    candles_saved: int = 0
