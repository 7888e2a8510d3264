"""Error taxonomy shared by the collector, the store and the simulator."""

from __future__ import annotations


class CandleBacktestError(Exception):
    """Base class for all errors raised by this package."""


class NetworkError(CandleBacktestError):
    """Transport failure or timeout talking to the exchange. Retryable."""


class ServerError(CandleBacktestError):
    """The exchange answered with a structured error payload."""

    def __init__(self, code: int | str, message: str):
        super().__init__(f"API Error {code}: {message}")
        self.code = code
        self.message = message


class DecodingError(CandleBacktestError):
    """Response body did not match the expected shape.

    Retryable, but usually means the upstream schema changed.
    """


class StoreError(CandleBacktestError):
    """Persistence failure. Fatal for the current batch only."""


class InsufficientDataError(CandleBacktestError):
    """Not enough candles to run a backtest."""

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient data for backtest: {available} candles available, "
            f"{required} required"
        )
        self.required = required
        self.available = available
