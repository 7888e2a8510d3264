"""Exchange clients."""

from app.clients.bithumb_rest import (
    BithumbRestClient,
    CandleResponse,
    MarketInfo,
    RateLimiter,
)

__all__ = [
    "BithumbRestClient",
    "CandleResponse",
    "MarketInfo",
    "RateLimiter",
]
