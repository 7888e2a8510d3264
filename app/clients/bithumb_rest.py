"""Bithumb REST API client for fetching historical minute candles."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from app.config import Settings, get_settings
from core.errors import DecodingError, NetworkError, ServerError
from core.models import Candle

logger = logging.getLogger(__name__)

MAX_CANDLES_PER_REQUEST = 200


class RateLimiter:
    """Simple rate limiter for API calls."""

    def __init__(self, calls_per_second: float = 10):
        self.interval = 1.0 / calls_per_second if calls_per_second > 0 else 0.0
        self.last_call = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait if necessary to respect rate limit."""
        if self.interval == 0:
            return
        async with self._lock:
            loop = asyncio.get_running_loop()
            wait_time = self.last_call + self.interval - loop.time()
            if wait_time > 0:
                await asyncio.sleep(wait_time)
            self.last_call = loop.time()


class CandleResponse(BaseModel):
    """One record of the minute-candle endpoint."""

    market: str
    candle_date_time_utc: datetime
    candle_date_time_kst: datetime
    opening_price: float
    high_price: float
    low_price: float
    trade_price: float
    timestamp: int
    candle_acc_trade_price: float
    candle_acc_trade_volume: float
    unit: int = 1

    def to_candle(self) -> Candle:
        ts = self.candle_date_time_utc
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return Candle(
            market=self.market,
            timestamp=ts.astimezone(timezone.utc),
            open=self.opening_price,
            high=self.high_price,
            low=self.low_price,
            close=self.trade_price,
            volume=self.candle_acc_trade_volume,
            acc_trade_value=self.candle_acc_trade_price,
            timeframe=f"{self.unit}m",
        )


class MarketInfo(BaseModel):
    """One record of the market listing endpoint."""

    market: str
    korean_name: str
    english_name: str
    market_warning: str | None = None


_candle_list = TypeAdapter(list[CandleResponse])
_market_list = TypeAdapter(list[MarketInfo])


class BithumbRestClient:
    """Bithumb public REST API client (v1 candle endpoints)."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = settings or get_settings()
        self.base_url = settings.api_base_url
        self.timeout = settings.api_timeout
        self.local_tz = timezone(timedelta(hours=settings.api_utc_offset_hours))
        self.rate_limiter = RateLimiter(settings.api_calls_per_second)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"accept": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "BithumbRestClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """GET an endpoint with rate limiting and map failures to API errors."""
        await self.rate_limiter.acquire()
        client = await self._get_client()
        logger.debug(f"GET {endpoint} {params}")

        try:
            response = await client.get(endpoint, params=params)
        except httpx.TransportError as e:
            raise NetworkError(f"{type(e).__name__} on {endpoint}: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            if response.is_error:
                raise ServerError(response.status_code, response.reason_phrase) from e
            raise DecodingError(f"Invalid JSON from {endpoint}: {response.text[:200]}") from e

        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            error = payload["error"]
            raise ServerError(
                error.get("name", 0),
                error.get("message") or "Unknown API error",
            )
        if response.is_error:
            raise ServerError(response.status_code, response.reason_phrase)

        return payload

    def format_local_time(self, when: datetime) -> str:
        """Render an instant as the exchange-local ``yyyy-MM-dd HH:mm:ss`` string."""
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return when.astimezone(self.local_tz).strftime("%Y-%m-%d %H:%M:%S")

    async def get_minute_candles(
        self,
        market: str,
        to: datetime,
        count: int = MAX_CANDLES_PER_REQUEST,
        unit: int = 1,
    ) -> list[Candle]:
        """
        Fetch minute candles ending at ``to`` (walking backward in time).

        Args:
            market: Market code (e.g., "KRW-BTC")
            to: Latest instant to include
            count: Number of candles (max 200)
            unit: Candle size in minutes

        Returns:
            List of Candle objects, oldest first
        """
        params = {
            "market": market,
            "to": self.format_local_time(to),
            "count": min(count, MAX_CANDLES_PER_REQUEST),
        }
        data = await self._request(f"/candles/minutes/{unit}", params)

        try:
            records = _candle_list.validate_python(data)
        except ValidationError as e:
            raise DecodingError(f"Unexpected candle payload for {market}: {e}") from e

        candles = [r.to_candle() for r in records]
        candles.sort(key=lambda c: c.timestamp)
        return candles

    async def get_markets(self) -> list[MarketInfo]:
        """List all markets traded on the exchange."""
        data = await self._request("/market/all", {"isDetails": "true"})
        try:
            return _market_list.validate_python(data)
        except ValidationError as e:
            raise DecodingError(f"Unexpected market payload: {e}") from e
