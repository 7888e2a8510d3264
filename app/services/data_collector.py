"""Historical minute-candle collection service.

Fills a CandleStore with a contiguous history for one market:

1. Resolve the start of the range (explicit date, resume point, or two
   years back)
2. Walk forward through the range in windows of ``batch_size`` minutes
3. For each window ask the exchange for the candles ending at the window
   boundary (the API pages backward from its ``to`` parameter) and keep
   only the ones that fall inside ``[cursor, window_end)``
4. Insert each window as one batch; the store drops near-duplicates

Per-batch failures are recorded and retried after a short backoff so a
single bad response never loses what was already collected.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from app.clients import BithumbRestClient
from app.config import Settings, get_settings
from core.errors import CandleBacktestError, DecodingError
from core.models import Candle, CollectionPhase, CollectionState
from core.store_protocol import CandleStore

logger = logging.getLogger(__name__)

StateCallback = Callable[[CollectionState], Awaitable[None] | None]


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def years_before(moment: datetime, years: int) -> datetime:
    """Same calendar date ``years`` earlier (Feb 29 falls back to Feb 28)."""
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:
        return moment.replace(year=moment.year - years, day=28)


def estimate_total_batches(start: datetime, end: datetime, batch_size: int) -> float:
    """Rough number of batches for a range: total minutes / batch size, at least 1."""
    total_minutes = max(0.0, (end - start).total_seconds() / 60)
    return max(1.0, total_minutes / batch_size)


class DataCollector:
    """Service for collecting historical candles into a store.

    One run may be active per instance; ``collect`` called while a run is
    in progress returns the current state without starting another.
    Different markets can be collected concurrently with separate
    instances.
    """

    def __init__(
        self,
        client: BithumbRestClient,
        store: CandleStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.client = client
        self.store = store
        self.settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.batch_size = self.settings.batch_size
        self.batch_delay = self.settings.batch_delay
        self.error_backoff = self.settings.error_backoff
        self.max_consecutive_errors = self.settings.max_consecutive_errors

        self._state = CollectionState()
        self._callbacks: list[StateCallback] = []
        self._cancel_event: asyncio.Event | None = None
        self._cancel_notice: asyncio.Task | None = None

    # ── State ───────────────────────────────────────────────────

    @property
    def state(self) -> CollectionState:
        """Current progress snapshot."""
        return self._state

    @property
    def is_collecting(self) -> bool:
        return self._state.is_collecting

    def on_state(self, callback: StateCallback) -> None:
        """Register callback for every new state snapshot."""
        self._callbacks.append(callback)

    def _dispatch(self, state: CollectionState) -> list[Awaitable[None]]:
        """Call every listener; return the coroutines async listeners produced."""
        pending = []
        for callback in self._callbacks:
            try:
                result = callback(state)
            except Exception as e:
                logger.error(f"State callback error: {e}")
                continue
            if asyncio.iscoroutine(result):
                pending.append(result)
        return pending

    async def _await_listeners(self, pending: list[Awaitable[None]]) -> None:
        for coro in pending:
            try:
                await coro
            except Exception as e:
                logger.error(f"State callback error: {e}")

    async def _publish(self, **changes) -> None:
        self._state = self._state.model_copy(update=changes)
        await self._await_listeners(self._dispatch(self._state))

    # ── Commands ────────────────────────────────────────────────

    def cancel(self) -> None:
        """Request cancellation; honoured at the next batch boundary.

        Listeners receive the "cancelling" snapshot right away; async
        listeners finish before the terminal snapshot is published.
        """
        if self._cancel_event is None or not self.is_collecting:
            return
        self._cancel_event.set()
        self._state = self._state.model_copy(
            update={"is_cancelled": True, "progress_message": "Cancelling collection..."}
        )
        pending = self._dispatch(self._state)
        if pending:
            self._cancel_notice = asyncio.get_running_loop().create_task(
                self._await_listeners(pending)
            )
        logger.info(f"[{self._state.market}] Cancellation requested")

    async def collect(
        self,
        market: str,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        resume: bool = False,
    ) -> CollectionState:
        """
        Collect minute candles for a market.

        Args:
            market: Market code (e.g., "KRW-BTC")
            start_date: Explicit start; takes priority over ``resume``
            end_date: End of the range (defaults to now)
            resume: Continue from the newest stored candle

        Returns:
            Final state snapshot
        """
        if self.is_collecting:
            logger.warning(f"[{market}] Collection already running, ignoring request")
            return self._state

        cancel_event = asyncio.Event()
        self._cancel_event = cancel_event
        mode = "Resuming" if resume else "Starting"
        await self._publish(
            phase=CollectionPhase.COLLECTING,
            market=market,
            is_collecting=True,
            is_cancelled=False,
            progress=0.0,
            error_message=None,
            batches_done=0,
            candles_saved=0,
            progress_message=f"{mode} collection for {market}...",
        )

        try:
            end = _as_utc(end_date or self._clock())
            start = _as_utc(await self._resolve_start(market, start_date, resume))
        except CandleBacktestError as e:
            logger.error(f"[{market}] Collection not started: {e}")
            await self._publish(
                phase=CollectionPhase.IDLE,
                is_collecting=False,
                error_message=str(e),
                progress_message=f"Collection for {market} was not started.",
            )
            return self._state

        logger.info(f"[{market}] {mode} collection: {start} → {end}")
        try:
            completed = await self._run_batches(market, start, end, cancel_event)
        except (Exception, asyncio.CancelledError) as e:
            logger.exception(f"[{market}] Collection aborted: {e!r}")
            await self._publish(
                phase=CollectionPhase.IDLE,
                is_collecting=False,
                error_message=f"Collection aborted: {e!r}",
                progress_message=f"Collection for {market} was aborted.",
            )
            raise

        if self._cancel_notice is not None:
            await self._cancel_notice
            self._cancel_notice = None

        if cancel_event.is_set():
            await self._publish(
                phase=CollectionPhase.CANCELLED,
                is_collecting=False,
                is_cancelled=True,
                progress_message=f"Collection for {market} was cancelled.",
            )
            logger.info(f"[{market}] Cancelled after {self._state.batches_done} batches")
        elif completed:
            await self._publish(
                phase=CollectionPhase.COMPLETED,
                is_collecting=False,
                progress=1.0,
                progress_message=f"Collection for {market} completed.",
            )
            logger.info(
                f"[{market}] Completed: {self._state.batches_done} batches, "
                f"{self._state.candles_saved:,} candles saved"
            )
        else:
            await self._publish(
                phase=CollectionPhase.IDLE,
                is_collecting=False,
                progress_message=f"Collection for {market} stopped after repeated errors.",
            )
            logger.error(f"[{market}] Abandoned: {self._state.error_message}")

        return self._state

    async def _resolve_start(
        self, market: str, start_date: datetime | None, resume: bool
    ) -> datetime:
        """Explicit start, then resume point, then the default lookback."""
        if start_date is not None:
            return start_date
        if resume:
            last_ts = await self.store.last_timestamp(market)
            if last_ts is not None:
                return last_ts
        return years_before(self._clock(), self.settings.lookback_years)

    async def _run_batches(
        self,
        market: str,
        start: datetime,
        end: datetime,
        cancel_event: asyncio.Event,
    ) -> bool:
        """Run the batch loop.

        Returns:
            False if the run was abandoned after too many consecutive errors
        """
        estimated = estimate_total_batches(start, end, self.batch_size)
        window = timedelta(minutes=self.batch_size)
        cursor = start
        batches_done = 0
        saved = 0
        consecutive_errors = 0

        while cursor < end:
            window_end = min(cursor + window, end)
            await self._publish(
                progress_message=f"Collecting batch {batches_done + 1} ({market})..."
            )

            try:
                candles = await self.client.get_minute_candles(
                    market, to=window_end, count=self.batch_size
                )
                if not candles:
                    logger.warning(f"[{market}] No more data available at {window_end}")
                    break

                in_window = [c for c in candles if cursor <= c.timestamp < window_end]
                inserted = await self._save(in_window)
            except CandleBacktestError as e:
                consecutive_errors += 1
                if isinstance(e, DecodingError):
                    logger.error(f"[{market}] Unexpected response shape: {e}")
                else:
                    logger.warning(f"[{market}] Batch failed ({consecutive_errors}): {e}")
                await self._publish(error_message=f"Collection error: {e}")

                if cancel_event.is_set():
                    break
                if consecutive_errors >= self.max_consecutive_errors:
                    return False
                await asyncio.sleep(self.error_backoff)
                continue

            consecutive_errors = 0
            saved += inserted
            if in_window:
                logger.info(
                    f"[{market}] Saved {inserted}/{len(candles)} candles "
                    f"for {cursor} ~ {window_end}"
                )
            else:
                logger.debug(f"[{market}] No data in {cursor} ~ {window_end}")

            cursor = window_end
            batches_done += 1
            await self._publish(
                batches_done=batches_done,
                candles_saved=saved,
                progress=min(1.0, batches_done / estimated),
            )

            if cancel_event.is_set():
                break

            await asyncio.sleep(self.batch_delay)

        return True

    async def _save(self, candles: list[Candle]) -> int:
        if not candles:
            return 0
        return await self.store.insert_batch(candles)

    # ── Store queries ───────────────────────────────────────────

    async def count(self, market: str) -> int:
        return await self.store.count(market)

    async def has_data(self, market: str) -> bool:
        return await self.store.count(market) > 0

    async def first_timestamp(self, market: str) -> datetime | None:
        return await self.store.first_timestamp(market)

    async def last_timestamp(self, market: str) -> datetime | None:
        return await self.store.last_timestamp(market)

    async def list_markets(self) -> list[str]:
        return await self.store.list_markets()

    async def get_candles(self, market: str, start: datetime, end: datetime) -> list[Candle]:
        return await self.store.query(market, start, end)

    async def delete_all(self, market: str) -> int:
        return await self.store.delete_all(market)

    async def delete_range(self, market: str, start: datetime, end: datetime) -> int:
        return await self.store.delete_range(market, start, end)

    async def delete_oldest(self, market: str, count: int) -> int:
        return await self.store.delete_oldest(market, count)
