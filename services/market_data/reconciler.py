"""
LiveFeedReconciler - apply a live candle stream to a CandleSeries

State machine:
    DISCONNECTED → CONNECTING → LIVE
    LIVE → RECONNECTING → CONNECTING → LIVE      (transport lost, backoff)
    any → DISCONNECTED                            (stop)

Two coroutines per subscription:
- pump: owns the transport; pushes CandleUpdate events onto one queue and
  handles reconnect with exponential backoff
- consumer: the single serialized update path; applies queued events to the
  series, runs backfills, syncs indicators

Events received while a backfill is outstanding stay in the queue and are
replayed afterward in arrival order; those the backfill already covered are
discarded.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from core.exceptions import TransportLost
from core.interfaces.market_data import BaseCandleStream, BaseHistoricalDataSource
from core.models.market_data import CandleUpdate, ConnectionState
from services.market_data.candle_series import CandleSeries, UpsertResult
from services.market_data.indicator_engine import IndicatorEngine

logger = logging.getLogger(__name__)

# Queued after a reconnect: run a backfill check before the next live event
_RESYNC = object()


class LiveFeedReconciler:
    """
    Merge live updates into one selection's CandleSeries

    Example:
        >>> reconciler = LiveFeedReconciler(series, engine, history, BinanceKlineStream)
        >>> reconciler.start()
        >>> reconciler.state
        <ConnectionState.CONNECTING: 'connecting'>
        >>> await reconciler.stop()
    """

    def __init__(
        self,
        series: CandleSeries,
        engine: IndicatorEngine,
        history: BaseHistoricalDataSource,
        stream_factory: Callable[[], BaseCandleStream],
        on_change: Callable[[], Awaitable[None]] | None = None,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        backfill_limit: int = 1000,
    ):
        """
        Args:
            series: Seeded series for this selection
            engine: Indicator engine bound to `series`
            history: Historical source used for backfills
            stream_factory: Returns a fresh transport handle per connection attempt
            on_change: Awaited after every mutation and state transition
            base_delay: First reconnect delay (seconds), doubled per failure
            max_delay: Reconnect delay ceiling (seconds)
            backfill_limit: Max candles requested per backfill
        """
        self.series = series
        self.engine = engine
        self.history = history
        self.stream_factory = stream_factory
        self.on_change = on_change
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backfill_limit = backfill_limit

        self.symbol = series.symbol
        self.interval = series.interval
        self.state = ConnectionState.DISCONNECTED

        self._queue: asyncio.Queue = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []
        self._resync_pending = False
        self._covered_through: int | None = None

        self.stats = {
            "received": 0,
            "applied": 0,
            "stale": 0,
            "discarded": 0,
            "gaps": 0,
            "corrupt": 0,
            "backfills": 0,
            "reconnects": 0,
        }

    @property
    def key(self) -> str:
        return self.series.key

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def backoff_delay(self, failures: int) -> float:
        """Delay before reconnect attempt number `failures` (1-based)"""
        return min(self.base_delay * 2 ** (failures - 1), self.max_delay)

    # ============================================
    # LIFECYCLE
    # ============================================
    def start(self) -> None:
        """Start pump + consumer (must be called from a running event loop)"""
        if self._tasks:
            return

        self.state = ConnectionState.CONNECTING
        self._tasks = [
            asyncio.create_task(self._pump(), name=f"pump:{self.key}"),
            asyncio.create_task(self._consume(), name=f"consume:{self.key}"),
        ]
        logger.info(f"🚀 Live feed started for {self.key}")

    async def stop(self) -> None:
        """
        Close the transport and cancel pending backoff / backfill

        Buffered events are dropped. Safe to call more than once.
        """
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._queue = asyncio.Queue()
        self._resync_pending = False
        self.state = ConnectionState.DISCONNECTED

        if tasks:
            logger.info(f"✓ Live feed stopped for {self.key} (stats: {self.stats})")

    # ============================================
    # TRANSPORT
    # ============================================
    async def _pump(self) -> None:
        failures = 0
        reconnecting = False

        while True:
            stream = None
            try:
                stream = self.stream_factory()
                await stream.connect(self.symbol, self.interval)

                async for update in stream.updates():
                    if self.state is not ConnectionState.LIVE:
                        if reconnecting:
                            # Any reconnect may have dropped events
                            self._queue.put_nowait(_RESYNC)
                            self.stats["reconnects"] += 1
                        failures = 0
                        await self._transition(ConnectionState.LIVE)
                        logger.info(f"✓ Live feed connected: {self.key}")

                    self.stats["received"] += 1
                    self._queue.put_nowait(update)

                raise TransportLost(f"Stream for {self.key} closed by remote")

            except Exception as e:
                logger.error(f"✗ Transport lost for {self.key}: {e}")

            finally:
                if stream is not None:
                    await self._close_stream(stream)

            failures += 1
            reconnecting = True
            delay = self.backoff_delay(failures)

            await self._transition(ConnectionState.RECONNECTING)
            logger.info(f"Reconnecting {self.key} in {delay:.1f}s (attempt {failures})")
            await asyncio.sleep(delay)
            await self._transition(ConnectionState.CONNECTING)

    async def _close_stream(self, stream: BaseCandleStream) -> None:
        try:
            await stream.close()
        except Exception as e:
            logger.warning(f"Error closing stream for {self.key}: {e}")

    async def _transition(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        logger.debug(f"{self.key}: {self.state.value} → {state.value}")
        self.state = state
        await self._notify()

    # ============================================
    # SERIALIZED UPDATE PATH
    # ============================================
    async def _consume(self) -> None:
        while True:
            item = await self._queue.get()

            if item is _RESYNC:
                self._resync_pending = True
                continue

            version = self.series.version
            try:
                if self._resync_pending:
                    self._resync_pending = not await self._backfill()
                await self._apply(item)
                self.engine.sync(self.series)

            except Exception as e:
                # Never let one bad event stop the feed
                logger.error(f"❌ Error applying update for {self.key}: {e}", exc_info=True)
                self.engine.sync(self.series)

            if self.series.version != version:
                await self._notify()

    async def _apply(self, update: CandleUpdate) -> None:
        if self._covered_through is not None and update.open_time <= self._covered_through:
            self.stats["discarded"] += 1
            logger.debug(f"Update {update.open_time} already covered by backfill, discarded")
            return

        candle = update.to_candle()
        result = self.series.upsert(candle)

        if result is UpsertResult.GAP:
            self.stats["gaps"] += 1
            last = self.series.last
            logger.warning(
                f"📊 Gap in {self.key}: update {update.open_time} after {last.open_time if last else None}"
            )

            await self._backfill()
            if self._covered_through is not None and update.open_time <= self._covered_through:
                self.stats["discarded"] += 1
                return

            result = self.series.upsert(candle)
            if result is UpsertResult.GAP:
                logger.warning(f"⚠️ Gap in {self.key} not bridged by backfill, dropping {update.open_time}")
                return

        self._count(result)

    async def _backfill(self) -> bool:
        """
        Fetch closed candles after the last closed one and merge them

        Returns:
            True if the fetch and merge succeeded
        """
        last_closed = self.series.last_closed
        start_time = last_closed.open_time + self.series.step_ms if last_closed else None
        self.stats["backfills"] += 1

        logger.info(f"🔄 Backfilling {self.key} from {start_time}")
        try:
            candles = await self.history.fetch_candles(
                self.symbol,
                self.interval,
                limit=self.backfill_limit,
                start_time=start_time,
            )
            self._covered_through = self.series.merge_backfill(candles)
            self.engine.sync(self.series)

        except Exception as e:
            logger.error(f"✗ Backfill failed for {self.key}: {e}")
            return False

        return True

    def _count(self, result: UpsertResult) -> None:
        if result.mutated:
            self.stats["applied"] += 1
        elif result is UpsertResult.CORRUPT_REVISION:
            self.stats["corrupt"] += 1
        else:
            self.stats["stale"] += 1

    async def _notify(self) -> None:
        if self.on_change is None:
            return
        try:
            await self.on_change()
        except Exception as e:
            logger.error(f"Error in change callback for {self.key}: {e}", exc_info=True)
