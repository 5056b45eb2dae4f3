"""
MarketDataCoordinator - owns the active selection and publishes snapshots

Flow on select(symbol, interval):
1. Cancel the in-flight history fetch, stop the previous live feed
2. Fetch history (bounded retry, fixed delay)
3. Seed a fresh CandleSeries + IndicatorEngine
4. Start a LiveFeedReconciler for the new selection
5. Publish a MarketSnapshot to every listener

Each selection owns its state (MarketSession). Nothing from a previous
selection can mutate the new one: its tasks are cancelled before new state
is created, and late callbacks from an old session are ignored.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from config.settings import Settings, get_settings
from core.exceptions import DataUnavailable, SelectionSuperseded
from core.interfaces.market_data import BaseCandleStream, BaseHistoricalDataSource
from core.models.market_data import ConnectionState, Interval, MarketSnapshot
from core.utils.gap_handling import parse_interval
from services.market_data.candle_series import CandleSeries
from services.market_data.indicator_engine import IndicatorEngine
from services.market_data.indicator_loader import IndicatorLoader
from services.market_data.reconciler import LiveFeedReconciler

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[MarketSnapshot], Awaitable[None]]


class MarketSession:
    """State owned by one selection"""

    def __init__(self, series: CandleSeries, engine: IndicatorEngine):
        self.series = series
        self.engine = engine
        self.reconciler: LiveFeedReconciler | None = None

    @property
    def key(self) -> str:
        return self.series.key


class MarketDataCoordinator:
    """
    Entry point for presentation collaborators

    Example:
        >>> coordinator = MarketDataCoordinator()
        >>> coordinator.on_snapshot(render)
        >>> snapshot = await coordinator.select("BTCUSDT", "1m")
        >>> snapshot.last_price
        67012.5
        >>> await coordinator.close()
    """

    def __init__(
        self,
        history: BaseHistoricalDataSource | None = None,
        stream_factory: Callable[[], BaseCandleStream] | None = None,
        settings: Settings | None = None,
    ):
        """
        Args:
            history: Historical source (default: factory, by settings.EXCHANGE)
            stream_factory: Returns a fresh live transport (default: factory)
            settings: Engine settings (default: get_settings())
        """
        self.settings = settings or get_settings()

        if history is None or stream_factory is None:
            from factory.client_factory import create_candle_stream, create_historical_source

            history = history or create_historical_source(self.settings)
            stream_factory = stream_factory or (lambda: create_candle_stream(self.settings))

        self.history = history
        self.stream_factory = stream_factory

        self._session: MarketSession | None = None
        self._load_task: asyncio.Task | None = None
        self._generation = 0
        self._listeners: list[SnapshotListener] = []

        self._snapshot: MarketSnapshot | None = None
        self._snapshot_key: tuple | None = None

    # ============================================
    # READ ACCESS
    # ============================================
    @property
    def session(self) -> MarketSession | None:
        return self._session

    @property
    def connection_state(self) -> ConnectionState:
        if self._session is None or self._session.reconciler is None:
            return ConnectionState.DISCONNECTED
        return self._session.reconciler.state

    def snapshot(self) -> MarketSnapshot:
        """
        Consistent read-only view of the active selection

        Rebuilt only when the series or connection state changed since the
        last call. Empty (DISCONNECTED) when nothing is selected.
        """
        session = self._session
        if session is None:
            return MarketSnapshot()

        key = (id(session), session.series.version, self.connection_state)
        if self._snapshot is not None and self._snapshot_key == key:
            return self._snapshot

        series = session.series
        self._snapshot = MarketSnapshot(
            symbol=series.symbol,
            interval=series.interval,
            candles=series.candles,
            indicators=session.engine.snapshot(),
            connection_state=self.connection_state,
            last_price=series.last_price,
            last_updated=series.updated_at,
        )
        self._snapshot_key = key
        return self._snapshot

    def on_snapshot(self, callback: SnapshotListener) -> None:
        """Register an async listener called with every published snapshot"""
        self._listeners.append(callback)

    # ============================================
    # SELECTION
    # ============================================
    async def select(self, symbol: str, interval: str | Interval) -> MarketSnapshot:
        """
        Make (symbol, interval) the active selection

        Returns:
            Snapshot of the freshly seeded selection

        Raises:
            ValueError: Unsupported interval
            DataUnavailable: History could not be fetched / seeded; nothing
                is selected afterwards
            SelectionSuperseded: A newer select() replaced this one
        """
        interval = parse_interval(interval)
        symbol = symbol.upper()

        self._generation += 1
        generation = self._generation
        logger.info(f"📊 Selecting {symbol}/{interval.value}")

        await self._teardown()
        if generation != self._generation:
            raise SelectionSuperseded(f"Selection {symbol}/{interval.value} superseded")

        task = asyncio.create_task(self._load(symbol, interval), name=f"load:{symbol}/{interval.value}")
        self._load_task = task
        try:
            session = await task

        except asyncio.CancelledError:
            if generation != self._generation:
                raise SelectionSuperseded(f"Selection {symbol}/{interval.value} superseded") from None
            task.cancel()
            raise

        finally:
            if self._load_task is task:
                self._load_task = None

        # A newer select() may have run between load completion and resumption
        if generation != self._generation:
            raise SelectionSuperseded(f"Selection {symbol}/{interval.value} superseded")

        self._session = session
        session.reconciler.start()

        snapshot = self.snapshot()
        logger.info(f"✓ Selected {session.key}: {len(session.series)} candles")
        await self._publish(snapshot)
        return snapshot

    async def unsubscribe(self) -> None:
        """Drop the active selection and stop its live feed"""
        self._generation += 1
        had_session = self._session is not None

        await self._teardown()
        if had_session:
            await self._publish(self.snapshot())

    async def close(self) -> None:
        """Tear down the selection and release the historical client"""
        await self.unsubscribe()
        await self.history.close()
        logger.info("✓ MarketDataCoordinator closed")

    # ============================================
    # INTERNALS
    # ============================================
    async def _teardown(self) -> None:
        task, self._load_task = self._load_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        session, self._session = self._session, None
        self._snapshot = None
        self._snapshot_key = None

        if session is not None:
            await session.reconciler.stop()
            logger.info(f"✓ Released selection {session.key}")

    async def _load(self, symbol: str, interval: Interval) -> MarketSession:
        max_attempts = self.settings.FETCH_MAX_ATTEMPTS
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                candles = await self.history.fetch_candles(
                    symbol, interval, limit=self.settings.HISTORY_LIMIT
                )
                if not candles:
                    raise DataUnavailable(symbol, interval.value, "empty payload")

                session = self._create_session(symbol, interval)
                session.series.seed(candles)
                session.engine.sync(session.series)

                warming_up = session.engine.warming_up()
                if warming_up:
                    logger.warning(
                        f"⚠️ {symbol}/{interval.value}: {session.engine.processed} closed candles, "
                        f"not enough history yet for {warming_up}"
                    )
                return session

            except Exception as e:
                last_error = e
                logger.warning(
                    f"⚠️ History fetch failed for {symbol}/{interval.value} "
                    f"(attempt {attempt}/{max_attempts}): {e}"
                )
                if attempt < max_attempts:
                    await asyncio.sleep(self.settings.FETCH_RETRY_DELAY_SECONDS)

        logger.error(f"✗ Giving up on {symbol}/{interval.value} after {max_attempts} attempts")
        raise DataUnavailable(symbol, interval.value, str(last_error)) from last_error

    def _create_session(self, symbol: str, interval: Interval) -> MarketSession:
        series = CandleSeries(
            symbol,
            interval,
            enable_gap_filling=self.settings.ENABLE_GAP_FILLING,
            max_gap_ratio=self.settings.MAX_GAP_RATIO,
        )
        engine = IndicatorEngine(IndicatorLoader.load_from_settings(self.settings))
        session = MarketSession(series, engine)

        session.reconciler = LiveFeedReconciler(
            series,
            engine,
            self.history,
            self.stream_factory,
            on_change=lambda: self._on_session_change(session),
            base_delay=self.settings.RECONNECT_BASE_DELAY_SECONDS,
            max_delay=self.settings.RECONNECT_MAX_DELAY_SECONDS,
            backfill_limit=self.settings.BACKFILL_LIMIT,
        )
        return session

    async def _on_session_change(self, session: MarketSession) -> None:
        if session is not self._session:
            return
        await self._publish(self.snapshot())

    async def _publish(self, snapshot: MarketSnapshot) -> None:
        for callback in list(self._listeners):
            try:
                await callback(snapshot)
            except Exception as e:
                logger.error(f"Error in snapshot listener: {e}", exc_info=True)
