"""
Unit tests for MarketDataCoordinator

Covers selection lifecycle, retry policy, snapshot consistency and
isolation between selections.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from core.exceptions import DataUnavailable, SelectionSuperseded
from core.models.market_data import ConnectionState, Interval, MarketSnapshot
from services.market_data.coordinator import MarketDataCoordinator
from tests.unit.fakes import (
    FakeHistory,
    FakeStreamFactory,
    make_candles,
    make_update,
    open_time,
    settle,
    wait_for,
)


class SwitchingHistory(FakeHistory):
    """Starts select("BBB") right before the AAA history is returned"""

    def __init__(self, candles):
        super().__init__(candles)
        self.coordinator = None
        self.next_select = None

    async def fetch_candles(self, symbol, interval, limit=500, start_time=None):
        candles = await super().fetch_candles(symbol, interval, limit, start_time)
        if symbol == "AAA" and self.next_select is None:
            self.next_select = asyncio.create_task(self.coordinator.select("BBB", interval))
        return candles


@pytest.fixture
def history():
    """Exchange history: 60 closed candles"""
    return FakeHistory(make_candles(range(60)))


@pytest.fixture
def streams():
    return FakeStreamFactory()


@pytest_asyncio.fixture
async def coordinator(history, streams, engine_settings):
    coordinator = MarketDataCoordinator(history=history, stream_factory=streams, settings=engine_settings)
    yield coordinator
    await coordinator.close()


@pytest.mark.unit
class TestSelect:
    """Test select() happy path"""

    @pytest.mark.asyncio
    async def test_select_seeds_and_subscribes(self, coordinator, history, streams):
        snapshot = await coordinator.select("btcusdt", "1m")

        assert snapshot.symbol == "BTCUSDT"
        assert snapshot.interval is Interval.M1
        assert len(snapshot.candles) == 60
        assert history.calls[0] == ("BTCUSDT", Interval.M1, 100, None)

        assert set(snapshot.indicators) == {"sma20", "sma50", "rsi14"}
        assert len(snapshot.indicators["sma20"]) == 41
        assert len(snapshot.indicators["sma50"]) == 11
        assert len(snapshot.indicators["rsi14"]) == 46

        await wait_for(lambda: len(streams.created) == 1)
        await settle()
        assert streams.current.connected_to == ("BTCUSDT", Interval.M1)

    @pytest.mark.asyncio
    async def test_live_updates_reach_snapshot(self, coordinator, streams):
        await coordinator.select("BTCUSDT", Interval.M1)
        await wait_for(lambda: len(streams.created) == 1)

        streams.current.push(make_update(60, 500.0))
        await wait_for(lambda: coordinator.snapshot().last_price == 500.0)

        snapshot = coordinator.snapshot()
        assert snapshot.connection_state is ConnectionState.LIVE
        assert snapshot.candles[-1].closed is False
        assert snapshot.last_updated is not None

    @pytest.mark.asyncio
    async def test_short_history_leaves_indicators_warming_up(self, streams, engine_settings):
        history = FakeHistory(make_candles(range(30)))
        coordinator = MarketDataCoordinator(history=history, stream_factory=streams, settings=engine_settings)

        snapshot = await coordinator.select("BTCUSDT", "1m")

        assert snapshot.indicators["sma50"] == ()
        assert len(snapshot.indicators["sma20"]) == 11
        assert coordinator.session.engine.warming_up() == ["sma50"]
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_last_price_falls_back_to_last_closed(self, coordinator):
        snapshot = await coordinator.select("BTCUSDT", "1m")

        assert snapshot.last_price == snapshot.candles[-1].close == 159.0

    @pytest.mark.asyncio
    async def test_invalid_interval(self, coordinator, history):
        with pytest.raises(ValueError, match="Unsupported interval"):
            await coordinator.select("BTCUSDT", "2m")

        assert history.calls == []


@pytest.mark.unit
class TestSnapshots:
    """Test snapshot publishing"""

    @pytest.mark.asyncio
    async def test_snapshot_before_select(self, coordinator):
        snapshot = coordinator.snapshot()

        assert snapshot == MarketSnapshot()
        assert coordinator.connection_state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_snapshot_cached_until_change(self, coordinator, streams):
        await coordinator.select("BTCUSDT", "1m")

        assert coordinator.snapshot() is coordinator.snapshot()

    @pytest.mark.asyncio
    async def test_listeners_receive_snapshots(self, coordinator, streams):
        received = []

        async def listener(snapshot):
            received.append(snapshot)

        coordinator.on_snapshot(listener)
        await coordinator.select("BTCUSDT", "1m")
        await wait_for(lambda: len(streams.created) == 1)
        streams.current.push(make_update(60, 123.0, is_final=True))

        await wait_for(lambda: received and received[-1].last_price == 123.0)

        assert received[0].connection_state is ConnectionState.CONNECTING
        assert received[-1].indicators["sma20"][-1].timestamp == open_time(60)
        assert all(isinstance(s, MarketSnapshot) for s in received)

    @pytest.mark.asyncio
    async def test_failing_listener_isolated(self, coordinator):
        good = AsyncMock()
        coordinator.on_snapshot(AsyncMock(side_effect=RuntimeError("boom")))
        coordinator.on_snapshot(good)

        await coordinator.select("BTCUSDT", "1m")

        good.assert_awaited()

    @pytest.mark.asyncio
    async def test_snapshot_is_consistent(self, coordinator, streams):
        """Test indicator points never run ahead of or behind the closed candles"""
        checked = []

        async def listener(snapshot):
            closed = [c for c in snapshot.candles if c.closed]
            points = snapshot.indicators["sma20"]
            checked.append(points[-1].timestamp == closed[-1].open_time)

        coordinator.on_snapshot(listener)
        await coordinator.select("BTCUSDT", "1m")
        await wait_for(lambda: len(streams.created) == 1)

        for i in range(60, 70):
            streams.current.push(make_update(i, 200.0 + i), make_update(i, 201.0 + i, is_final=True))
        await wait_for(lambda: coordinator.snapshot().candles[-1].open_time == open_time(69))

        assert len(checked) > 10
        assert all(checked)


@pytest.mark.unit
class TestRetry:
    """Test bounded historical fetch retry"""

    @pytest.mark.asyncio
    async def test_retry_then_succeed(self, coordinator, history):
        history.failures = 2

        snapshot = await coordinator.select("BTCUSDT", "1m")

        assert len(history.calls) == 3
        assert len(snapshot.candles) == 60

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, coordinator, history, streams):
        history.failures = 3

        with pytest.raises(DataUnavailable) as exc_info:
            await coordinator.select("BTCUSDT", "1m")

        assert exc_info.value.symbol == "BTCUSDT"
        assert len(history.calls) == 3
        assert coordinator.session is None
        assert coordinator.snapshot() == MarketSnapshot()
        assert streams.created == []

    @pytest.mark.asyncio
    async def test_empty_history_unavailable(self, coordinator, history):
        history.candles = []

        with pytest.raises(DataUnavailable):
            await coordinator.select("BTCUSDT", "1m")

        assert coordinator.session is None

    @pytest.mark.asyncio
    async def test_invalid_history_unavailable(self, coordinator, history):
        history.candles = make_candles([1, 3, 2])

        with pytest.raises(DataUnavailable):
            await coordinator.select("BTCUSDT", "1m")

    @pytest.mark.asyncio
    async def test_failed_select_drops_previous_selection(self, coordinator, history, streams):
        await coordinator.select("BTCUSDT", "1m")
        await wait_for(lambda: len(streams.created) == 1)
        history.failures = 3

        with pytest.raises(DataUnavailable):
            await coordinator.select("ETHUSDT", "1m")

        assert coordinator.session is None
        await wait_for(lambda: streams.created and streams.created[0].closed)


@pytest.mark.unit
class TestSelectionChange:
    """Test isolation between selections"""

    @pytest.mark.asyncio
    async def test_select_replaces_session(self, coordinator, streams):
        await coordinator.select("BTCUSDT", "1m")
        first = coordinator.session
        await wait_for(lambda: len(streams.created) == 1)

        await coordinator.select("ETHUSDT", "5m")

        assert coordinator.session is not first
        assert coordinator.snapshot().symbol == "ETHUSDT"
        assert coordinator.snapshot().interval is Interval.M5
        assert streams.created[0].closed is True
        assert first.reconciler.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_select_during_backfill_no_stale_mutations(self, coordinator, history, streams):
        """Test a backfill outstanding at selection change never touches any series"""
        gate = asyncio.Event()
        history.gates[("BTCUSDT", "backfill")] = gate

        await coordinator.select("BTCUSDT", "1m")
        old = coordinator.session
        await wait_for(lambda: len(streams.created) == 1)

        streams.current.push(make_update(63, is_final=True))
        await wait_for(lambda: len(history.calls) == 2)
        old_version = old.series.version

        await coordinator.select("ETHUSDT", "1m")
        new = coordinator.session
        new_version = new.series.version
        new_candles = new.series.candles

        gate.set()
        await settle()

        assert old.series.version == old_version
        assert new.series.version == new_version
        assert new.series.candles == new_candles
        assert coordinator.snapshot().symbol == "ETHUSDT"

    @pytest.mark.asyncio
    async def test_superseded_select_raises(self, coordinator, history):
        gate = asyncio.Event()
        history.gates[("BTCUSDT", "seed")] = gate

        first = asyncio.create_task(coordinator.select("BTCUSDT", "1m"))
        await wait_for(lambda: len(history.calls) == 1)

        snapshot = await coordinator.select("ETHUSDT", "1m")

        with pytest.raises(SelectionSuperseded):
            await first
        assert snapshot.symbol == "ETHUSDT"
        assert coordinator.session.series.symbol == "ETHUSDT"

    @pytest.mark.asyncio
    async def test_select_racing_completed_load(self, streams, engine_settings):
        """Test a select() issued as the previous load completes never leaks its feed"""
        history = SwitchingHistory(make_candles(range(60)))
        coordinator = MarketDataCoordinator(history=history, stream_factory=streams, settings=engine_settings)
        history.coordinator = coordinator

        with pytest.raises(SelectionSuperseded):
            await coordinator.select("AAA", "1m")

        snapshot = await history.next_select
        await wait_for(lambda: len(streams.created) == 1)
        await settle()

        assert snapshot.symbol == "BBB"
        assert coordinator.session.series.symbol == "BBB"
        assert [s.connected_to for s in streams.created] == [("BBB", Interval.M1)]

        await coordinator.close()
        assert all(s.closed for s in streams.created)

    @pytest.mark.asyncio
    async def test_unsubscribe(self, coordinator, streams):
        published = []
        await coordinator.select("BTCUSDT", "1m")
        coordinator.on_snapshot(AsyncMock(side_effect=published.append))
        await wait_for(lambda: len(streams.created) == 1)

        await coordinator.unsubscribe()

        assert coordinator.session is None
        assert coordinator.connection_state is ConnectionState.DISCONNECTED
        assert streams.created[0].closed is True
        assert published[-1] == MarketSnapshot()

    @pytest.mark.asyncio
    async def test_close_releases_history(self, history, streams, engine_settings):
        coordinator = MarketDataCoordinator(history=history, stream_factory=streams, settings=engine_settings)
        await coordinator.select("BTCUSDT", "1m")

        await coordinator.close()

        assert history.closed is True
        assert coordinator.session is None
