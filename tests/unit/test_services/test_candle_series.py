"""
Unit tests for CandleSeries

Tests seeding, upsert ordering rules, placeholders and backfill merge
"""

from itertools import permutations

import pytest

from core.exceptions import InvalidSeed
from core.models.market_data import Interval
from services.market_data.candle_series import CandleSeries, UpsertResult
from tests.unit.fakes import STEP, make_candle, make_candles, make_update, open_time


@pytest.fixture
def series():
    """Series seeded with closed candles 1..10"""
    s = CandleSeries("BTCUSDT", Interval.M1)
    s.seed(make_candles(range(1, 11)))
    s.take_dirty()
    return s


def open_times(series: CandleSeries) -> list[int]:
    return [c.open_time for c in series.candles]


@pytest.mark.unit
class TestSeed:
    """Test seeding from a historical snapshot"""

    def test_seed(self, series):
        assert len(series) == 10
        assert series.closed_count == 10
        assert series.last_closed.open_time == open_time(10)
        assert series.version == 1
        assert series.updated_at is not None

    def test_seed_marks_everything_dirty(self):
        s = CandleSeries("BTCUSDT", Interval.M1)
        s.seed(make_candles(range(5)))

        assert s.take_dirty() == 0
        assert s.take_dirty() is None

    def test_empty_seed_rejected(self):
        with pytest.raises(InvalidSeed, match="Empty seed"):
            CandleSeries("BTCUSDT", Interval.M1).seed([])

    def test_non_closed_seed_rejected(self):
        candles = make_candles(range(3)) + [make_candle(3, closed=False)]

        with pytest.raises(InvalidSeed, match="Non-closed"):
            CandleSeries("BTCUSDT", Interval.M1).seed(candles)

    @pytest.mark.parametrize("indices", [[1, 2, 2, 3], [1, 3, 2]])
    def test_unordered_seed_rejected(self, indices):
        with pytest.raises(InvalidSeed, match="not strictly increasing"):
            CandleSeries("BTCUSDT", Interval.M1).seed(make_candles(indices))

    def test_off_grid_seed_rejected(self):
        """Test open times must be whole interval steps apart"""
        candles = make_candles(range(20))
        candles[10] = candles[10].model_copy(update={"open_time": open_time(10) + STEP // 2})

        with pytest.raises(InvalidSeed, match="off the 1m grid"):
            CandleSeries("BTCUSDT", Interval.M1).seed(candles)

    def test_seed_fills_exchange_gap(self):
        """Test a small gap in history is forward-filled with synthetic candles"""
        s = CandleSeries("BTCUSDT", Interval.M1, max_gap_ratio=0.2)
        s.seed(make_candles([*range(0, 10), 11, *range(12, 20)]))

        assert open_times(s) == [open_time(i) for i in range(20)]
        assert s.candles[10].synthetic is True
        assert s.candles[10].close == s.candles[9].close

    def test_seed_gap_ratio_exceeded(self):
        s = CandleSeries("BTCUSDT", Interval.M1, max_gap_ratio=0.1)

        with pytest.raises(InvalidSeed, match="High gap ratio"):
            s.seed(make_candles([0, 10]))

    def test_seed_gap_filling_disabled(self):
        s = CandleSeries("BTCUSDT", Interval.M1, enable_gap_filling=False)

        with pytest.raises(InvalidSeed, match="gap filling disabled"):
            s.seed(make_candles([0, 1, 3]))

    def test_reseed_replaces_state(self, series):
        series.seed(make_candles(range(50, 53)))

        assert open_times(series) == [open_time(i) for i in range(50, 53)]


@pytest.mark.unit
class TestUpsert:
    """Test live update merge rules"""

    def test_append_open_candle(self, series):
        result = series.upsert(make_update(11, 120.0).to_candle())

        assert result is UpsertResult.INSERTED
        assert len(series) == 11
        assert series.closed_count == 10
        assert series.closes() == [float(100 + i) for i in range(1, 11)]
        assert series.last_price == 120.0
        # The open candle never marks indicators dirty
        assert series.take_dirty() is None

    def test_update_open_candle_in_place(self, series):
        series.upsert(make_update(11, 120.0).to_candle())

        result = series.upsert(make_update(11, 121.0).to_candle())

        assert result is UpsertResult.UPDATED
        assert len(series) == 11
        assert series.last.close == 121.0

    def test_final_update_closes_candle(self, series):
        series.upsert(make_update(11, 120.0).to_candle())

        result = series.upsert(make_update(11, 122.0, is_final=True).to_candle())

        assert result is UpsertResult.UPDATED
        assert series.closed_count == 11
        assert series.last.closed is True
        assert series.take_dirty() == 10

    def test_duplicate_final_is_idempotent(self, series):
        final = make_update(11, 122.0, is_final=True).to_candle()
        series.upsert(final)
        candles, version = series.candles, series.version

        assert series.upsert(final) is UpsertResult.OUT_OF_ORDER
        assert series.candles == candles
        assert series.version == version

    def test_stale_update_ignored(self, series):
        version = series.version

        result = series.upsert(make_update(4, 104.0).to_candle())

        assert result is UpsertResult.OUT_OF_ORDER
        assert series.version == version

    def test_update_before_series_ignored(self, series):
        assert series.upsert(make_update(-5).to_candle()) is UpsertResult.OUT_OF_ORDER

    def test_gap_not_applied(self, series):
        """Test an update more than one step ahead is reported, not applied"""
        result = series.upsert(make_update(13, is_final=True).to_candle())

        assert result is UpsertResult.GAP
        assert len(series) == 10

    def test_misaligned_update_ignored(self, series):
        candle = make_candle(11).model_copy(update={"open_time": open_time(11) + 1})

        assert series.upsert(candle) is UpsertResult.OUT_OF_ORDER
        assert len(series) == 10

    def test_corrupt_revision_keeps_original(self, series):
        """Test conflicting final data for a closed candle is discarded"""
        original = series.candles[4]

        result = series.upsert(make_update(5, 999.0, is_final=True).to_candle())

        assert result is UpsertResult.CORRUPT_REVISION
        assert series.candles[4] == original

    def test_missed_close_then_authoritative_final(self, series):
        """Test an open candle followed by the next bucket closes provisionally"""
        series.upsert(make_update(11, 120.0).to_candle())
        series.take_dirty()

        assert series.upsert(make_update(12, 130.0).to_candle()) is UpsertResult.INSERTED
        assert series.candles[10].closed is True
        assert series.candles[10].close == 120.0
        assert series.take_dirty() == 10

        # The late final event may still replace the provisional close
        result = series.upsert(make_update(11, 125.0, is_final=True).to_candle())

        assert result is UpsertResult.UPDATED
        assert series.candles[10].close == 125.0
        assert series.take_dirty() == 10

        # Once replaced it is authoritative
        assert series.upsert(make_update(11, 126.0, is_final=True).to_candle()) is UpsertResult.CORRUPT_REVISION

    def test_synthetic_candle_replaced_by_final(self):
        s = CandleSeries("BTCUSDT", Interval.M1, max_gap_ratio=0.5)
        s.seed(make_candles([0, 1, 3]))
        s.take_dirty()

        result = s.upsert(make_update(2, 102.0, is_final=True).to_candle())

        assert result is UpsertResult.UPDATED
        assert s.candles[2].synthetic is False
        assert s.candles[2].close == 102.0
        assert s.take_dirty() == 2

    def test_upsert_into_empty_series(self):
        s = CandleSeries("BTCUSDT", Interval.M1)

        assert s.upsert(make_update(0).to_candle()) is UpsertResult.INSERTED
        assert s.closed_count == 0
        assert s.last_closed is None

    def test_permutations_converge(self, series):
        """Test every ordering of in-window duplicate / stale events gives one state"""
        events = [
            make_update(11, 110.0).to_candle(),
            make_update(11, 112.0).to_candle(),
            make_update(11, 111.0, is_final=True).to_candle(),
            make_update(11, 111.0, is_final=True).to_candle(),
            make_update(10, is_final=True).to_candle(),
            make_update(7, is_final=True).to_candle(),
        ]
        base = series.candles

        outcomes = set()
        for ordering in permutations(events):
            s = CandleSeries("BTCUSDT", Interval.M1)
            s.seed(base)
            for candle in ordering:
                s.upsert(candle)
            outcomes.add(s.candles)

        assert len(outcomes) == 1
        final = outcomes.pop()
        assert final[-1].close == 111.0
        assert final[-1].closed is True
        assert final[:10] == base


@pytest.mark.unit
class TestMergeBackfill:
    """Test suffix re-seed after a backfill"""

    def test_backfill_closes_gap(self, series):
        """Test seed 1..10 + backfill 11..13 → exactly 1..13"""
        covered = series.merge_backfill(make_candles(range(11, 14)))

        assert covered == open_time(13)
        assert open_times(series) == [open_time(i) for i in range(1, 14)]
        assert series.take_dirty() == 10

    def test_backfill_drops_superseded_open_candle(self, series):
        series.upsert(make_update(11, 999.0).to_candle())

        series.merge_backfill(make_candles(range(11, 13)))

        assert open_times(series) == [open_time(i) for i in range(1, 13)]
        assert series.candles[10].close == 111.0
        assert series.last.closed is True

    def test_backfill_ignores_known_closed_candles(self, series):
        before = series.candles

        covered = series.merge_backfill(make_candles(range(5, 11), closes=[1.0] * 6))

        assert series.candles == before
        assert covered == open_time(10)

    def test_backfill_overlapping_range(self, series):
        series.merge_backfill(make_candles(range(8, 13)))

        assert open_times(series) == [open_time(i) for i in range(1, 13)]

    def test_backfill_replaces_provisional_candle(self, series):
        series.upsert(make_update(11, 120.0).to_candle())
        series.upsert(make_update(12, 130.0).to_candle())
        series.take_dirty()

        series.merge_backfill(make_candles(range(11, 12), closes=[119.0]))

        assert series.candles[10].close == 119.0
        assert series.take_dirty() == 10

    def test_backfill_fills_gap_after_anchor(self, series):
        """Test candles missing on the exchange are forward-filled"""
        series.merge_backfill(make_candles([12, 13]))

        assert open_times(series) == [open_time(i) for i in range(1, 14)]
        assert series.candles[10].synthetic is True

    def test_empty_backfill(self, series):
        version = series.version

        assert series.merge_backfill([]) == open_time(10)
        assert series.version == version

    def test_invalid_backfill_rejected(self, series):
        with pytest.raises(InvalidSeed):
            series.merge_backfill(make_candles([12, 11]))

    def test_misaligned_backfill_rejected(self, series):
        shifted = [c.model_copy(update={"open_time": c.open_time + 1000}) for c in make_candles(range(11, 14))]
        version = series.version

        with pytest.raises(InvalidSeed, match="not aligned"):
            series.merge_backfill(shifted)
        assert series.version == version
