"""
CandleSeries - ordered, deduplicated candle store for one (symbol, interval)

Responsibilities:
- Seed from a historical snapshot (closed candles only)
- Merge live updates under strict ordering rules (upsert)
- Re-seed the suffix after a backfill
- Track the lowest changed closed index for IndicatorEngine

Invariants:
- open_time strictly increasing by exactly one interval step
- at most one non-closed candle, and only as the last element
"""

import logging
from bisect import bisect_left
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import Enum
from itertools import pairwise

from core.exceptions import InvalidSeed
from core.models.market_data import Candle, Interval
from core.utils.gap_handling import detect_gaps, fill_gaps

logger = logging.getLogger(__name__)


class UpsertResult(str, Enum):
    """Outcome of CandleSeries.upsert()"""

    INSERTED = "inserted"
    UPDATED = "updated"
    OUT_OF_ORDER = "out_of_order"  # stale / duplicate, ignored
    GAP = "gap"  # more than one step ahead, caller must backfill
    CORRUPT_REVISION = "corrupt_revision"  # conflicting final data for a closed candle

    @property
    def mutated(self) -> bool:
        return self in (UpsertResult.INSERTED, UpsertResult.UPDATED)


class CandleSeries:
    """
    Single source of truth for the time axis and OHLCV values of a selection

    Example:
        >>> series = CandleSeries("BTCUSDT", Interval.M1)
        >>> series.seed(history)
        >>> series.upsert(update.to_candle())
        <UpsertResult.UPDATED: 'updated'>
        >>> series.take_dirty()  # lowest closed index changed since last call
        499
    """

    def __init__(
        self,
        symbol: str,
        interval: Interval,
        enable_gap_filling: bool = True,
        max_gap_ratio: float = 0.1,
    ):
        self.symbol = symbol
        self.interval = interval
        self.step_ms = interval.step_ms
        self.enable_gap_filling = enable_gap_filling
        self.max_gap_ratio = max_gap_ratio

        self._candles: list[Candle] = []
        self._dirty_from: int | None = None
        # Candles closed without a final event; an authoritative close may replace them
        self._provisional: set[int] = set()

        # Bumped on every mutation; snapshot readers key caches on it
        self.version = 0
        self.updated_at: datetime | None = None

    # ============================================
    # READ ACCESS
    # ============================================
    def __len__(self) -> int:
        return len(self._candles)

    @property
    def candles(self) -> tuple[Candle, ...]:
        return tuple(self._candles)

    @property
    def last(self) -> Candle | None:
        return self._candles[-1] if self._candles else None

    @property
    def closed_count(self) -> int:
        if self._candles and not self._candles[-1].closed:
            return len(self._candles) - 1
        return len(self._candles)

    def last_closed_index(self) -> int | None:
        """Index of the most recent closed candle, or None"""
        count = self.closed_count
        return count - 1 if count else None

    @property
    def last_closed(self) -> Candle | None:
        index = self.last_closed_index()
        return self._candles[index] if index is not None else None

    def closed_candles(self) -> list[Candle]:
        return self._candles[: self.closed_count]

    def closes(self) -> list[float]:
        """Close prices of the closed candles, oldest first"""
        return [c.close for c in self._candles[: self.closed_count]]

    @property
    def last_price(self) -> float | None:
        """Close of the open candle if present, else of the last closed candle"""
        return self._candles[-1].close if self._candles else None

    def take_dirty(self) -> int | None:
        """Return and clear the lowest closed index changed since the last call"""
        dirty, self._dirty_from = self._dirty_from, None
        return dirty

    # ============================================
    # MUTATION
    # ============================================
    def seed(self, candles: Iterable[Candle]) -> None:
        """
        Replace all state with a historical snapshot

        Raises:
            InvalidSeed: Empty, not strictly increasing, off the interval grid,
                contains a non-closed candle, or too many gaps to fill
        """
        candles = list(candles)
        if not candles:
            raise InvalidSeed(f"Empty seed for {self.key}")

        self._validate_closed_run(candles)
        self._candles = self._close_gaps(candles, check_ratio=True)
        self._provisional.clear()
        self._mark_dirty(0)
        self._touch()

        logger.info(f"✓ Seeded {self.key} with {len(self._candles)} candles")

    def upsert(self, candle: Candle) -> UpsertResult:
        """
        Merge one candle (from a live update) into the series

        Returns:
            UpsertResult describing what happened. Only INSERTED / UPDATED
            mutate the series.
        """
        result = self._upsert(candle)
        if result.mutated:
            self._touch()
        return result

    def _upsert(self, candle: Candle) -> UpsertResult:
        if not self._candles:
            self._candles.append(candle)
            if candle.closed:
                self._mark_dirty(0)
            return UpsertResult.INSERTED

        last = self._candles[-1]
        delta = candle.open_time - last.open_time

        if delta == 0:
            if not last.closed:
                self._candles[-1] = candle
                if candle.closed:
                    self._mark_dirty(len(self._candles) - 1)
                return UpsertResult.UPDATED
            return self._revise_closed(len(self._candles) - 1, candle)

        if delta == self.step_ms:
            if not last.closed:
                logger.warning(
                    f"⚠️ Close event missed for {self.key} @ {last.open_time}, "
                    f"closing with last known values"
                )
                self._candles[-1] = last.model_copy(update={"closed": True})
                self._provisional.add(last.open_time)
                self._mark_dirty(len(self._candles) - 1)

            self._candles.append(candle)
            if candle.closed:
                self._mark_dirty(len(self._candles) - 1)
            return UpsertResult.INSERTED

        if delta % self.step_ms != 0:
            logger.warning(f"Misaligned open_time {candle.open_time} for {self.key}, ignored")
            return UpsertResult.OUT_OF_ORDER

        if delta > 0:
            return UpsertResult.GAP

        index = self._index_of(candle.open_time)
        if index is None:
            logger.debug(f"Update {candle.open_time} predates {self.key}, ignored")
            return UpsertResult.OUT_OF_ORDER

        return self._revise_closed(index, candle)

    def merge_backfill(self, candles: Iterable[Candle]) -> int | None:
        """
        Re-seed the suffix after the last closed candle with a fetched range

        Fetched candles at or before the last closed candle are ignored,
        except that they replace synthetic or provisionally closed
        placeholders. A superseded open tail candle is dropped.

        Returns:
            open_time of the last closed candle after the merge (None if empty)

        Raises:
            InvalidSeed: Fetched range is not strictly increasing, not closed
                or not aligned with the series
        """
        candles = list(candles)
        if candles:
            self._validate_closed_run(candles, origin=self._candles[0].open_time if self._candles else None)

        closed_count = self.closed_count
        anchor = self._candles[closed_count - 1] if closed_count else None

        newer = []
        for candle in candles:
            if anchor is None or candle.open_time > anchor.open_time:
                newer.append(candle)
            else:
                self._replace_placeholder(candle)

        if newer:
            newer = self._close_gaps(newer, anchor=anchor)
            self._candles = self._candles[:closed_count] + newer
            self._mark_dirty(closed_count)
            self._touch()
            logger.info(
                f"✓ Backfilled {self.key}: {len(newer)} candles "
                f"({newer[0].open_time} → {newer[-1].open_time})"
            )

        last_closed = self.last_closed
        return last_closed.open_time if last_closed else None

    # ============================================
    # INTERNALS
    # ============================================
    @property
    def key(self) -> str:
        return f"{self.symbol}/{self.interval.value}"

    def _touch(self) -> None:
        self.version += 1
        self.updated_at = datetime.now(UTC)

    def _mark_dirty(self, index: int) -> None:
        if self._dirty_from is None or index < self._dirty_from:
            self._dirty_from = index

    def _index_of(self, open_time: int) -> int | None:
        index = bisect_left(self._candles, open_time, key=lambda c: c.open_time)
        if index < len(self._candles) and self._candles[index].open_time == open_time:
            return index
        return None

    def _revise_closed(self, index: int, candle: Candle) -> UpsertResult:
        existing = self._candles[index]

        if candle.closed and self._is_placeholder(existing):
            self._candles[index] = candle
            self._provisional.discard(candle.open_time)
            self._mark_dirty(index)
            logger.info(f"✓ Replaced placeholder candle {self.key} @ {candle.open_time}")
            return UpsertResult.UPDATED

        if candle.closed and not candle.same_values(existing):
            logger.error(
                f"✗ Corrupt revision for closed candle {self.key} @ {candle.open_time}: "
                f"kept close={existing.close}, discarded close={candle.close}"
            )
            return UpsertResult.CORRUPT_REVISION

        logger.debug(f"Stale update for {self.key} @ {candle.open_time}, ignored")
        return UpsertResult.OUT_OF_ORDER

    def _is_placeholder(self, candle: Candle) -> bool:
        return candle.synthetic or candle.open_time in self._provisional

    def _replace_placeholder(self, candle: Candle) -> None:
        index = self._index_of(candle.open_time)
        if index is not None and self._is_placeholder(self._candles[index]):
            self._candles[index] = candle
            self._provisional.discard(candle.open_time)
            self._mark_dirty(index)
            self._touch()

    def _validate_closed_run(self, candles: list[Candle], origin: int | None = None) -> None:
        for candle in candles:
            if not candle.closed:
                raise InvalidSeed(f"Non-closed candle {candle.open_time} in payload for {self.key}")

        for previous, current in pairwise(candles):
            if current.open_time <= previous.open_time:
                raise InvalidSeed(
                    f"Payload for {self.key} not strictly increasing: "
                    f"{previous.open_time} → {current.open_time}"
                )
            if (current.open_time - previous.open_time) % self.step_ms:
                raise InvalidSeed(
                    f"Payload for {self.key} off the {self.interval.value} grid: "
                    f"{previous.open_time} → {current.open_time}"
                )

        if origin is not None and (candles[0].open_time - origin) % self.step_ms:
            raise InvalidSeed(f"Payload for {self.key} not aligned with series at {candles[0].open_time}")

    def _close_gaps(
        self,
        candles: list[Candle],
        anchor: Candle | None = None,
        check_ratio: bool = False,
    ) -> list[Candle]:
        """Forward-fill gaps inside `candles` (and between `anchor` and them)"""
        run = [anchor, *candles] if anchor else candles
        gaps = detect_gaps(run, self.step_ms)

        if not gaps:
            return candles

        total_missing = sum(g.missing_count for g in gaps)
        logger.warning(
            f"📊 Gap detected in {self.key}: {len(gaps)} gaps, {total_missing} missing candles"
        )
        for gap in gaps:
            logger.debug(f"  Gap: {gap.start_time} to {gap.end_time} ({gap.missing_count} candles)")

        if not self.enable_gap_filling:
            raise InvalidSeed(f"{total_missing} missing candles in {self.key} and gap filling disabled")

        filled = fill_gaps(run, gaps)
        if anchor:
            filled = filled[1:]

        if check_ratio:
            gap_ratio = sum(1 for c in filled if c.synthetic) / len(filled)
            if gap_ratio > self.max_gap_ratio:
                raise InvalidSeed(
                    f"High gap ratio {gap_ratio:.2%} for {self.key} "
                    f"(threshold: {self.max_gap_ratio:.2%})"
                )

        return filled
