"""
Time-bucketed vote trends.

Buckets are derived from UTC wall-clock decomposition of ``cast_at`` and are
always emitted at full length (24 hours / 7 weekdays / 12 months), so chart
consumers never index out of range.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Tuple

from core.tallies.models import TrendComparison, TrendSeries, VoteRecord, to_utc


class Granularity(str, Enum):
    HOUR_OF_DAY = "hour_of_day"
    DAY_OF_WEEK = "day_of_week"
    MONTH_OF_YEAR = "month_of_year"

    @classmethod
    def from_value(cls, value: "Granularity | str") -> "Granularity":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown trend granularity: {value!r}") from None


_HOUR_LABELS = tuple(f"{hour:02d}:00" for hour in range(24))
_DAY_LABELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTH_LABELS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)

# granularity -> (labels, bucket index from a UTC datetime)
_BUCKETS: Dict[Granularity, Tuple[Tuple[str, ...], Callable[[datetime], int]]] = {
    Granularity.HOUR_OF_DAY: (_HOUR_LABELS, lambda ts: ts.hour),
    Granularity.DAY_OF_WEEK: (_DAY_LABELS, lambda ts: ts.weekday()),
    Granularity.MONTH_OF_YEAR: (_MONTH_LABELS, lambda ts: ts.month - 1),
}


def bucket_count(granularity: "Granularity | str") -> int:
    return len(_BUCKETS[Granularity.from_value(granularity)][0])


class TrendEstimator:
    """
    Buckets votes by time and compares equal-length periods.

    Direction rules for compare():
    - current window is (as_of - period, as_of], previous is the window
      immediately before it
    - no votes in the previous window means no baseline -> "stable"
    - relative change within +/- threshold_pct -> "stable"
    """

    def __init__(
        self,
        *,
        period: timedelta = timedelta(days=7),
        threshold_pct: float = 2.0,
    ) -> None:
        if period <= timedelta(0):
            raise ValueError("Trend period must be positive")
        self.period = period
        self.threshold_pct = max(0.0, float(threshold_pct))

    # ------------------------------------------------------------
    # Bucketed series
    # ------------------------------------------------------------

    def series(
        self,
        votes: Iterable[VoteRecord],
        granularity: "Granularity | str",
        category_id: Optional[str] = None,
    ) -> TrendSeries:
        granularity = Granularity.from_value(granularity)
        labels, bucket_of = _BUCKETS[granularity]
        counts = [0] * len(labels)

        for vote in votes:
            if category_id is not None and vote.category_id != category_id:
                continue
            counts[bucket_of(to_utc(vote.cast_at))] += 1

        return TrendSeries(
            granularity=granularity.value,
            bucket_labels=labels,
            counts=tuple(counts),
        )

    def all_series(self, votes: Iterable[VoteRecord]) -> Dict[str, TrendSeries]:
        votes = tuple(votes)
        return {g.value: self.series(votes, g) for g in Granularity}

    # ------------------------------------------------------------
    # Period-over-period direction
    # ------------------------------------------------------------

    def window_of(self, cast_at: datetime, as_of: datetime) -> Optional[int]:
        """0 for the current window, 1 for the previous one, None otherwise."""
        ts = to_utc(cast_at)
        as_of = to_utc(as_of)
        current_start = as_of - self.period
        if current_start < ts <= as_of:
            return 0
        if current_start - self.period < ts <= current_start:
            return 1
        return None

    def compare(
        self,
        votes: Iterable[VoteRecord],
        as_of: Optional[datetime],
        *,
        category_id: Optional[str] = None,
        nominee_id: Optional[str] = None,
    ) -> TrendComparison:
        if as_of is None:
            return TrendComparison(current_total=0, previous_total=0, change_percentage=None)

        current = 0
        previous = 0
        for vote in votes:
            if category_id is not None and vote.category_id != category_id:
                continue
            if nominee_id is not None and vote.nominee_id != nominee_id:
                continue
            window = self.window_of(vote.cast_at, as_of)
            if window == 0:
                current += 1
            elif window == 1:
                previous += 1

        return self._compare_totals(current, previous)

    def _compare_totals(self, current: int, previous: int) -> TrendComparison:
        if previous <= 0:
            return TrendComparison(
                current_total=current,
                previous_total=previous,
                change_percentage=None,
            )

        change = (current - previous) * 100.0 / previous
        if abs(change) <= self.threshold_pct:
            direction = "stable"
        elif change > 0:
            direction = "up"
        else:
            direction = "down"

        return TrendComparison(
            current_total=current,
            previous_total=previous,
            change_percentage=round(change, 1),
            direction=direction,
        )

    def direction(self, current: int, previous: int) -> str:
        return self._compare_totals(current, previous).direction
