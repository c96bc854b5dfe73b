"""Voter location demographics."""
from __future__ import annotations

from collections import Counter
from typing import Iterable, List, Optional, Tuple

from core.tallies.models import (
    OTHER_LOCATION,
    UNKNOWN_LOCATION,
    LocationBreakdown,
    UserRef,
    percentage,
)

DEFAULT_TOP_N = 3


def normalize_location(location: Optional[str]) -> str:
    value = (location or "").strip()
    return value or UNKNOWN_LOCATION


class DemographicsAggregator:
    """
    Ranks users by declared location.

    Ordering is voter_count descending, then location name ascending. A
    top-N request folds everything past N into a single "Other" bucket.
    """

    def rank(self, users: Iterable[UserRef]) -> Tuple[LocationBreakdown, ...]:
        """Full, unbounded ranking."""
        counts = Counter(normalize_location(user.location) for user in users)
        total = sum(counts.values())
        ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return tuple(
            LocationBreakdown(location=location, voter_count=count, percentage=percentage(count, total))
            for location, count in ordered
        )

    def breakdown(
        self,
        users: Iterable[UserRef],
        top_n: Optional[int] = DEFAULT_TOP_N,
    ) -> List[LocationBreakdown]:
        return self.fold(self.rank(users), top_n)

    @staticmethod
    def fold(ranking: Iterable[LocationBreakdown], top_n: Optional[int]) -> List[LocationBreakdown]:
        """
        Keep the first top_n entries of a full ranking and fold the rest.

        top_n=None returns the ranking unchanged.
        """
        ranking = list(ranking)
        if top_n is None:
            return ranking
        if top_n < 1:
            raise ValueError(f"top_n must be at least 1 (got {top_n})")
        if len(ranking) <= top_n:
            return ranking

        head = ranking[:top_n]
        rest = ranking[top_n:]
        total = sum(entry.voter_count for entry in ranking)
        other_count = sum(entry.voter_count for entry in rest)
        head.append(
            LocationBreakdown(
                location=OTHER_LOCATION,
                voter_count=other_count,
                percentage=percentage(other_count, total),
            )
        )
        return head
