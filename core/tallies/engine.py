"""
Tally engine: category standings from a snapshot.

Ranking policy:
- vote_count descending, nominee_id ascending on ties
- ranks are positional (1..n), tied nominees do not share a rank
- no randomness, so identical input always yields identical standings
"""
from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Dict, List, Optional, Set, Tuple

from core.tallies.models import (
    CategoryStanding,
    DataIntegrityWarnings,
    NomineeRef,
    NomineeStanding,
    VoteRecord,
    percentage,
)
from core.tallies.trends import TrendEstimator
from shared.logging.logger import get_logger

if TYPE_CHECKING:
    from shared.storage.snapshot_store import Snapshot

log = get_logger("core.tallies.engine")


@dataclass
class TallyResult:
    standings: Tuple[CategoryStanding, ...] = ()
    warnings: DataIntegrityWarnings = field(default_factory=DataIntegrityWarnings)


class TallyEngine:
    """
    Converts a snapshot into CategoryStanding objects.

    Data problems never raise: votes for unknown nominees or categories are
    skipped and counted in DataIntegrityWarnings instead.
    """

    def __init__(self, trend_estimator: Optional[TrendEstimator] = None) -> None:
        self._trends = trend_estimator

    def tally(self, snapshot: "Snapshot", *, as_of: Optional[datetime] = None) -> TallyResult:
        issues: Counter = Counter()
        nominees: Dict[str, NomineeRef] = {n.nominee_id: n for n in snapshot.nominees}
        category_ids = {c.category_id for c in snapshot.categories}

        votes_by_category: Dict[str, List[VoteRecord]] = defaultdict(list)
        for vote in snapshot.votes:
            if vote.category_id not in category_ids:
                issues["unknown_category_votes"] += 1
                continue
            votes_by_category[vote.category_id].append(vote)

        eligible: Dict[str, Set[str]] = defaultdict(set)
        for nominee in snapshot.nominees:
            for category_id in nominee.category_ids:
                eligible[category_id].add(nominee.nominee_id)

        standings: List[CategoryStanding] = []
        for category in snapshot.categories:
            category_votes = votes_by_category.get(category.category_id, [])
            standings.append(
                self._tally_category(
                    category.category_id,
                    category.name,
                    category_votes,
                    eligible.get(category.category_id, set()),
                    nominees,
                    issues,
                    as_of,
                )
            )

        warnings = DataIntegrityWarnings(duplicate_votes=snapshot.duplicate_votes, **issues)
        if warnings.any():
            log.warning(f"Data integrity warnings: {warnings.to_document()}")

        return TallyResult(standings=tuple(standings), warnings=warnings)

    # ------------------------------------------------------------

    def _tally_category(
        self,
        category_id: str,
        name: str,
        votes: List[VoteRecord],
        eligible_ids: Set[str],
        nominees: Dict[str, NomineeRef],
        issues: Counter,
        as_of: Optional[datetime],
    ) -> CategoryStanding:
        total_votes = len(votes)
        if total_votes == 0:
            issues["empty_categories"] += 1

        counts: Counter = Counter()
        windows: Dict[str, List[int]] = defaultdict(lambda: [0, 0])
        category_window = [0, 0]

        for vote in votes:
            window = self._window(vote, as_of)
            if window is not None:
                category_window[window] += 1

            nominee = nominees.get(vote.nominee_id)
            if nominee is None:
                issues["orphaned_votes"] += 1
                continue
            if vote.nominee_id not in eligible_ids:
                issues["ineligible_votes"] += 1

            counts[vote.nominee_id] += 1
            if window is not None:
                windows[vote.nominee_id][window] += 1

        ranked_ids = sorted(
            set(counts) | {nid for nid in eligible_ids if nid in nominees},
            key=lambda nid: (-counts[nid], nid),
        )

        nominee_standings = []
        for position, nominee_id in enumerate(ranked_ids, start=1):
            nominee = nominees[nominee_id]
            current, previous = windows.get(nominee_id, (0, 0))
            nominee_standings.append(
                NomineeStanding(
                    nominee_id=nominee_id,
                    category_id=category_id,
                    name=nominee.name,
                    image_url=nominee.image_url,
                    vote_count=counts[nominee_id],
                    percentage=percentage(counts[nominee_id], total_votes),
                    rank=position,
                    trend=self._direction(current, previous),
                )
            )

        return CategoryStanding(
            category_id=category_id,
            name=name,
            total_votes=total_votes,
            unique_voters=len({v.user_id for v in votes if v.user_id}),
            nominee_standings=tuple(nominee_standings),
            trend=self._direction(*category_window),
        )

    def _window(self, vote: VoteRecord, as_of: Optional[datetime]) -> Optional[int]:
        if self._trends is None or as_of is None:
            return None
        return self._trends.window_of(vote.cast_at, as_of)

    def _direction(self, current: int, previous: int) -> str:
        if self._trends is None:
            return "stable"
        return self._trends.direction(current, previous)
