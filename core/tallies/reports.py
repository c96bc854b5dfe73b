"""
Dashboard summary reports built on top of category standings.

These are read-only projections: they never recount votes themselves except
for voter-level metrics that standings do not carry.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, List, Tuple

from core.tallies.models import (
    AwardsMetrics,
    CategoryPerformance,
    CategoryStanding,
    TopPerformer,
    percentage,
    ratio,
)

if TYPE_CHECKING:
    from shared.storage.snapshot_store import Snapshot

DEFAULT_TOP_PERFORMERS = 5


def awards_metrics(snapshot: "Snapshot") -> AwardsMetrics:
    return AwardsMetrics(
        total_voters=len(snapshot.users),
        active_voters=len({v.user_id for v in snapshot.votes if v.user_id}),
        total_votes=len(snapshot.votes),
        total_categories=len(snapshot.categories),
        total_nominees=len(snapshot.nominees),
    )


def top_performers(
    standings: Iterable[CategoryStanding],
    limit: int = DEFAULT_TOP_PERFORMERS,
) -> List[TopPerformer]:
    """
    Best (nominee, category) pairs across all categories.

    Nominees with no votes are never listed. Ties fall back to category_id
    then nominee_id so the list is stable between refreshes.
    """
    if limit < 1:
        raise ValueError(f"limit must be at least 1 (got {limit})")

    rows = []
    for category in standings:
        for standing in category.nominee_standings:
            if standing.vote_count <= 0:
                continue
            rows.append((category, standing))

    rows.sort(key=lambda row: (-row[1].vote_count, row[0].category_id, row[1].nominee_id))

    return [
        TopPerformer(
            nominee_id=standing.nominee_id,
            name=standing.name,
            image_url=standing.image_url,
            category_id=category.category_id,
            category_name=category.name,
            vote_count=standing.vote_count,
            percentage=standing.percentage,
            trend=standing.trend,
        )
        for category, standing in rows[:limit]
    ]


def category_performance(
    standings: Iterable[CategoryStanding],
    total_voters: int,
) -> Tuple[CategoryPerformance, ...]:
    """
    Participation figures per category.

    participation_rate is the share of registered users who voted in the
    category; average_votes_per_voter is total_votes / unique_voters.
    """
    rows = []
    for category in standings:
        rows.append(
            CategoryPerformance(
                category_id=category.category_id,
                name=category.name,
                total_votes=category.total_votes,
                unique_voters=category.unique_voters,
                average_votes_per_voter=ratio(category.total_votes, category.unique_voters),
                participation_rate=percentage(category.unique_voters, total_voters),
                trend=category.trend,
            )
        )
    return tuple(rows)
