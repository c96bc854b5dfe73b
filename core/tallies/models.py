"""
Tallies data model.

Input records (votes, categories, nominees, users) are read-only shapes
mirroring the awards API payloads. Derived records (standings, trend series,
location breakdowns, reports) are rebuilt from scratch on every aggregation
cycle and serialize with ``to_document()`` for dashboard hydration.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

TREND_DIRECTIONS = ("up", "down", "stable")

_FRACTION_RE = re.compile(r"(?<=:\d\d)\.(\d+)")

UNKNOWN_LOCATION = "Unknown"
OTHER_LOCATION = "Other"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


def to_utc(value: datetime) -> datetime:
    """Naive datetimes are treated as UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _normalize_fraction(match: "re.Match[str]") -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str) and value:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        # fromisoformat on 3.10 only takes 3 or 6 fractional digits
        text = _FRACTION_RE.sub(_normalize_fraction, text, count=1)
        try:
            return to_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def ratio(part: int, whole: int) -> float:
    """
    part / whole, rounded half-up to one decimal.

    Returns 0.0 when whole is zero.
    """
    if whole <= 0:
        return 0.0
    value = Decimal(part) / Decimal(whole)
    return float(value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def percentage(part: int, whole: int) -> float:
    return ratio(part * 100, whole)


# ======================================================================
# Input records
# ======================================================================

@dataclass(frozen=True)
class VoteRecord:
    vote_id: str
    user_id: str
    category_id: str
    nominee_id: str
    cast_at: datetime

    def __post_init__(self) -> None:
        # Always aware UTC so votes from mixed sources stay comparable
        object.__setattr__(self, "cast_at", to_utc(self.cast_at))

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> Optional["VoteRecord"]:
        """
        Build a vote from an API payload.

        Returns None when the payload lacks an id or a parseable timestamp.
        Nested ``category`` / ``nominee`` objects are accepted as well.
        """
        category = payload.get("category") or {}
        nominee = payload.get("nominee") or {}

        vote_id = payload.get("vote_id") or payload.get("id")
        category_id = payload.get("category_id") or category.get("category_id") or category.get("id")
        nominee_id = payload.get("nominee_id") or nominee.get("nominee_id") or nominee.get("id")
        cast_at = parse_timestamp(payload.get("cast_at") or payload.get("created_at"))

        if not vote_id or not category_id or not nominee_id or cast_at is None:
            return None

        return cls(
            vote_id=str(vote_id),
            user_id=str(payload.get("user_id") or ""),
            category_id=str(category_id),
            nominee_id=str(nominee_id),
            cast_at=cast_at,
        )


@dataclass(frozen=True)
class CategoryRef:
    category_id: str
    name: str

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> Optional["CategoryRef"]:
        category_id = payload.get("category_id") or payload.get("id")
        if not category_id:
            return None
        return cls(category_id=str(category_id), name=str(payload.get("name") or ""))


@dataclass(frozen=True)
class NomineeRef:
    nominee_id: str
    name: str
    image_url: str = ""
    category_ids: FrozenSet[str] = frozenset()

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> Optional["NomineeRef"]:
        nominee_id = payload.get("nominee_id") or payload.get("id")
        if not nominee_id:
            return None

        category_ids = set()
        for raw in payload.get("category_ids") or []:
            if raw:
                category_ids.add(str(raw))
        for brief in payload.get("categories") or []:
            if isinstance(brief, dict):
                cid = brief.get("category_id") or brief.get("id")
                if cid:
                    category_ids.add(str(cid))

        return cls(
            nominee_id=str(nominee_id),
            name=str(payload.get("name") or ""),
            image_url=str(payload.get("image_url") or ""),
            category_ids=frozenset(category_ids),
        )


@dataclass(frozen=True)
class UserRef:
    user_id: str
    location: str = ""

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> Optional["UserRef"]:
        user_id = payload.get("user_id") or payload.get("id")
        if not user_id:
            return None
        return cls(user_id=str(user_id), location=str(payload.get("location") or ""))


# ======================================================================
# Derived records
# ======================================================================

@dataclass(frozen=True)
class NomineeStanding:
    nominee_id: str
    category_id: str
    name: str
    image_url: str
    vote_count: int
    percentage: float
    rank: int
    trend: str = "stable"

    def to_document(self) -> Dict[str, Any]:
        return {
            "nominee_id": self.nominee_id,
            "category_id": self.category_id,
            "name": self.name,
            "image_url": self.image_url,
            "vote_count": self.vote_count,
            "percentage": self.percentage,
            "rank": self.rank,
            "trend": self.trend,
        }


@dataclass(frozen=True)
class CategoryStanding:
    category_id: str
    name: str
    total_votes: int
    unique_voters: int
    nominee_standings: Tuple[NomineeStanding, ...] = ()
    trend: str = "stable"

    def to_document(self) -> Dict[str, Any]:
        return {
            "category_id": self.category_id,
            "name": self.name,
            "total_votes": self.total_votes,
            "unique_voters": self.unique_voters,
            "trend": self.trend,
            "nominee_standings": [s.to_document() for s in self.nominee_standings],
        }


@dataclass(frozen=True)
class TrendSeries:
    granularity: str
    bucket_labels: Tuple[str, ...]
    counts: Tuple[int, ...]

    @property
    def total(self) -> int:
        return sum(self.counts)

    def to_document(self) -> Dict[str, Any]:
        return {
            "granularity": self.granularity,
            "bucket_labels": list(self.bucket_labels),
            "counts": list(self.counts),
        }


@dataclass(frozen=True)
class TrendComparison:
    current_total: int
    previous_total: int
    change_percentage: Optional[float]
    direction: str = "stable"

    def to_document(self) -> Dict[str, Any]:
        return {
            "current_total": self.current_total,
            "previous_total": self.previous_total,
            "change_percentage": self.change_percentage,
            "direction": self.direction,
        }


@dataclass(frozen=True)
class LocationBreakdown:
    location: str
    voter_count: int
    percentage: float

    def to_document(self) -> Dict[str, Any]:
        return {
            "location": self.location,
            "voter_count": self.voter_count,
            "percentage": self.percentage,
        }


@dataclass(frozen=True)
class DataIntegrityWarnings:
    """
    Non-fatal data quality counters for one aggregation cycle.

    - orphaned_votes: vote references a nominee missing from the snapshot
    - unknown_category_votes: vote references a category missing from the snapshot
    - ineligible_votes: known nominee voted in a category it is not listed for
    - duplicate_votes: repeated vote_id dropped at snapshot load
    - empty_categories: categories whose percentages defaulted to 0
    """

    orphaned_votes: int = 0
    unknown_category_votes: int = 0
    ineligible_votes: int = 0
    duplicate_votes: int = 0
    empty_categories: int = 0

    def any(self) -> bool:
        return any(
            (
                self.orphaned_votes,
                self.unknown_category_votes,
                self.ineligible_votes,
                self.duplicate_votes,
            )
        )

    def to_document(self) -> Dict[str, int]:
        return {
            "orphaned_votes": self.orphaned_votes,
            "unknown_category_votes": self.unknown_category_votes,
            "ineligible_votes": self.ineligible_votes,
            "duplicate_votes": self.duplicate_votes,
            "empty_categories": self.empty_categories,
        }


@dataclass(frozen=True)
class AwardsMetrics:
    total_voters: int
    active_voters: int
    total_votes: int
    total_categories: int
    total_nominees: int

    def to_document(self) -> Dict[str, int]:
        return {
            "total_voters": self.total_voters,
            "active_voters": self.active_voters,
            "total_votes": self.total_votes,
            "total_categories": self.total_categories,
            "total_nominees": self.total_nominees,
        }


@dataclass(frozen=True)
class TopPerformer:
    nominee_id: str
    name: str
    image_url: str
    category_id: str
    category_name: str
    vote_count: int
    percentage: float
    trend: str = "stable"

    def to_document(self) -> Dict[str, Any]:
        return {
            "nominee_id": self.nominee_id,
            "name": self.name,
            "image_url": self.image_url,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "vote_count": self.vote_count,
            "percentage": self.percentage,
            "trend": self.trend,
        }


@dataclass(frozen=True)
class CategoryPerformance:
    category_id: str
    name: str
    total_votes: int
    unique_voters: int
    average_votes_per_voter: float
    participation_rate: float
    trend: str = "stable"

    def to_document(self) -> Dict[str, Any]:
        return {
            "category_id": self.category_id,
            "name": self.name,
            "total_votes": self.total_votes,
            "unique_voters": self.unique_voters,
            "average_votes_per_voter": self.average_votes_per_voter,
            "participation_rate": self.participation_rate,
            "trend": self.trend,
        }


@dataclass(frozen=True)
class ResultSet:
    """
    Everything one aggregation cycle produced, built from a single snapshot.

    The snapshot reference is kept so that on-demand queries (filtered
    trends, arbitrary top-N) answer from the same generation.
    """

    generation: int
    snapshot: Any
    category_standings: Tuple[CategoryStanding, ...] = ()
    trend_series: Mapping[str, TrendSeries] = field(default_factory=dict)
    trend_comparison: Optional[TrendComparison] = None
    locations: Tuple[LocationBreakdown, ...] = ()
    metrics: Optional[AwardsMetrics] = None
    category_performance: Tuple[CategoryPerformance, ...] = ()
    warnings: DataIntegrityWarnings = field(default_factory=DataIntegrityWarnings)
    as_of: Optional[datetime] = None
    computed_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "trend_series", MappingProxyType(dict(self.trend_series)))

    def to_document(self) -> Dict[str, Any]:
        return {
            "schema_version": "v1",
            "generation": self.generation,
            "computed_at": _iso(self.computed_at),
            "as_of": _iso(self.as_of),
            "category_standings": [c.to_document() for c in self.category_standings],
            "trend_series": {k: v.to_document() for k, v in self.trend_series.items()},
            "trend_comparison": (
                self.trend_comparison.to_document() if self.trend_comparison else None
            ),
            "locations": [loc.to_document() for loc in self.locations],
            "metrics": self.metrics.to_document() if self.metrics else None,
            "category_performance": [p.to_document() for p in self.category_performance],
            "warnings": self.warnings.to_document(),
        }


def iso_timestamp(value: Optional[datetime]) -> Optional[str]:
    return _iso(value)
