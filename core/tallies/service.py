"""
Tally service: the single owner of published tally results.

Presentation collaborators hold a reference to one TallyService and either
query it or subscribe for push notifications. Every query answers from one
ResultSet, so numbers from different views always come from the same
snapshot generation.
"""
from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, Optional

from core.tallies.demographics import DEFAULT_TOP_N, DemographicsAggregator
from core.tallies.engine import TallyEngine
from core.tallies.models import (
    AwardsMetrics,
    CategoryPerformance,
    CategoryRef,
    CategoryStanding,
    DataIntegrityWarnings,
    LocationBreakdown,
    NomineeRef,
    ResultSet,
    TopPerformer,
    TrendComparison,
    TrendSeries,
    UserRef,
    VoteRecord,
    iso_timestamp,
)
from core.tallies.reports import (
    DEFAULT_TOP_PERFORMERS,
    awards_metrics,
    category_performance,
    top_performers,
)
from core.tallies.trends import Granularity, TrendEstimator
from shared.logging.logger import get_logger
from shared.storage.snapshot_store import Snapshot, SnapshotStore

log = get_logger("core.tallies.service")

_UNSET: Any = object()

EVENT_PUBLISHED = "published"
EVENT_FAILED = "failed"


@dataclass(frozen=True)
class RefreshEvent:
    """Delivered to subscribers after every publish or failed cycle."""

    status: str
    generation: int
    results: Optional[ResultSet] = None
    error: Optional[str] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ok(self) -> bool:
        return self.status == EVENT_PUBLISHED


Subscriber = Callable[[RefreshEvent], None]


class TallyService:
    def __init__(
        self,
        *,
        store: Optional[SnapshotStore] = None,
        trend_estimator: Optional[TrendEstimator] = None,
        location_top_n: int = DEFAULT_TOP_N,
        top_performers_limit: int = DEFAULT_TOP_PERFORMERS,
    ) -> None:
        self._store = store or SnapshotStore()
        self._trends = trend_estimator or TrendEstimator()
        self._engine = TallyEngine(self._trends)
        self._demographics = DemographicsAggregator()
        self._location_top_n = location_top_n
        self._top_performers_limit = top_performers_limit

        self._lock = Lock()
        self._results = self.aggregate(self._store.current())
        self._last_refresh: Optional[datetime] = None
        self._last_error: Optional[str] = None

        self._subscribers: Dict[int, Subscriber] = {}
        self._handles = itertools.count(1)

    # ------------------------------------------------------------
    # Aggregation (pure)
    # ------------------------------------------------------------

    def aggregate(self, snapshot: Snapshot, *, as_of: Optional[datetime] = None) -> ResultSet:
        """
        Build a complete ResultSet from one snapshot.

        as_of anchors trend windows; it defaults to the newest vote in the
        snapshot so that re-running on identical input is idempotent.
        """
        as_of = as_of or snapshot.latest_vote_at
        tally = self._engine.tally(snapshot, as_of=as_of)
        metrics = awards_metrics(snapshot)

        return ResultSet(
            generation=snapshot.generation,
            snapshot=snapshot,
            category_standings=tally.standings,
            trend_series=self._trends.all_series(snapshot.votes),
            trend_comparison=self._trends.compare(snapshot.votes, as_of),
            locations=self._demographics.rank(snapshot.users),
            metrics=metrics,
            category_performance=category_performance(tally.standings, metrics.total_voters),
            warnings=tally.warnings,
            as_of=as_of,
        )

    def ingest(
        self,
        votes: Iterable[VoteRecord],
        categories: Iterable[CategoryRef],
        nominees: Iterable[NomineeRef],
        users: Iterable[UserRef],
    ) -> ResultSet:
        """
        Build a new snapshot, aggregate it and publish the result.

        The snapshot is committed to the store only once aggregation has
        succeeded, so store and published results never disagree.
        """
        snapshot = self._store.build(votes, categories, nominees, users)
        results = self.aggregate(snapshot)
        self._store.commit(snapshot)
        self.publish(results)
        return results

    # ------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------

    def publish(self, results: ResultSet) -> None:
        now = datetime.now(timezone.utc)
        with self._lock:
            self._results = results
            self._last_refresh = now
            self._last_error = None

        log.info(
            f"Published generation {results.generation}: "
            f"{len(results.category_standings)} categories, "
            f"{results.metrics.total_votes if results.metrics else 0} votes"
        )
        self._notify(RefreshEvent(status=EVENT_PUBLISHED, generation=results.generation, results=results))

    def record_failure(self, error: BaseException | str) -> None:
        """
        Mark the published results stale after a failed cycle.

        The last good ResultSet stays available to every query.
        """
        message = str(error) or error.__class__.__name__
        with self._lock:
            self._last_error = message
            generation = self._results.generation

        log.warning(f"Refresh failed; serving generation {generation} as stale: {message}")
        self._notify(RefreshEvent(status=EVENT_FAILED, generation=generation, error=message))

    # ------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> int:
        with self._lock:
            handle = next(self._handles)
            self._subscribers[handle] = callback
        log.debug(f"Subscriber {handle} registered")
        return handle

    def unsubscribe(self, handle: int) -> bool:
        with self._lock:
            removed = self._subscribers.pop(handle, None) is not None
        if removed:
            log.debug(f"Subscriber {handle} removed")
        return removed

    def _notify(self, event: RefreshEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers.items())

        for handle, callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                log.warning(f"Subscriber {handle} error ignored: {e}")

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------

    def results(self) -> ResultSet:
        with self._lock:
            return self._results

    @property
    def is_stale(self) -> bool:
        with self._lock:
            return self._last_error is not None

    @property
    def last_error(self) -> Optional[str]:
        with self._lock:
            return self._last_error

    def get_last_refresh_timestamp(self) -> Optional[datetime]:
        with self._lock:
            return self._last_refresh

    def get_category_standings(self, category_id: Optional[str] = None) -> List[CategoryStanding]:
        standings = self.results().category_standings
        if category_id is None:
            return list(standings)
        return [c for c in standings if c.category_id == category_id]

    def get_trend_series(
        self,
        granularity: Granularity | str,
        category_id: Optional[str] = None,
    ) -> TrendSeries:
        granularity = Granularity.from_value(granularity)
        results = self.results()
        if category_id is None:
            return results.trend_series[granularity.value]
        return self._trends.series(results.snapshot.votes, granularity, category_id)

    def get_trend_comparison(self, category_id: Optional[str] = None) -> TrendComparison:
        results = self.results()
        if category_id is None and results.trend_comparison is not None:
            return results.trend_comparison
        return self._trends.compare(results.snapshot.votes, results.as_of, category_id=category_id)

    def get_location_breakdown(self, top_n: Optional[int] = _UNSET) -> List[LocationBreakdown]:
        """
        Top-N locations plus an "Other" bucket; top_n=None returns all.
        """
        if top_n is _UNSET:
            top_n = self._location_top_n
        return self._demographics.fold(self.results().locations, top_n)

    def get_metrics(self) -> AwardsMetrics:
        results = self.results()
        return results.metrics or awards_metrics(results.snapshot)

    def get_top_performers(self, limit: Optional[int] = None) -> List[TopPerformer]:
        if limit is None:
            limit = self._top_performers_limit
        return top_performers(self.results().category_standings, limit)

    def get_category_performance(self) -> List[CategoryPerformance]:
        return list(self.results().category_performance)

    def get_integrity_warnings(self) -> DataIntegrityWarnings:
        return self.results().warnings

    def status_document(self) -> Dict[str, Any]:
        """Results document plus staleness fields for dashboard state files."""
        with self._lock:
            results = self._results
            last_refresh = self._last_refresh
            last_error = self._last_error

        doc = results.to_document()
        doc["last_refresh"] = iso_timestamp(last_refresh)
        doc["stale"] = last_error is not None
        doc["last_error"] = last_error
        doc["locations_top"] = [
            loc.to_document()
            for loc in self._demographics.fold(results.locations, self._location_top_n)
        ]
        doc["top_performers"] = [
            p.to_document()
            for p in top_performers(results.category_standings, self._top_performers_limit)
        ]
        return doc
