from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone

import pytest

from core.tallies.models import CategoryRef, NomineeRef, UserRef, VoteRecord
from core.tallies.service import EVENT_FAILED, EVENT_PUBLISHED, TallyService
from core.tallies.trends import Granularity
from shared.storage.snapshot_store import SnapshotStore

AS_OF = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)

CATEGORIES = [CategoryRef('C1', 'Song of the Year'), CategoryRef('C2', 'Best Newcomer')]
NOMINEES = [
    NomineeRef('A', 'Artist A', category_ids=frozenset({'C1'})),
    NomineeRef('B', 'Artist B', category_ids=frozenset({'C1'})),
    NomineeRef('D', 'Artist D', category_ids=frozenset({'C1'})),
    NomineeRef('X', 'Artist X', category_ids=frozenset({'C2'})),
    NomineeRef('Y', 'Artist Y', category_ids=frozenset({'C2'})),
]
USERS = [
    UserRef('u1', 'Harare'),
    UserRef('u2', 'Harare'),
    UserRef('u3', ''),
    UserRef('u4', 'Bulawayo'),
    UserRef('u5', 'Mutare'),
]
VOTES = [
    VoteRecord('v1', 'u1', 'C1', 'A', AS_OF - timedelta(hours=1)),
    VoteRecord('v2', 'u2', 'C1', 'A', AS_OF - timedelta(hours=2)),
    VoteRecord('v3', 'u3', 'C1', 'B', AS_OF - timedelta(days=9)),
    VoteRecord('v4', 'u1', 'C1', 'D', AS_OF),
    VoteRecord('v5', 'u2', 'C1', 'D', AS_OF - timedelta(days=1)),
    VoteRecord('v6', 'u4', 'C1', 'D', AS_OF - timedelta(days=2)),
]


@pytest.fixture
def service():
    service = TallyService()
    service.ingest(VOTES, CATEGORIES, NOMINEES, USERS)
    return service


def test_initial_state():
    service = TallyService()
    assert service.results().generation == 0
    assert service.get_category_standings() == []
    assert service.get_last_refresh_timestamp() is None
    assert not service.is_stale
    assert service.get_metrics().total_votes == 0
    assert service.get_location_breakdown() == []
    assert len(service.get_trend_series('hour_of_day').counts) == 24


def test_category_standings(service):
    (c1,) = service.get_category_standings('C1')
    assert [(s.nominee_id, s.vote_count, s.percentage, s.rank) for s in c1.nominee_standings] == [
        ('D', 3, 50.0, 1),
        ('A', 2, 33.3, 2),
        ('B', 1, 16.7, 3),
    ]
    assert [c.category_id for c in service.get_category_standings()] == ['C1', 'C2']
    assert service.get_category_standings('missing') == []


def test_last_refresh_timestamp(service):
    stamp = service.get_last_refresh_timestamp()
    assert stamp is not None
    assert stamp.tzinfo is not None


def test_location_breakdown(service):
    top = service.get_location_breakdown()
    assert [(b.location, b.voter_count) for b in top] == [
        ('Harare', 2),
        ('Bulawayo', 1),
        ('Mutare', 1),
        ('Other', 1),
    ]
    assert len(service.get_location_breakdown(top_n=None)) == 4
    assert service.get_location_breakdown(top_n=1)[-1].voter_count == 3
    with pytest.raises(ValueError):
        service.get_location_breakdown(top_n=0)


def test_trend_series(service):
    series = service.get_trend_series(Granularity.DAY_OF_WEEK)
    assert series.total == 6
    assert service.get_trend_series('day_of_week', category_id='C2').total == 0
    with pytest.raises(ValueError):
        service.get_trend_series('weekly')


def test_trend_comparison(service):
    overall = service.get_trend_comparison()
    assert (overall.current_total, overall.previous_total) == (5, 1)
    assert overall.direction == 'up'
    assert service.get_trend_comparison('C2').current_total == 0


def test_reports(service):
    metrics = service.get_metrics()
    assert (metrics.total_voters, metrics.active_voters, metrics.total_votes) == (5, 4, 6)
    assert service.get_top_performers()[0].nominee_id == 'D'
    assert len(service.get_top_performers(limit=2)) == 2
    assert [p.category_id for p in service.get_category_performance()] == ['C1', 'C2']
    assert service.get_integrity_warnings().empty_categories == 1


def test_subscribers_receive_events():
    service = TallyService()
    events = []
    handle = service.subscribe(events.append)

    service.ingest(VOTES, CATEGORIES, NOMINEES, USERS)
    service.record_failure(RuntimeError('votes: HTTP 503'))

    assert [e.status for e in events] == [EVENT_PUBLISHED, EVENT_FAILED]
    assert events[0].ok and events[0].results.generation == 1
    assert events[1].error == 'votes: HTTP 503'
    assert events[1].generation == 1

    assert service.unsubscribe(handle)
    assert not service.unsubscribe(handle)
    service.ingest([], [], [], [])
    assert len(events) == 2


def test_failing_subscriber_does_not_block_others():
    service = TallyService()
    received = []

    def broken(event):
        raise RuntimeError('boom')

    service.subscribe(broken)
    service.subscribe(received.append)
    service.ingest(VOTES, CATEGORIES, NOMINEES, USERS)
    assert len(received) == 1


def test_failure_keeps_last_good_results(service):
    before = service.results()
    service.record_failure(RuntimeError('categories: transport error'))

    assert service.is_stale
    assert service.last_error == 'categories: transport error'
    assert service.results() is before
    assert service.get_category_standings('C1')[0].total_votes == 6

    service.ingest(VOTES, CATEGORIES, NOMINEES, USERS)
    assert not service.is_stale
    assert service.results().generation == 2


def test_aggregate_is_idempotent(service):
    snapshot = service.results().snapshot
    first = service.aggregate(snapshot).to_document()
    second = service.aggregate(snapshot).to_document()
    first.pop('computed_at')
    second.pop('computed_at')
    assert first == second


def test_status_document(service):
    doc = service.status_document()
    assert doc['schema_version'] == 'v1'
    assert doc['generation'] == 1
    assert doc['stale'] is False
    assert doc['last_error'] is None
    assert doc['last_refresh'].endswith('Z')
    assert doc['as_of'] == '2025-03-10T12:00:00Z'
    assert [loc['location'] for loc in doc['locations_top']][-1] == 'Other'
    assert doc['top_performers'][0]['nominee_id'] == 'D'
    assert len(doc['trend_series']['hour_of_day']['counts']) == 24


class FailingAggregation(TallyService):
    def aggregate(self, snapshot, *, as_of=None):
        if snapshot.generation > 0:
            raise RuntimeError('aggregation bug')
        return super().aggregate(snapshot, as_of=as_of)


def test_failed_aggregation_leaves_store_unchanged():
    store = SnapshotStore()
    service = FailingAggregation(store=store)

    with pytest.raises(RuntimeError):
        service.ingest(VOTES, CATEGORIES, NOMINEES, USERS)

    assert store.current().generation == 0
    assert service.results().generation == 0
    assert service.results().snapshot is store.current()


def test_published_results_are_read_only(service):
    warnings = service.get_integrity_warnings()
    with pytest.raises(FrozenInstanceError):
        warnings.empty_categories = 0

    results = service.results()
    with pytest.raises(TypeError):
        results.trend_series['hour_of_day'] = None
    assert service.get_integrity_warnings().empty_categories == 1
    assert service.status_document()['trend_series']['hour_of_day']['granularity'] == 'hour_of_day'
