import asyncio
from datetime import datetime, timezone

import pytest

from core.scheduler import CycleState, RefreshScheduler
from core.tallies.models import CategoryRef, NomineeRef, UserRef, VoteRecord
from core.tallies.service import TallyService
from services.awards_api.client import FetchFailure

T0 = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeSource:
    """In-memory VoteDataSource; optionally blocks until released."""

    def __init__(self, *, gated=False, fail_with=None):
        self.release = asyncio.Event()
        if not gated:
            self.release.set()
        self.fail_with = fail_with
        self.calls = 0

    async def fetch_votes(self):
        self.calls += 1
        await self.release.wait()
        return [VoteRecord('v1', 'u1', 'C1', 'A', T0)]

    async def fetch_categories(self):
        return [CategoryRef('C1', 'Song of the Year')]

    async def fetch_nominees(self):
        return [NomineeRef('A', 'Artist A', category_ids=frozenset({'C1'}))]

    async def fetch_users(self):
        if self.fail_with is not None:
            raise self.fail_with
        return [UserRef('u1', 'Harare')]


class BrokenService(TallyService):
    def ingest(self, votes, categories, nominees, users):
        raise KeyError('nominee_id')


async def wait_for(predicate, timeout=2.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)
    await asyncio.wait_for(poll(), timeout)


def test_single_cycle_publishes():
    async def scenario():
        service = TallyService()
        scheduler = RefreshScheduler(FakeSource(), service)
        ok = await scheduler.run_once()
        return ok, scheduler, service

    ok, scheduler, service = asyncio.run(scenario())
    assert ok
    assert scheduler.state is CycleState.IDLE
    assert service.results().generation == 1
    assert service.get_category_standings('C1')[0].total_votes == 1
    assert scheduler.get_metrics()['completed'] == 1


def test_trigger_collision_runs_one_cycle():
    async def scenario():
        service = TallyService()
        source = FakeSource(gated=True)
        scheduler = RefreshScheduler(source, service)

        first = scheduler.trigger_now()
        second = scheduler.trigger_now()
        assert second is None
        assert scheduler.state is CycleState.FETCHING

        source.release.set()
        assert await first is True
        return scheduler, service, source

    scheduler, service, source = asyncio.run(scenario())
    metrics = scheduler.get_metrics()
    assert metrics['started'] == 1
    assert metrics['completed'] == 1
    assert metrics['dropped_triggers'] == 1
    assert source.calls == 1
    assert service.results().generation == 1


def test_fetch_failure_marks_results_stale():
    async def scenario():
        service = TallyService()
        source = FakeSource()
        scheduler = RefreshScheduler(source, service)
        assert await scheduler.run_once()

        source.fail_with = FetchFailure('users', 'HTTP 503', status_code=503)
        failed = await scheduler.run_once()
        return failed, scheduler, service

    failed, scheduler, service = asyncio.run(scenario())
    assert failed is False
    assert scheduler.state is CycleState.IDLE
    assert scheduler.get_metrics()['failed'] == 1
    assert service.is_stale
    assert service.last_error == 'users: HTTP 503'
    assert service.results().generation == 1


def test_unexpected_source_error_is_wrapped():
    async def scenario():
        service = TallyService()
        scheduler = RefreshScheduler(FakeSource(fail_with=ConnectionResetError('reset')), service)
        events = []
        service.subscribe(events.append)
        ok = await scheduler.run_once()
        return ok, service, events

    ok, service, events = asyncio.run(scenario())
    assert not ok
    assert service.last_error == 'source: reset'
    assert [e.status for e in events] == ['failed']


def test_aggregation_error_ends_in_failure():
    async def scenario():
        service = BrokenService()
        scheduler = RefreshScheduler(FakeSource(), service)
        ok = await scheduler.run_once()
        # the scheduler stays usable after a failed cycle
        again = scheduler.trigger_now()
        await again
        return ok, scheduler, service

    ok, scheduler, service = asyncio.run(scenario())
    assert not ok
    assert service.is_stale
    assert scheduler.get_metrics()['failed'] == 2
    assert scheduler.state is CycleState.IDLE


def test_periodic_refresh_and_stop():
    async def scenario():
        service = TallyService()
        scheduler = RefreshScheduler(FakeSource(), service, interval_seconds=0.01)
        await scheduler.start()
        assert scheduler.running
        await wait_for(lambda: scheduler.get_metrics()['completed'] >= 2)
        await scheduler.stop()
        await scheduler.wait_idle()

        completed = scheduler.get_metrics()['completed']
        await asyncio.sleep(0.05)
        return scheduler, completed

    scheduler, completed = asyncio.run(scenario())
    assert not scheduler.running
    assert scheduler.get_metrics()['completed'] == completed


def test_stop_lets_in_flight_cycle_finish():
    async def scenario():
        service = TallyService()
        source = FakeSource(gated=True)
        scheduler = RefreshScheduler(source, service, interval_seconds=60)
        await scheduler.start()
        await wait_for(lambda: scheduler.state is CycleState.FETCHING)

        await scheduler.stop()
        assert scheduler.state is CycleState.FETCHING

        source.release.set()
        await scheduler.wait_idle()
        return scheduler, service

    scheduler, service = asyncio.run(scenario())
    assert scheduler.state is CycleState.IDLE
    assert service.results().generation == 1


def test_duplicate_start_is_ignored():
    async def scenario():
        scheduler = RefreshScheduler(FakeSource(), TallyService(), interval_seconds=60)
        await scheduler.start()
        task = scheduler._timer_task
        await scheduler.start(interval=5)
        same = scheduler._timer_task is task
        await scheduler.stop()
        await scheduler.wait_idle()
        return same, scheduler

    same, scheduler = asyncio.run(scenario())
    assert same
    assert scheduler.interval == 60


def test_invalid_interval():
    with pytest.raises(ValueError):
        RefreshScheduler(FakeSource(), TallyService(), interval_seconds=0)

    async def scenario():
        scheduler = RefreshScheduler(FakeSource(), TallyService())
        with pytest.raises(ValueError):
            await scheduler.start(interval=-1)
        assert not scheduler.running

    asyncio.run(scenario())
