import asyncio
import time
from enum import Enum
from typing import Dict, Optional

from core.tallies.service import TallyService
from services.awards_api.client import FetchFailure
from services.awards_api.source import VoteDataSource
from shared.logging.logger import get_logger

log = get_logger("core.scheduler")


class CycleState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    AGGREGATING = "aggregating"
    FAILED = "failed"


class RefreshScheduler:
    """
    Owns the fetch + aggregate cadence for one TallyService.

    - At most one cycle in flight: triggers that arrive while a cycle is
      running are dropped, never queued
    - A failed cycle is reported to the service (stale results) and the
      scheduler returns to idle; failures never stop the periodic loop
    - stop() only cancels the timer; an in-flight cycle runs to completion
    """

    def __init__(
        self,
        source: VoteDataSource,
        service: TallyService,
        *,
        interval_seconds: float = 30.0,
    ):
        self._source = source
        self._service = service
        self._interval = self._validate_interval(interval_seconds)

        self._state = CycleState.IDLE
        self._timer_task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None

        # --------------------------------------------------
        # METRICS (READ-ONLY, OBSERVATIONAL)
        # --------------------------------------------------
        self._metrics = {
            "started": 0,
            "completed": 0,
            "failed": 0,
            "dropped_triggers": 0,
        }
        self._last_cycle_seconds: Optional[float] = None

    @staticmethod
    def _validate_interval(interval: float) -> float:
        interval = float(interval)
        if interval <= 0:
            raise ValueError(f"Refresh interval must be positive (got {interval})")
        return interval

    # ------------------------------------------------------------
    # READ-ONLY VISIBILITY HOOKS
    # ------------------------------------------------------------

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def get_metrics(self) -> Dict[str, object]:
        metrics: Dict[str, object] = dict(self._metrics)
        metrics["state"] = self._state.value
        metrics["last_cycle_seconds"] = self._last_cycle_seconds
        return metrics

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    async def start(self, interval: Optional[float] = None) -> None:
        if self.running:
            log.warning("Refresh scheduler already running; ignoring duplicate start")
            return

        if interval is not None:
            self._interval = self._validate_interval(interval)

        log.info(f"Refresh scheduler starting (interval={self._interval}s)")
        self._timer_task = asyncio.create_task(self._run_timer())

    async def stop(self) -> None:
        task = self._timer_task
        self._timer_task = None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("Refresh scheduler stopped (in-flight cycle, if any, will complete)")

    async def wait_idle(self) -> None:
        task = self._cycle_task
        if task is not None and not task.done():
            await asyncio.shield(task)

    async def _run_timer(self) -> None:
        try:
            while True:
                self.trigger_now()
                await asyncio.sleep(self._interval)
        except asyncio.CancelledError:
            log.debug("Refresh timer cancelled")
            raise

    # ------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------

    def trigger_now(self) -> Optional[asyncio.Task]:
        """
        Start a cycle if idle. Returns the cycle task, or None when a cycle
        is already in flight (the trigger is dropped, not an error).
        """
        if self._state != CycleState.IDLE:
            self._metrics["dropped_triggers"] += 1
            log.debug(f"Refresh trigger dropped (state={self._state.value})")
            return None

        self._state = CycleState.FETCHING
        self._metrics["started"] += 1
        self._cycle_task = asyncio.create_task(self._run_cycle())
        return self._cycle_task

    async def run_once(self) -> bool:
        """Trigger one cycle and wait for it. False if dropped or failed."""
        task = self.trigger_now()
        if task is None:
            return False
        return await task

    # ------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------

    async def _run_cycle(self) -> bool:
        started = time.monotonic()
        try:
            votes, categories, nominees, users = await self._fetch_all()

            self._state = CycleState.AGGREGATING
            self._service.ingest(votes, categories, nominees, users)

            self._metrics["completed"] += 1
            return True

        except FetchFailure as e:
            self._fail(e)
            return False

        except Exception as e:
            log.exception("Refresh cycle failed unexpectedly")
            self._fail(e)
            return False

        finally:
            self._last_cycle_seconds = round(time.monotonic() - started, 3)
            self._state = CycleState.IDLE

    async def _fetch_all(self):
        tasks = [
            asyncio.ensure_future(self._source.fetch_votes()),
            asyncio.ensure_future(self._source.fetch_categories()),
            asyncio.ensure_future(self._source.fetch_nominees()),
            asyncio.ensure_future(self._source.fetch_users()),
        ]
        try:
            return await asyncio.gather(*tasks)
        except FetchFailure:
            await self._cancel_pending(tasks)
            raise
        except Exception as e:
            await self._cancel_pending(tasks)
            raise FetchFailure("source", str(e) or e.__class__.__name__) from e

    @staticmethod
    async def _cancel_pending(tasks) -> None:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _fail(self, error: BaseException) -> None:
        self._state = CycleState.FAILED
        self._metrics["failed"] += 1
        log.warning(f"Refresh cycle failed: {error}")
        self._service.record_failure(error)
