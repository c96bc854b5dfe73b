import asyncio
import signal
import sys
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv

from core.scheduler import RefreshScheduler
from core.tallies.service import TallyService
from core.tallies.trends import TrendEstimator
from runtime.version import as_string
from services.awards_api.client import AwardsApiClient
from shared.config.system import SystemConfig, load_system_config
from shared.logging.logger import get_logger
from shared.storage.state_publisher import ResultsStatePublisher

log = get_logger("core.app")


def build_service(cfg: SystemConfig) -> TallyService:
    trend_estimator = TrendEstimator(
        period=timedelta(days=cfg.tally.trend_window_days),
        threshold_pct=cfg.tally.trend_threshold_pct,
    )
    return TallyService(
        trend_estimator=trend_estimator,
        location_top_n=cfg.tally.location_top_n,
        top_performers_limit=cfg.tally.top_performers_limit,
    )


def build_client(cfg: SystemConfig) -> AwardsApiClient:
    return AwardsApiClient(
        base_url=cfg.api.base_url,
        token=cfg.api.token,
        timeout=cfg.api.timeout_seconds,
    )


async def main(stop_event: asyncio.Event, cfg: Optional[SystemConfig] = None):
    # --------------------------------------------------
    # ENV
    # --------------------------------------------------
    load_dotenv()
    log.info("Environment variables loaded")
    log.info(f"{as_string()} booting")

    # --------------------------------------------------
    # CONFIG
    # --------------------------------------------------
    cfg = cfg or load_system_config()
    log.info(
        f"Awards API: {cfg.api.base_url} "
        f"(refresh every {cfg.refresh.interval_seconds}s)"
    )

    # --------------------------------------------------
    # CORE SYSTEMS
    # --------------------------------------------------
    service = build_service(cfg)
    client = build_client(cfg)
    scheduler = RefreshScheduler(
        client,
        service,
        interval_seconds=cfg.refresh.interval_seconds,
    )

    # --------------------------------------------------
    # STATE EXPORT (FEATURE-GATED)
    # --------------------------------------------------
    if cfg.export.enabled:
        publisher = ResultsStatePublisher(
            service,
            base_dir=cfg.export.state_dir,
            relative_path=cfg.export.relative_path,
        )
        service.subscribe(publisher)
        log.info(f"Results state export enabled: {publisher.target}")
    else:
        log.info("Results state export disabled")

    # --------------------------------------------------
    # START REFRESH
    # --------------------------------------------------
    if cfg.refresh.enabled:
        await scheduler.start()
    else:
        log.info("Periodic refresh disabled; running a single cycle")
        await scheduler.run_once()

    # --------------------------------------------------
    # BLOCK UNTIL SHUTDOWN SIGNAL
    # --------------------------------------------------
    await stop_event.wait()

    log.info("Shutdown initiated")

    # --------------------------------------------------
    # ORDERLY SHUTDOWN: TIMER FIRST, THEN IN-FLIGHT CYCLE
    # --------------------------------------------------
    try:
        await scheduler.stop()
        await scheduler.wait_idle()
    except Exception as e:
        log.warning(f"Scheduler shutdown error ignored: {e}")

    log.info(f"Refresh metrics: {scheduler.get_metrics()}")
    log.info("Awards tally runtime stopped")


# ----------------------------------------------------------------------
# SIGNAL HANDLING (WINDOWS-SAFE)
# ----------------------------------------------------------------------

def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
):
    """
    Windows-safe Ctrl+C handler.
    Uses signal.signal + asyncio.Event to unwind cleanly.
    """

    def _handler(signum, frame):
        try:
            loop.call_soon_threadsafe(stop_event.set)
        except Exception:
            stop_event.set()

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except Exception:
        pass


# ----------------------------------------------------------------------
# ENTRYPOINT
# ----------------------------------------------------------------------

def run():
    stop_event = asyncio.Event()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    _install_signal_handlers(loop, stop_event)

    try:
        loop.run_until_complete(main(stop_event))

    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received, shutdown initiated")
        try:
            stop_event.set()
            loop.run_until_complete(asyncio.sleep(0))
        except Exception:
            pass

    finally:
        # --------------------------------------------------
        # CANCEL REMAINING TASKS (CLEANLY)
        # --------------------------------------------------
        pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            try:
                loop.run_until_complete(
                    asyncio.gather(*pending, return_exceptions=True)
                )
            except Exception:
                pass

        try:
            loop.run_until_complete(loop.shutdown_asyncgens())
        except Exception:
            pass

        asyncio.set_event_loop(None)
        loop.close()


if __name__ == "__main__":
    run()
    sys.exit(0)
