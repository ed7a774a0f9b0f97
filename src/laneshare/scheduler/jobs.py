"""
APScheduler jobs for background housekeeping.

The stale-run sweep demotes runs left PENDING/RUNNING by a process that
died mid-sync, so a connection is never blocked from syncing forever.

The scheduler runs inside the API process (wired in api/main.py).
"""
import logging
from datetime import datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from laneshare.config import get_settings

logger = logging.getLogger(__name__)


def build_scheduler(orchestrator) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        orchestrator: SyncOrchestrator whose stale runs are swept.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _expire_stale_runs,
        trigger="interval",
        minutes=settings.stale_sweep_interval_minutes,
        id="expire_stale_runs",
        replace_existing=True,
        kwargs={
            "orchestrator": orchestrator,
            "max_age": timedelta(minutes=settings.stale_run_minutes),
        },
    )

    return scheduler


async def _expire_stale_runs(orchestrator, max_age: timedelta) -> None:
    """Periodic job: expire stuck sync runs. Never raises into the scheduler."""
    logger.debug("Stale run sweep at %s", datetime.utcnow().isoformat())
    try:
        expired = orchestrator.expire_stale_runs(max_age)
        if expired:
            logger.info("Expired %d stale sync runs", expired)
    except Exception as exc:
        logger.error("Stale run sweep failed: %s", exc)
