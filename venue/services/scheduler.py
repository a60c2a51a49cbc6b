import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from venue.config import config
from venue.services.engine import StationEngine
from venue.utils.time_utils import get_timezone

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(timezone=get_timezone())


async def run_sweep(engine: StationEngine):
    """Expire stale queue entries and close elapsed slots."""
    await engine.sweep()


def setup_scheduler(engine: StationEngine, interval_minutes: int | None = None):
    """Setup scheduled tasks."""
    interval_minutes = interval_minutes or config.sweep_interval_minutes

    scheduler.add_job(
        run_sweep,
        IntervalTrigger(minutes=interval_minutes, timezone=get_timezone()),
        args=[engine],
        id="sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info(f"Sweep scheduled every {interval_minutes} minutes")


def shutdown_scheduler():
    """Shutdown the scheduler."""
    if scheduler.running:
        scheduler.shutdown()
