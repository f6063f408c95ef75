from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from relay.config import settings
from relay.services.connection_registry import get_hub_registry
import logging

scheduler = AsyncIOScheduler()

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "sweep_stale_connections"


async def sweep_stale_connections() -> int:
    removed = await get_hub_registry().cleanup_stale_connections(settings.hub_heartbeat_timeout_seconds)
    if removed:
        logger.info(f"[Scheduler] Removed {removed} stale hub connection(s).")
    return removed


def schedule_stale_connection_sweep(interval_seconds: int | None = None):
    scheduler.add_job(
        sweep_stale_connections,
        trigger=IntervalTrigger(seconds=interval_seconds or settings.hub_cleanup_interval_seconds),
        id=SWEEP_JOB_ID,
        replace_existing=True,
    )
    logger.info(f"[Scheduler] Stale connection sweep every {interval_seconds or settings.hub_cleanup_interval_seconds}s")
