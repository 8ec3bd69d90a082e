"""
APScheduler jobs that drive the sync queue.

Two independent interval jobs share the queue:

  process_queue       every CRMSYNC_SYNC_TICK_SECONDS (10s): one processor tick
  reclaim_sync_items  every CRMSYNC_RECLAIM_INTERVAL_SECONDS (1h): reclaimer sweep

max_instances=1 plus coalesce means a slow run delays the next one instead of
stacking up. The tick itself returns as soon as dispatches are started.
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from crmsync.config import get_settings

logger = logging.getLogger(__name__)


def build_scheduler(service) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        service: CrmSyncService whose processor and reclaimer the jobs drive.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _process_queue,
        trigger="interval",
        seconds=settings.sync_tick_seconds,
        id="process_queue",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"processor": service.processor},
    )
    scheduler.add_job(
        _reclaim,
        trigger="interval",
        seconds=settings.reclaim_interval_seconds,
        id="reclaim_sync_items",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"reclaimer": service.reclaimer},
    )

    return scheduler


async def _process_queue(processor) -> None:
    """Tick job. Never raises, so the scheduler keeps firing."""
    try:
        await processor.tick()
    except Exception as exc:
        logger.error("Sync queue tick failed: %s", exc)


async def _reclaim(reclaimer) -> None:
    """Reclaim job. Never raises, so the scheduler keeps firing."""
    try:
        reclaimer.sweep()
    except Exception as exc:
        logger.error("Sync item cleanup failed: %s", exc)
