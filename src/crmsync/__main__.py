"""
Main entrypoint: runs the sync worker (queue processor + reclaimer) in one process.

The HTTP API runs separately under uvicorn and carries its own worker, so use
one or the other for a given queue.

Usage:
    python -m crmsync providers     # list CRM providers and whether they're configured
    python -m crmsync               # starts the worker
    uvicorn crmsync.api.main:app --host 0.0.0.0 --port 8000  # starts API + worker
"""
import asyncio
import logging
import sys
from datetime import timedelta

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _list_providers() -> None:
    from crmsync.service import get_service

    for provider in get_service().supported_providers():
        state = "configured" if provider["configured"] else "not configured"
        print(f"{provider['id']:<12} {provider['name']:<12} {state:<15} "
              f"{', '.join(provider['capabilities'])}")


async def _run_worker() -> None:
    from crmsync.config import get_settings
    from crmsync.scheduler.jobs import build_scheduler
    from crmsync.service import get_service

    settings = get_settings()
    service = get_service()

    configured = [p["id"] for p in service.supported_providers() if p["configured"]]
    if not configured:
        logger.warning("No CRM provider is configured; every item will fail authentication.")
    else:
        logger.info("Configured CRM providers: %s", ", ".join(configured))

    service.processor.start(timedelta(seconds=settings.claim_lease_seconds))
    scheduler = build_scheduler(service)
    scheduler.start()
    logger.info(
        "Sync worker started (tick every %ds, batch %d, concurrency %d)",
        settings.sync_tick_seconds, settings.sync_batch_size, settings.sync_concurrency,
    )

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        await service.aclose()
        logger.info("Goodbye.")


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "providers":
        _list_providers()
    else:
        asyncio.run(_run_worker())
