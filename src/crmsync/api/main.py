"""FastAPI application factory."""
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI

from crmsync.api.routes import sync as sync_routes
from crmsync.config import get_settings
from crmsync.service import CrmSyncService, get_service

logger = logging.getLogger(__name__)


def create_app(service: Optional[CrmSyncService] = None, start_scheduler: bool = True) -> FastAPI:
    """
    Build and return the FastAPI app.

    Args:
        service: Service to expose; defaults to the process-wide one.
        start_scheduler: Run the processor/reclaimer jobs for the app's lifetime.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = app.state.service
        scheduler = None
        if start_scheduler:
            from crmsync.scheduler.jobs import build_scheduler

            settings = get_settings()
            svc.processor.start(timedelta(seconds=settings.claim_lease_seconds))
            scheduler = build_scheduler(svc)
            scheduler.start()
            logger.info("Sync scheduler started (tick every %ds)", settings.sync_tick_seconds)
        yield
        if scheduler is not None:
            scheduler.shutdown()
        await svc.aclose()

    app = FastAPI(
        title="CRM Sync API",
        description="Outbound CRM synchronization queue",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.service = service or get_service()

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
