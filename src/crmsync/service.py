"""
CrmSyncService: the surface collaborators use to queue records for CRM sync
and to read back their status.

Everything is injected so tests can run the whole pipeline with an in-memory
engine, a FakeClock and scripted adapters:

    queue = SyncQueue(engine, policies, clock)
    service = CrmSyncService(queue, registry)
    item_id = service.enqueue("lead", "create_or_update", "hubspot", lead)
    await service.processor.run_once()
    service.get_status(item_id).status      # SyncStatus.COMPLETED
"""
import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from crmsync.models.sync import (
    InvalidItem,
    SyncAction,
    SyncItemView,
    SyncKind,
    SyncSummary,
)
from crmsync.providers.registry import ProviderRegistry, build_registry
from crmsync.queue.processor import QueueProcessor
from crmsync.queue.reclaimer import Reclaimer
from crmsync.queue.retry import RetryPolicies
from crmsync.queue.status import StatusReporter
from crmsync.queue.store import SyncFilter, SyncQueue

logger = logging.getLogger(__name__)


class CrmSyncService:
    """Owns the queue and the components that work on it."""

    def __init__(
        self,
        queue: SyncQueue,
        registry: ProviderRegistry,
        *,
        processor: Optional[QueueProcessor] = None,
        reclaimer: Optional[Reclaimer] = None,
        default_provider: str = "hubspot",
    ):
        self.queue = queue
        self.registry = registry
        self.processor = processor or QueueProcessor(queue, registry)
        self.reclaimer = reclaimer or Reclaimer(queue)
        self.reporter = StatusReporter(queue)
        self.default_provider = default_provider

    @classmethod
    def from_settings(cls, settings, engine, http=None, clock=None) -> "CrmSyncService":
        policies = RetryPolicies.from_settings(settings)
        queue = SyncQueue(engine, policies=policies, clock=clock)
        registry = build_registry(settings, http=http)
        return cls(
            queue,
            registry,
            processor=QueueProcessor.from_settings(settings, queue, registry),
            reclaimer=Reclaimer(queue, retention=timedelta(hours=settings.retention_hours)),
            default_provider=settings.default_provider,
        )

    # ── Inbound ───────────────────────────────────────────────────────────────

    def enqueue(
        self,
        kind,
        action,
        provider: str,
        payload: Dict[str, Any],
        correlation_keys: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Queue one record for sync. Returns the item id.

        Raises:
            InvalidItem: the request is malformed; nothing was queued.
        """
        return self.queue.enqueue({
            "kind": kind,
            "action": action,
            "provider": provider,
            "payload": payload,
            "correlation_keys": correlation_keys,
        })

    def enqueue_bulk(self, records: Iterable[Mapping[str, Any]], provider: Optional[str] = None) -> List[str]:
        """
        Queue many records at once; all or none are queued.

        Each record is a mapping with kind, payload and optionally action,
        provider and correlation_keys. `provider` fills in records that name none.
        """
        requests = []
        for record in records:
            if not isinstance(record, Mapping):
                raise InvalidItem(f"expected a mapping, got {type(record).__name__}")
            request = dict(record)
            request.setdefault("provider", provider or self.default_provider)
            requests.append(request)
        ids = self.queue.enqueue_bulk(requests)
        logger.info("Queued bulk sync of %d records", len(ids))
        return ids

    def sync_call_log(self, call_log: Dict[str, Any], provider: Optional[str] = None) -> str:
        keys = {"call_id": call_log.get("id"), "lead_id": call_log.get("leadId")}
        return self.enqueue(SyncKind.CALL_LOG, SyncAction.CREATE_OR_UPDATE,
                            provider or self.default_provider, call_log, keys)

    def sync_lead(self, lead: Dict[str, Any], provider: Optional[str] = None) -> str:
        return self.enqueue(SyncKind.LEAD, SyncAction.CREATE_OR_UPDATE,
                            provider or self.default_provider, lead, {"lead_id": lead.get("id")})

    def sync_opportunity(self, opportunity: Dict[str, Any], provider: Optional[str] = None) -> str:
        keys = {"opportunity_id": opportunity.get("id"), "lead_id": opportunity.get("leadId")}
        return self.enqueue(SyncKind.OPPORTUNITY, SyncAction.CREATE_OR_UPDATE,
                            provider or self.default_provider, opportunity, keys)

    # ── Outbound ──────────────────────────────────────────────────────────────

    def get_status(self, item_id: str) -> Optional[SyncItemView]:
        """None means not found (never queued, or already reclaimed)."""
        return self.reporter.status_of(item_id)

    def get_status_by_correlation_key(self, value: str, name: Optional[str] = None) -> List[SyncItemView]:
        return self.reporter.status_by_correlation_key(value, name)

    def list_items(self, flt: Optional[SyncFilter] = None) -> List[SyncItemView]:
        return self.reporter.list(flt)

    def summary(self, flt: Optional[SyncFilter] = None) -> SyncSummary:
        return self.reporter.summary(flt)

    def supported_providers(self) -> List[Dict]:
        return self.registry.supported()

    def is_configured(self, provider: str) -> bool:
        return self.registry.is_configured(provider)

    async def aclose(self) -> None:
        await self.processor.shutdown()
        await self.registry.aclose()


_service: Optional[CrmSyncService] = None


def get_service() -> CrmSyncService:
    """Return the process-wide service, building it from settings on first call."""
    global _service
    if _service is None:
        from crmsync.config import get_settings
        from crmsync.db.engine import get_engine

        _service = CrmSyncService.from_settings(get_settings(), get_engine())
    return _service
