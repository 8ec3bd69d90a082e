"""
Integration tests for CrmSyncService.

Runs the full queue → processor → status/reclaim pipeline against an
in-memory SQLite DB, a FakeClock and scripted adapters. No network calls.
"""
from datetime import timedelta

import httpx
import pytest

from crmsync.config import Settings
from crmsync.models.sync import InvalidItem, SyncKind, SyncStatus
from crmsync.providers.errors import TransientError
from crmsync.queue.processor import QueueProcessor
from crmsync.queue.reclaimer import Reclaimer
from crmsync.queue.store import SyncFilter
from crmsync.service import CrmSyncService

CALL_LOG = {
    "id": "call-42",
    "leadId": "lead-123",
    "leadName": "John Doe",
    "initiatedAt": "2025-01-15T09:30:00Z",
    "duration": 300,
    "outcome": "connected",
}


@pytest.fixture
def service(queue, registry, clock):
    return CrmSyncService(
        queue,
        registry,
        processor=QueueProcessor(queue, registry, batch_size=5, concurrency=5, clock=clock),
        reclaimer=Reclaimer(queue, retention=timedelta(hours=1), clock=clock),
        default_provider="crm-a",
    )


class TestScenarios:
    @pytest.mark.asyncio
    async def test_call_log_completes_first_attempt(self, service, adapter):
        adapter.script = ["abc123"]
        item_id = service.enqueue("call-log", "create-or-update", "crm-a", CALL_LOG,
                                  {"call_id": "call-42"})

        assert service.get_status(item_id).status == SyncStatus.PENDING
        await service.processor.run_once()

        view = service.get_status(item_id)
        assert view.status == SyncStatus.COMPLETED
        assert view.remote_id == "abc123"
        assert view.attempts == 1

    @pytest.mark.asyncio
    async def test_lead_retried_until_success(self, service, adapter):
        adapter.script = [TransientError("timeout"), TransientError("timeout"), "abc123"]
        item_id = service.sync_lead({"id": "lead-1", "firstName": "Ada"})

        await service.processor.drain()

        view = service.get_status(item_id)
        assert view.status == SyncStatus.COMPLETED
        assert view.attempts == 3

    @pytest.mark.asyncio
    async def test_lead_gives_up_after_max_attempts(self, service, adapter):
        adapter.script = [TransientError("timeout")] * 3
        item_id = service.sync_lead({"id": "lead-1", "firstName": "Ada"})

        await service.processor.drain()

        view = service.get_status(item_id)
        assert view.status == SyncStatus.FAILED_TERMINAL
        assert view.attempts == 3
        assert view.remote_id is None

    @pytest.mark.asyncio
    async def test_unconfigured_provider(self, service, registry, make_adapter):
        registry.register(make_adapter("unconfigured-x", configured=False))
        assert service.is_configured("unconfigured-x") is False
        item_id = service.sync_lead({"id": "lead-1"}, provider="unconfigured-x")

        await service.processor.drain()

        view = service.get_status(item_id)
        assert view.status == SyncStatus.FAILED_TERMINAL
        assert view.attempts == 1

    @pytest.mark.asyncio
    async def test_bulk_of_fifty(self, service):
        ids = service.enqueue_bulk(
            [{"kind": "lead", "payload": {"ref": f"l{i}"}} for i in range(50)]
        )
        assert len(ids) == 50
        assert service.summary().pending == 50

        await service.processor.drain()

        summary = service.summary()
        assert summary.pending == 0
        assert summary.completed + summary.failed_terminal == 50

    @pytest.mark.asyncio
    async def test_reclaimed_item_is_not_found(self, service, clock):
        item_id = service.sync_lead({"id": "lead-1"})
        await service.processor.run_once()
        assert service.get_status(item_id).status == SyncStatus.COMPLETED

        clock.advance(hours=2)
        assert service.reclaimer.sweep() == 1
        assert service.get_status(item_id) is None


class TestEnqueue:
    def test_sync_call_log_sets_correlation_keys(self, service):
        item_id = service.sync_call_log(CALL_LOG)
        view = service.get_status(item_id)
        assert view.kind == SyncKind.CALL_LOG
        assert view.provider == "crm-a"
        assert view.correlation_keys == {"call_id": "call-42", "lead_id": "lead-123"}

    def test_sync_opportunity(self, service):
        item_id = service.sync_opportunity({"id": "opp-1", "name": "Renewal"}, provider="crm-b")
        view = service.get_status(item_id)
        assert view.kind == SyncKind.OPPORTUNITY
        assert view.provider == "crm-b"
        assert view.correlation_keys == {"opportunity_id": "opp-1"}

    def test_status_by_correlation_key(self, service):
        service.sync_call_log(CALL_LOG)
        service.sync_lead({"id": "lead-123"})
        views = service.get_status_by_correlation_key("lead-123")
        assert {v.kind for v in views} == {SyncKind.CALL_LOG, SyncKind.LEAD}
        assert len(service.get_status_by_correlation_key("lead-123", name="call_id")) == 0

    def test_invalid_item_rejected(self, service):
        with pytest.raises(InvalidItem):
            service.enqueue("lead", "create_or_update", "crm-a", None)
        assert service.summary().total == 0

    def test_bulk_uses_record_provider_over_default(self, service):
        ids = service.enqueue_bulk([
            {"kind": "lead", "payload": {"id": 1}},
            {"kind": "lead", "payload": {"id": 2}, "provider": "crm-b"},
        ])
        assert [service.get_status(i).provider for i in ids] == ["crm-a", "crm-b"]

    def test_bulk_rejects_non_mapping(self, service):
        with pytest.raises(InvalidItem):
            service.enqueue_bulk(["lead"])

    def test_summary_filter(self, service):
        service.sync_lead({"id": 1})
        service.sync_lead({"id": 2}, provider="crm-b")
        assert service.summary(SyncFilter(provider="crm-b")).total == 1


class TestFromSettings:
    @pytest.mark.asyncio
    async def test_hubspot_end_to_end(self, engine, clock):
        sent = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(request)
            return httpx.Response(201, json={"id": "hs-1"})

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        settings = Settings(_env_file=None, hubspot_access_token="pat", max_attempts=4)
        service = CrmSyncService.from_settings(settings, engine, http=http, clock=clock)

        item_id = service.sync_lead({"id": "lead-1", "firstName": "Ada", "lastName": "Lovelace"})
        await service.processor.run_once()

        view = service.get_status(item_id)
        assert view.provider == "hubspot"
        assert view.status == SyncStatus.COMPLETED
        assert view.remote_id == "hs-1"
        assert sent[0].url.path == "/crm/v3/objects/contacts"
        assert service.queue.policies.default.max_attempts == 4
        await service.aclose()

    @pytest.mark.asyncio
    async def test_unmappable_call_log_fails_without_retry(self, engine, clock):
        sent = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(request)
            return httpx.Response(201, json={"id": "hs-1"})

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        settings = Settings(_env_file=None, hubspot_access_token="pat")
        service = CrmSyncService.from_settings(settings, engine, http=http, clock=clock)

        item_id = service.sync_call_log({"id": "call-1", "leadName": "Ada", "duration": "abc"})
        await service.processor.drain()

        view = service.get_status(item_id)
        assert view.status == SyncStatus.FAILED_TERMINAL
        assert view.attempts == 1
        assert sent == []
        await service.aclose()

    def test_supported_providers(self, engine):
        service = CrmSyncService.from_settings(Settings(_env_file=None), engine)
        assert [p["id"] for p in service.supported_providers()] == [
            "salesforce", "hubspot", "pipedrive", "zoho",
        ]
