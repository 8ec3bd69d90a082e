"""Shared test fixtures."""
import asyncio
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from crmsync.models.sync import SyncItem, SyncItemKey, SyncKind  # noqa: F401
from crmsync.providers.base import AccessToken, ProviderAdapter, ProviderRequest
from crmsync.providers.registry import ProviderRegistry
from crmsync.queue.clock import FakeClock
from crmsync.queue.processor import QueueProcessor
from crmsync.queue.retry import RetryPolicies, RetryPolicy
from crmsync.queue.store import SyncQueue


class ScriptedAdapter(ProviderAdapter):
    """
    In-process adapter whose send() results are scripted.

    Each script entry is either a remote id (returned) or an exception
    instance (raised). Once the script runs out, sends succeed with
    "remote-<n>". Records every request and flags any payload "ref" that is
    being sent twice at the same time.
    """

    supported_kinds = frozenset(SyncKind)

    def __init__(self, provider_id: str = "crm-a", script: Optional[List[Any]] = None,
                 configured: bool = True, delay: float = 0.0):
        super().__init__()
        self.id = provider_id
        self.name = provider_id.upper()
        self.script = list(script or [])
        self.configured = configured
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self.auth_calls = 0
        self.overlaps: List[str] = []
        self.max_active = 0
        self._active: List[str] = []

    def is_configured(self) -> bool:
        return self.configured

    async def authenticate(self) -> Optional[AccessToken]:
        self.auth_calls += 1
        return await super().authenticate()

    def _map(self, kind: SyncKind, payload: Dict[str, Any]) -> ProviderRequest:
        return ProviderRequest(method="POST", path=f"/{kind.value}", json=dict(payload))

    def _url(self, path: str, token: Optional[AccessToken]) -> str:
        return path

    async def send(self, request: ProviderRequest) -> str:
        ref = str(request.json.get("ref", id(request)))
        if ref in self._active:
            self.overlaps.append(ref)
        self._active.append(ref)
        self.max_active = max(self.max_active, len(self._active))
        self.calls.append(request.json)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.script:
                outcome = self.script.pop(0)
                if isinstance(outcome, BaseException):
                    raise outcome
                return outcome
            return f"remote-{len(self.calls)}"
        finally:
            self._active.remove(ref)


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock()


@pytest.fixture(name="policies")
def policies_fixture() -> RetryPolicies:
    return RetryPolicies(default=RetryPolicy(max_attempts=3))


@pytest.fixture(name="queue")
def queue_fixture(engine, policies, clock) -> SyncQueue:
    return SyncQueue(engine, policies=policies, clock=clock)


@pytest.fixture(name="adapter")
def adapter_fixture() -> ScriptedAdapter:
    return ScriptedAdapter("crm-a")


@pytest.fixture(name="make_adapter")
def make_adapter_fixture():
    """Factory for extra ScriptedAdapters."""
    return ScriptedAdapter


@pytest.fixture(name="registry")
def registry_fixture(adapter) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register(adapter)
    return registry


@pytest.fixture(name="processor")
def processor_fixture(queue, registry, clock) -> QueueProcessor:
    return QueueProcessor(queue, registry, batch_size=5, concurrency=5,
                          dispatch_timeout=1.0, clock=clock)


def lead_request(ref: str = "lead-1", provider: str = "crm-a", **extra) -> Dict[str, Any]:
    payload = {"ref": ref, "firstName": "Ada", "lastName": "Lovelace",
               "company": "Analytical Engines", "phone": "+15550100",
               "email": "ada@example.com"}
    payload.update(extra)
    return {"kind": "lead", "action": "create_or_update", "provider": provider,
            "payload": payload, "correlation_keys": {"lead_id": ref}}


@pytest.fixture(name="lead")
def lead_fixture():
    """Factory for lead enqueue requests."""
    return lead_request
