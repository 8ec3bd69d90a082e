"""
QueueProcessor: claims eligible items each tick and dispatches them to their
provider adapters with bounded parallelism.

Per tick:
  1. Work out free worker slots (concurrency minus dispatches still running).
  2. list_eligible(min(batch_size, free slots)), oldest first.
  3. claim() each one (in_flight, attempts += 1) and start a dispatch task.
  4. Return without waiting. A later tick picks up whatever did not fit.

Per dispatch:
  authenticate → map_payload → send, all under one timeout. The outcome goes
  through the provider's RetryPolicy and is written back to the queue.
  Dispatch failures are logged and recorded on the item, never raised.

A dispatch that times out counts as transient. The remote side may still have
applied the write, so delivery is at-least-once and providers are expected
to upsert idempotently.
"""
import asyncio
import logging
from datetime import timedelta
from typing import List, Optional, Set

from crmsync.models.sync import SyncItem, SyncStatus
from crmsync.providers.registry import ProviderRegistry
from crmsync.queue.clock import SystemClock
from crmsync.queue.retry import Outcome, RetryPolicies, classify_exception
from crmsync.queue.store import IllegalTransition, SyncQueue

logger = logging.getLogger(__name__)


class QueueProcessor:
    """Drains a SyncQueue through a ProviderRegistry."""

    def __init__(
        self,
        queue: SyncQueue,
        registry: ProviderRegistry,
        policies: Optional[RetryPolicies] = None,
        *,
        batch_size: int = 5,
        concurrency: int = 5,
        dispatch_timeout: float = 30.0,
        clock=None,
    ):
        """
        Args:
            queue: The shared SyncQueue.
            registry: Provider id → adapter.
            policies: Retry policies; defaults to the queue's own.
            batch_size: Most items claimed per tick.
            concurrency: Most dispatches running at once.
            dispatch_timeout: Seconds allowed for authenticate + send.
            clock: Object with now(); defaults to the queue's clock.
        """
        if batch_size < 1 or concurrency < 1:
            raise ValueError("batch_size and concurrency must be >= 1")
        self.queue = queue
        self.registry = registry
        self.policies = policies or queue.policies
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.dispatch_timeout = dispatch_timeout
        self.clock = clock or queue.clock or SystemClock()
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings, queue: SyncQueue, registry: ProviderRegistry) -> "QueueProcessor":
        return cls(
            queue,
            registry,
            batch_size=settings.sync_batch_size,
            concurrency=settings.sync_concurrency,
            dispatch_timeout=settings.dispatch_timeout_seconds,
        )

    @property
    def active(self) -> int:
        """Dispatches currently running."""
        return len(self._tasks)

    def start(self, claim_lease: timedelta = timedelta(minutes=5)) -> int:
        """Recover items a previous process left in_flight. Returns how many."""
        return self.queue.release_stale_claims(claim_lease, now=self.clock.now())

    # ── Tick ──────────────────────────────────────────────────────────────────

    async def tick(self) -> List[str]:
        """
        Claim and start dispatches for as many eligible items as fit.

        Returns:
            Ids of the items claimed this tick.
        """
        free = self.concurrency - len(self._tasks)
        limit = min(self.batch_size, free)
        if limit <= 0:
            logger.debug("Worker pool saturated (%d running); skipping tick", len(self._tasks))
            return []

        now = self.clock.now()
        claimed = []
        for candidate in self.queue.list_eligible(limit, now=now):
            item = self.queue.claim(candidate.id, now=now)
            if item is None:
                continue
            task = asyncio.create_task(self.dispatch(item), name=f"sync-{item.id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            claimed.append(item.id)

        if claimed:
            logger.info("Dispatching %d sync items", len(claimed))
        return claimed

    async def wait_idle(self) -> None:
        """Wait until every running dispatch has recorded its outcome."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run_once(self) -> List[str]:
        """One tick, then wait for its dispatches."""
        claimed = await self.tick()
        await self.wait_idle()
        return claimed

    async def drain(self, max_ticks: int = 100) -> int:
        """Tick until nothing is eligible (or max_ticks). Returns dispatch count."""
        dispatched = 0
        for _ in range(max_ticks):
            claimed = await self.run_once()
            if not claimed:
                break
            dispatched += len(claimed)
        return dispatched

    async def shutdown(self) -> None:
        await self.wait_idle()

    # ── Dispatch ──────────────────────────────────────────────────────────────

    async def dispatch(self, item: SyncItem) -> Optional[SyncItem]:
        """
        Run one claimed item through its adapter and record the outcome.

        The item must already be in_flight (see SyncQueue.claim). Returns the
        updated item, or None if the outcome could not be recorded.
        """
        logger.info(
            "Processing sync item %s → %s (attempt %d)", item.id, item.provider, item.attempts
        )
        remote_id = None
        try:
            remote_id = await asyncio.wait_for(self._call_adapter(item), self.dispatch_timeout)
        except asyncio.TimeoutError:
            outcome, error = Outcome.TRANSIENT, f"dispatch timed out after {self.dispatch_timeout}s"
        except Exception as exc:
            outcome, error = classify_exception(exc), str(exc) or type(exc).__name__
        else:
            outcome, error = Outcome.SUCCESS, None

        try:
            if outcome == Outcome.SUCCESS:
                done = self.queue.mark_completed(item.id, remote_id, now=self.clock.now())
                logger.info("Synced item %s to %s as %s", item.id, item.provider, remote_id)
                return done
            return self._record_failure(item, outcome, error)
        except IllegalTransition as exc:
            # removed or released while the dispatch was running
            logger.warning("Dropping outcome for sync item %s: %s", item.id, exc)
        except Exception:
            logger.exception("Could not record outcome for sync item %s", item.id)
        return None

    async def _call_adapter(self, item: SyncItem) -> str:
        adapter = self.registry.get(item.provider)
        await adapter.authenticate()
        request = adapter.map_payload(item.kind, item.payload, item.action)
        return await adapter.send(request)

    def _record_failure(self, item: SyncItem, outcome: Outcome, error: str) -> SyncItem:
        policy = self.policies.for_provider(item.provider)
        decision = policy.decide(item.attempts, outcome)
        next_at = None
        if decision.status == SyncStatus.FAILED_RETRYABLE:
            next_at = policy.next_eligible_at(item.last_attempt_at or self.clock.now(), item.attempts)
            logger.warning(
                "Sync item %s failed (%s, attempt %d/%d), will retry: %s",
                item.id, outcome.value, item.attempts, policy.max_attempts, error,
            )
        else:
            logger.error(
                "Sync item %s permanently failed after %d attempt(s) (%s): %s",
                item.id, item.attempts, outcome.value, error,
            )
        return self.queue.mark_failed(item.id, decision.status, error, next_attempt_at=next_at)
