"""Read-only status queries over the sync queue."""
from typing import List, Optional

from crmsync.models.sync import SyncItemView, SyncStatus, SyncSummary
from crmsync.queue.store import SyncFilter, SyncQueue


class StatusReporter:
    """
    Status lookups for integrators.

    Unknown and reclaimed ids come back as None rather than an error. Each
    call reads under the queue lock, so it never sees a half-written item.
    """

    def __init__(self, queue: SyncQueue):
        self.queue = queue

    def status_of(self, item_id: str) -> Optional[SyncItemView]:
        item = self.queue.get(item_id)
        return SyncItemView.from_item(item) if item is not None else None

    def status_by_correlation_key(self, value: str, name: Optional[str] = None) -> List[SyncItemView]:
        items = self.queue.query(SyncFilter(key_value=str(value), key_name=name))
        return [SyncItemView.from_item(item) for item in items]

    def list(self, flt: Optional[SyncFilter] = None) -> List[SyncItemView]:
        return [SyncItemView.from_item(item) for item in self.queue.query(flt)]

    def summary(self, flt: Optional[SyncFilter] = None) -> SyncSummary:
        counts = self.queue.count_by_status(flt)
        return SyncSummary(
            total=sum(counts.values()),
            pending=counts.get(SyncStatus.PENDING, 0),
            in_flight=counts.get(SyncStatus.IN_FLIGHT, 0),
            completed=counts.get(SyncStatus.COMPLETED, 0),
            failed_retryable=counts.get(SyncStatus.FAILED_RETRYABLE, 0),
            failed_terminal=counts.get(SyncStatus.FAILED_TERMINAL, 0),
        )
