"""Reclaimer: evicts terminal sync items older than the retention window."""
import logging
from datetime import timedelta

from crmsync.models.sync import SyncStatus
from crmsync.queue.store import SyncFilter, SyncQueue

logger = logging.getLogger(__name__)


class Reclaimer:
    """
    Removes completed items by completed_at and failed_terminal items by
    last_attempt_at. pending, in_flight and failed_retryable items are never
    touched, however old. Removal is permanent; later lookups return None.
    """

    def __init__(self, queue: SyncQueue, retention: timedelta = timedelta(hours=24), clock=None):
        self.queue = queue
        self.retention = retention
        self.clock = clock or queue.clock

    def sweep(self) -> int:
        """Remove expired terminal items. Returns how many were removed."""
        cutoff = self.clock.now() - self.retention
        expired = [
            item.id
            for item in self.queue.query(SyncFilter(status=SyncStatus.COMPLETED))
            if item.completed_at is not None and item.completed_at < cutoff
        ]
        expired += [
            item.id
            for item in self.queue.query(SyncFilter(status=SyncStatus.FAILED_TERMINAL))
            if item.last_attempt_at is not None and item.last_attempt_at < cutoff
        ]
        removed = self.queue.remove(expired)
        if removed:
            logger.info("Cleaned up %d old sync items", removed)
        return removed
