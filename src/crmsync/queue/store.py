"""
SyncQueue: the shared store of sync items and their lifecycle status.

Items live in a SQLModel table. The default engine is in-memory SQLite, so the
queue is memory-resident unless CRMSYNC_DATABASE_URL points at a file.

Every read and write goes through one re-entrant lock, so callers always see
whole records. claim() is the exclusion point for dispatch: it re-checks
eligibility and flips the item to in_flight inside the lock. Once claimed, an
item cannot be claimed again until the processor records an outcome.

Objects handed out are detached copies (expire_on_commit=False). Changing
them does not write through to the queue.
"""
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError
from sqlalchemy import func
from sqlmodel import Session, SQLModel, select

from crmsync.models.sync import (
    ELIGIBLE_STATUSES,
    InvalidItem,
    SyncItem,
    SyncItemKey,
    SyncKind,
    SyncRequest,
    SyncStatus,
    snapshot_payload,
)
from crmsync.queue.clock import SystemClock
from crmsync.queue.retry import RetryPolicies

logger = logging.getLogger(__name__)


class IllegalTransition(RuntimeError):
    """Raised when an outcome is recorded for an item that is not in flight."""


@dataclass
class SyncFilter:
    """Query filter. Unset fields match everything."""

    key_value: Optional[str] = None
    key_name: Optional[str] = None
    provider: Optional[str] = None
    status: Optional[SyncStatus] = None
    kind: Optional[SyncKind] = None


class SyncQueue:
    """Thread-safe container of SyncItems."""

    def __init__(self, engine, policies: Optional[RetryPolicies] = None, clock=None):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
            policies: Retry policies; max_attempts and delays gate eligibility.
            clock: Object with now() -> aware UTC datetime.
        """
        self.engine = engine
        self.policies = policies or RetryPolicies()
        self.clock = clock or SystemClock()
        self._lock = threading.RLock()
        SQLModel.metadata.create_all(
            engine, tables=[SyncItem.__table__, SyncItemKey.__table__]
        )
        with self._session() as s:
            self._seq = s.exec(select(func.max(SyncItem.seq))).one() or 0

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    # ── Enqueue ───────────────────────────────────────────────────────────────

    def enqueue(self, request: Union[SyncRequest, Mapping[str, Any]]) -> str:
        """
        Validate and store one item.

        Returns:
            The new item id.

        Raises:
            InvalidItem: missing provider/kind/payload, bad enum value, or a
                payload that cannot be snapshotted.
        """
        return self.enqueue_bulk([request])[0]

    def enqueue_bulk(self, requests: Iterable[Union[SyncRequest, Mapping[str, Any]]]) -> List[str]:
        """Validate every request first, then store all of them in order."""
        prepared = []
        for index, request in enumerate(requests):
            req = _validate(request, index)
            try:
                payload_json = snapshot_payload(req.payload)
            except (TypeError, ValueError) as exc:
                raise InvalidItem(f"item {index}: payload is not serializable: {exc}") from exc
            prepared.append((req, payload_json))

        now = self.clock.now()
        ids = []
        with self._lock, self._session() as s:
            for req, payload_json in prepared:
                self._seq += 1
                item = SyncItem(
                    id=uuid.uuid4().hex,
                    seq=self._seq,
                    kind=req.kind,
                    action=req.action,
                    provider=req.provider,
                    payload_json=payload_json,
                    status=SyncStatus.PENDING,
                    attempts=0,
                    created_at=now,
                )
                item.keys = [
                    SyncItemKey(item_id=item.id, name=name, value=value)
                    for name, value in req.correlation_keys.items()
                ]
                s.add(item)
                ids.append(item.id)
            s.commit()

        for (req, _), item_id in zip(prepared, ids):
            logger.info(
                "Queued %s %s for %s as %s", req.kind.value, req.action.value,
                req.provider, item_id,
            )
        return ids

    # ── Reads ─────────────────────────────────────────────────────────────────

    def get(self, item_id: str) -> Optional[SyncItem]:
        with self._lock, self._session() as s:
            return s.get(SyncItem, item_id)

    def list_eligible(self, max_batch: int, now: Optional[datetime] = None) -> List[SyncItem]:
        """Oldest-first items that may be dispatched right now, at most max_batch."""
        if max_batch <= 0:
            return []
        now = now or self.clock.now()
        with self._lock, self._session() as s:
            candidates = s.exec(
                select(SyncItem)
                .where(SyncItem.status.in_(ELIGIBLE_STATUSES))
                .order_by(SyncItem.seq)
            ).all()
            eligible = []
            for item in candidates:
                if self._is_eligible(item, now):
                    eligible.append(item)
                    if len(eligible) >= max_batch:
                        break
            return eligible

    def query(self, flt: Optional[SyncFilter] = None) -> List[SyncItem]:
        with self._lock, self._session() as s:
            stmt = select(SyncItem).order_by(SyncItem.seq)
            for cond in _conditions(flt):
                stmt = stmt.where(cond)
            return list(s.exec(stmt).all())

    def count_by_status(self, flt: Optional[SyncFilter] = None) -> Dict[SyncStatus, int]:
        with self._lock, self._session() as s:
            stmt = select(SyncItem.status, func.count(SyncItem.id)).group_by(SyncItem.status)
            for cond in _conditions(flt):
                stmt = stmt.where(cond)
            return {SyncStatus(status): count for status, count in s.exec(stmt).all()}

    # ── Processor-side mutation ───────────────────────────────────────────────

    def claim(self, item_id: str, now: Optional[datetime] = None) -> Optional[SyncItem]:
        """
        Mark an eligible item in_flight, bump attempts and stamp last_attempt_at.

        Returns:
            The claimed item, or None if it is gone or no longer eligible
            (e.g. another worker claimed it first).
        """
        now = now or self.clock.now()
        with self._lock, self._session() as s:
            item = s.get(SyncItem, item_id)
            if item is None or not self._is_eligible(item, now):
                return None
            item.status = SyncStatus.IN_FLIGHT
            item.attempts += 1
            item.last_attempt_at = now
            item.next_attempt_at = None
            s.add(item)
            s.commit()
            return item

    def mark_completed(self, item_id: str, remote_id: str, now: Optional[datetime] = None) -> SyncItem:
        now = now or self.clock.now()
        with self._lock, self._session() as s:
            item = self._in_flight(s, item_id)
            item.status = SyncStatus.COMPLETED
            item.remote_id = str(remote_id)
            item.completed_at = now
            s.add(item)
            s.commit()
            return item

    def mark_failed(
        self,
        item_id: str,
        status: SyncStatus,
        error: str,
        next_attempt_at: Optional[datetime] = None,
    ) -> SyncItem:
        if status not in (SyncStatus.FAILED_RETRYABLE, SyncStatus.FAILED_TERMINAL):
            raise IllegalTransition(f"{status.value} is not a failure status")
        with self._lock, self._session() as s:
            item = self._in_flight(s, item_id)
            item.status = status
            item.last_error = error
            item.next_attempt_at = next_attempt_at if status == SyncStatus.FAILED_RETRYABLE else None
            s.add(item)
            s.commit()
            return item

    def release_stale_claims(self, lease: timedelta, now: Optional[datetime] = None) -> int:
        """
        Return items stuck in_flight longer than `lease` to the retry path.

        Only matters when the queue outlives the process that claimed them
        (file-backed database). Items already at max_attempts become terminal.
        """
        now = now or self.clock.now()
        released = 0
        with self._lock, self._session() as s:
            stale = s.exec(
                select(SyncItem).where(
                    SyncItem.status == SyncStatus.IN_FLIGHT,
                    SyncItem.last_attempt_at < now - lease,
                )
            ).all()
            for item in stale:
                policy = self.policies.for_provider(item.provider)
                item.status = (
                    SyncStatus.FAILED_RETRYABLE
                    if item.attempts < policy.max_attempts
                    else SyncStatus.FAILED_TERMINAL
                )
                item.last_error = "claim lease expired"
                s.add(item)
                released += 1
            s.commit()
        if released:
            logger.warning("Released %d stale in-flight claims", released)
        return released

    # ── Removal ───────────────────────────────────────────────────────────────

    def remove(self, item_ids: Iterable[str]) -> int:
        ids = list(item_ids)
        if not ids:
            return 0
        with self._lock, self._session() as s:
            items = s.exec(select(SyncItem).where(SyncItem.id.in_(ids))).all()
            for item in items:
                s.delete(item)
            s.commit()
            return len(items)

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _is_eligible(self, item: SyncItem, now: datetime) -> bool:
        if item.status not in ELIGIBLE_STATUSES:
            return False
        if item.attempts >= self.policies.for_provider(item.provider).max_attempts:
            return False
        return item.next_attempt_at is None or item.next_attempt_at <= now

    @staticmethod
    def _in_flight(s: Session, item_id: str) -> SyncItem:
        item = s.get(SyncItem, item_id)
        if item is None:
            raise IllegalTransition(f"sync item {item_id} does not exist")
        if item.status != SyncStatus.IN_FLIGHT:
            raise IllegalTransition(
                f"sync item {item_id} is {item.status.value}, not in_flight"
            )
        return item


def _validate(request, index: int) -> SyncRequest:
    if isinstance(request, SyncRequest):
        return request
    if not isinstance(request, Mapping):
        raise InvalidItem(f"item {index}: expected a mapping, got {type(request).__name__}")
    try:
        return SyncRequest.model_validate(dict(request))
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise InvalidItem(f"item {index}: invalid or missing {fields}") from exc


def _conditions(flt: Optional[SyncFilter]) -> list:
    if flt is None:
        return []
    conds = []
    if flt.key_value is not None:
        keys = select(SyncItemKey.item_id).where(SyncItemKey.value == flt.key_value)
        if flt.key_name is not None:
            keys = keys.where(SyncItemKey.name == flt.key_name)
        conds.append(SyncItem.id.in_(keys))
    if flt.provider is not None:
        conds.append(SyncItem.provider == flt.provider)
    if flt.status is not None:
        conds.append(SyncItem.status == flt.status)
    if flt.kind is not None:
        conds.append(SyncItem.kind == flt.kind)
    return conds
