"""Sync queue models: queued items, their correlation keys, and read views."""
import json
from collections.abc import Mapping
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator
from sqlalchemy import Column, DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, Relationship, SQLModel


class SyncKind(str, Enum):
    CALL_LOG = "call_log"
    LEAD = "lead"
    OPPORTUNITY = "opportunity"


class SyncAction(str, Enum):
    CREATE_OR_UPDATE = "create_or_update"
    DELETE = "delete"


class SyncStatus(str, Enum):
    """
    Item lifecycle.

        pending ──claim──> in_flight ──ok──────────> completed
                                      ──transient──> failed_retryable | failed_terminal
                                      ──permanent──> failed_terminal
        failed_retryable ──claim──> in_flight ...
    """

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    COMPLETED = "completed"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"


TERMINAL_STATUSES = (SyncStatus.COMPLETED, SyncStatus.FAILED_TERMINAL)
ELIGIBLE_STATUSES = (SyncStatus.PENDING, SyncStatus.FAILED_RETRYABLE)


class InvalidItem(ValueError):
    """Raised when an enqueue request is structurally invalid."""


def _json_default(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def snapshot_payload(payload: Dict[str, Any]) -> str:
    """Serialize a payload so later mutation of the source record has no effect."""
    return json.dumps(payload, default=_json_default, sort_keys=True)


class UTCDateTime(TypeDecorator):
    """
    DateTime column that stores UTC and always reads back aware UTC values.
    SQLite keeps no offset, so values are normalized on the way in and out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return _as_utc(value)

    def process_result_value(self, value, dialect):
        return _as_utc(value)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SyncRequest(BaseModel):
    """Inbound enqueue request, validated before anything is stored."""

    kind: SyncKind
    action: SyncAction = SyncAction.CREATE_OR_UPDATE
    provider: str
    payload: Dict[str, Any]
    correlation_keys: Dict[str, str] = {}

    @field_validator("kind", "action", mode="before")
    @classmethod
    def _accept_hyphens(cls, v):
        if isinstance(v, str):
            return v.strip().lower().replace("-", "_")
        return v

    @field_validator("provider")
    @classmethod
    def _provider_not_blank(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("provider is required")
        return v

    @field_validator("payload")
    @classmethod
    def _payload_not_empty(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        if not v:
            raise ValueError("payload is required")
        return v

    @field_validator("correlation_keys", mode="before")
    @classmethod
    def _stringify_keys(cls, v):
        if v is None:
            return {}
        if not isinstance(v, Mapping):
            raise ValueError("correlation_keys must be a mapping")
        return {str(k): str(val) for k, val in v.items() if val is not None}


class SyncItem(SQLModel, table=True):
    """One unit of outbound work targeting a single CRM provider."""

    id: str = Field(primary_key=True)
    seq: int = Field(index=True)  # enqueue order
    kind: SyncKind
    action: SyncAction = SyncAction.CREATE_OR_UPDATE
    provider: str = Field(index=True)
    payload_json: str
    status: SyncStatus = Field(default=SyncStatus.PENDING, index=True)
    attempts: int = 0
    last_error: Optional[str] = None
    remote_id: Optional[str] = None

    created_at: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False))
    last_attempt_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime()))
    # earliest retry, None = next tick
    next_attempt_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime()))
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime()))

    keys: List["SyncItemKey"] = Relationship(
        back_populates="item",
        sa_relationship_kwargs={"lazy": "selectin", "cascade": "all, delete-orphan"},
    )

    @property
    def payload(self) -> Dict[str, Any]:
        return json.loads(self.payload_json)

    @property
    def correlation_keys(self) -> Dict[str, str]:
        return {k.name: k.value for k in self.keys}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class SyncItemKey(SQLModel, table=True):
    """Foreign reference (call id, lead id, ...) used only for status lookups."""

    id: Optional[int] = Field(default=None, primary_key=True)
    item_id: str = Field(foreign_key="syncitem.id", index=True)
    name: str
    value: str = Field(index=True)

    item: Optional[SyncItem] = Relationship(back_populates="keys")


class SyncItemView(BaseModel):
    """Read-only projection of a SyncItem returned by status queries."""

    id: str
    kind: SyncKind
    action: SyncAction
    provider: str
    status: SyncStatus
    attempts: int
    last_error: Optional[str] = None
    remote_id: Optional[str] = None
    correlation_keys: Dict[str, str] = {}
    created_at: datetime
    last_attempt_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_item(cls, item: SyncItem) -> "SyncItemView":
        return cls(
            id=item.id,
            kind=item.kind,
            action=item.action,
            provider=item.provider,
            status=item.status,
            attempts=item.attempts,
            last_error=item.last_error,
            remote_id=item.remote_id,
            correlation_keys=item.correlation_keys,
            created_at=item.created_at,
            last_attempt_at=item.last_attempt_at,
            completed_at=item.completed_at,
        )


class SyncSummary(BaseModel):
    total: int = 0
    pending: int = 0
    in_flight: int = 0
    completed: int = 0
    failed_retryable: int = 0
    failed_terminal: int = 0
