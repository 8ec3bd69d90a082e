"""Enqueue and status routes."""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from crmsync.models.sync import (
    InvalidItem,
    SyncItemView,
    SyncKind,
    SyncStatus,
    SyncSummary,
)
from crmsync.queue.store import SyncFilter
from crmsync.service import CrmSyncService

router = APIRouter()


def get_sync_service(request: Request) -> CrmSyncService:
    return request.app.state.service


class EnqueueRequest(BaseModel):
    kind: str
    action: str = "create_or_update"
    provider: Optional[str] = None  # None → default provider
    payload: Optional[Dict[str, Any]] = None
    correlation_keys: Optional[Dict[str, Any]] = None


class BulkEnqueueRequest(BaseModel):
    provider: Optional[str] = None
    records: List[Dict[str, Any]]


class EnqueueResponse(BaseModel):
    id: str
    status: SyncStatus = SyncStatus.PENDING


class BulkEnqueueResponse(BaseModel):
    ids: List[str]
    status: SyncStatus = SyncStatus.PENDING


class ProviderInfo(BaseModel):
    id: str
    name: str
    configured: bool
    capabilities: List[str]


@router.post("/items", response_model=EnqueueResponse, status_code=202)
def enqueue_item(request: EnqueueRequest, service: CrmSyncService = Depends(get_sync_service)):
    """Queue one record for CRM sync. Returns immediately with status pending."""
    try:
        item_id = service.enqueue(
            request.kind,
            request.action,
            request.provider or service.default_provider,
            request.payload,
            request.correlation_keys,
        )
    except InvalidItem as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return EnqueueResponse(id=item_id)


@router.post("/items/bulk", response_model=BulkEnqueueResponse, status_code=202)
def enqueue_bulk(request: BulkEnqueueRequest, service: CrmSyncService = Depends(get_sync_service)):
    """Queue many records; if any record is invalid, none are queued."""
    try:
        ids = service.enqueue_bulk(request.records, provider=request.provider)
    except InvalidItem as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return BulkEnqueueResponse(ids=ids)


@router.get("/items/{item_id}", response_model=SyncItemView)
def get_item(item_id: str, service: CrmSyncService = Depends(get_sync_service)):
    view = service.get_status(item_id)
    if view is None:
        raise HTTPException(status_code=404, detail="Sync item not found")
    return view


@router.get("/items", response_model=List[SyncItemView])
def list_items(
    key: Optional[str] = None,
    key_name: Optional[str] = None,
    provider: Optional[str] = None,
    status: Optional[SyncStatus] = None,
    kind: Optional[SyncKind] = None,
    service: CrmSyncService = Depends(get_sync_service),
):
    """Items matching a correlation key (e.g. ?key=call-42) and/or other filters."""
    return service.list_items(SyncFilter(
        key_value=key, key_name=key_name, provider=provider, status=status, kind=kind,
    ))


@router.get("/summary", response_model=SyncSummary)
def summary(
    provider: Optional[str] = None,
    status: Optional[SyncStatus] = None,
    kind: Optional[SyncKind] = None,
    service: CrmSyncService = Depends(get_sync_service),
):
    return service.summary(SyncFilter(provider=provider, status=status, kind=kind))


@router.get("/providers", response_model=List[ProviderInfo])
def providers(service: CrmSyncService = Depends(get_sync_service)):
    return service.supported_providers()
