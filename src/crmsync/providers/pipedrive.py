"""Pipedrive adapter: v1 REST API authenticated with an api_token query param."""
from typing import Any, Dict, Optional

from crmsync.models.sync import SyncKind
from crmsync.providers.base import AccessToken, ProviderAdapter, ProviderRequest
from crmsync.providers.mapping import (
    call_description,
    call_subject,
    drop_none,
    full_name,
    iso_date,
    minutes_seconds,
)


class PipedriveAdapter(ProviderAdapter):
    id = "pipedrive"
    name = "Pipedrive"
    supported_kinds = frozenset({SyncKind.CALL_LOG, SyncKind.LEAD, SyncKind.OPPORTUNITY})
    extra_capabilities = ("deals", "organizations", "activities")

    def __init__(self, base_url: str = "", api_token: str = "", http=None):
        super().__init__(http)
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token

    def is_configured(self) -> bool:
        return bool(self.api_token and self.base_url)

    def _url(self, path: str, token: Optional[AccessToken]) -> str:
        return f"{self.base_url}{path}"

    def _auth_params(self, token: Optional[AccessToken]) -> Dict[str, str]:
        return {"api_token": self.api_token}

    def _extract_id(self, data: Dict[str, Any]) -> Any:
        # {"success": true, "data": {"id": 123, ...}}
        return (data.get("data") or {}).get("id")

    def _map(self, kind: SyncKind, payload: Dict[str, Any]) -> ProviderRequest:
        if kind == SyncKind.CALL_LOG:
            endpoint = "/v1/activities"
            fields = {
                "subject": call_subject(payload),
                "type": "call",
                "due_date": iso_date(payload.get("initiatedAt")),
                "duration": minutes_seconds(payload.get("duration")),
                "note": call_description(payload),
                "person_id": payload.get("leadId"),
            }
        elif kind == SyncKind.LEAD:
            endpoint = "/v1/persons"
            fields = {
                "name": full_name(payload),
                "phone": [{"value": payload["phone"], "primary": True}] if payload.get("phone") else None,
                "email": [{"value": payload["email"], "primary": True}] if payload.get("email") else None,
                "org_name": payload.get("company"),
            }
        else:
            endpoint = "/v1/deals"
            fields = {
                "title": payload.get("name"),
                "value": payload.get("amount"),
                "currency": payload.get("currency"),
                "expected_close_date": iso_date(payload.get("closeDate")),
                "person_id": payload.get("leadId"),
            }
        return ProviderRequest(method="POST", path=endpoint, json=drop_none(fields))
