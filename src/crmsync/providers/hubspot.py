"""HubSpot adapter: CRM v3 objects API with a private-app token or legacy API key."""
from typing import Any, Dict, Optional

from crmsync.models.sync import SyncKind
from crmsync.providers.base import AccessToken, ProviderAdapter, ProviderRequest
from crmsync.providers.mapping import (
    call_description,
    call_subject,
    drop_none,
    epoch_millis,
    iso_datetime,
)


class HubSpotAdapter(ProviderAdapter):
    id = "hubspot"
    name = "HubSpot"
    supported_kinds = frozenset({SyncKind.CALL_LOG, SyncKind.LEAD, SyncKind.OPPORTUNITY})
    extra_capabilities = ("deals", "companies", "workflows")

    def __init__(self, base_url: str = "https://api.hubapi.com", api_key: str = "",
                 access_token: str = "", http=None):
        super().__init__(http)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token

    def is_configured(self) -> bool:
        return bool(self.api_key or self.access_token)

    def _url(self, path: str, token: Optional[AccessToken]) -> str:
        return f"{self.base_url}{path}"

    def _auth_headers(self, token: Optional[AccessToken]) -> Dict[str, str]:
        if self.access_token:
            return {"Authorization": f"Bearer {self.access_token}"}
        return {}

    def _auth_params(self, token: Optional[AccessToken]) -> Dict[str, str]:
        if not self.access_token and self.api_key:
            return {"hapikey": self.api_key}
        return {}

    def _map(self, kind: SyncKind, payload: Dict[str, Any]) -> ProviderRequest:
        if kind == SyncKind.CALL_LOG:
            endpoint = "/crm/v3/objects/calls"
            duration = payload.get("duration")
            properties = {
                "hs_call_title": call_subject(payload),
                "hs_call_body": call_description(payload),
                "hs_call_duration": int(duration) * 1000 if duration is not None else None,
                "hs_call_from_number": payload.get("phoneNumber"),
                "hs_call_disposition": payload.get("disposition"),
                "hs_call_status": payload.get("status"),
                "hs_timestamp": epoch_millis(payload.get("initiatedAt")),
            }
        elif kind == SyncKind.LEAD:
            endpoint = "/crm/v3/objects/contacts"
            properties = {
                "firstname": payload.get("firstName"),
                "lastname": payload.get("lastName"),
                "company": payload.get("company"),
                "phone": payload.get("phone"),
                "email": payload.get("email"),
                "lifecyclestage": "lead",
            }
        else:
            endpoint = "/crm/v3/objects/deals"
            amount = payload.get("amount")
            properties = {
                "dealname": payload.get("name"),
                "amount": str(amount) if amount is not None else None,
                "dealstage": payload.get("stage") or "appointmentscheduled",
                "closedate": iso_datetime(payload.get("closeDate")),
                "description": payload.get("description"),
            }
        return ProviderRequest(
            method="POST", path=endpoint, json={"properties": drop_none(properties)}
        )
