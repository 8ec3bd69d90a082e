"""Zoho CRM adapter: refresh-token grant, then v2 module record inserts."""
from typing import Any, Dict, Optional

from crmsync.models.sync import SyncKind
from crmsync.providers.base import AccessToken, ProviderAdapter, ProviderRequest, expires_in
from crmsync.providers.errors import AuthError, PermanentError
from crmsync.providers.mapping import (
    call_description,
    call_subject,
    drop_none,
    iso_date,
    iso_datetime,
    minutes_seconds,
)


class ZohoAdapter(ProviderAdapter):
    id = "zoho"
    name = "Zoho CRM"
    supported_kinds = frozenset({SyncKind.CALL_LOG, SyncKind.LEAD, SyncKind.OPPORTUNITY})
    extra_capabilities = ("potentials", "accounts", "campaigns")

    def __init__(
        self,
        base_url: str = "https://www.zohoapis.com/crm/v2",
        accounts_url: str = "https://accounts.zoho.com",
        client_id: str = "",
        client_secret: str = "",
        refresh_token: str = "",
        http=None,
    ):
        super().__init__(http)
        self.base_url = base_url.rstrip("/")
        self.accounts_url = accounts_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token)

    async def _fetch_token(self) -> Optional[AccessToken]:
        try:
            data = await self._request(
                "POST",
                f"{self.accounts_url}/oauth/v2/token",
                params={
                    "refresh_token": self.refresh_token,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "refresh_token",
                },
            )
        except PermanentError as exc:
            raise AuthError(str(exc)) from exc
        # Zoho reports a revoked refresh token as 200 {"error": "invalid_code"}
        if not data.get("access_token"):
            raise AuthError(f"Zoho token refresh failed: {data.get('error', 'no access_token')}")
        return AccessToken(value=data["access_token"], expires_at=expires_in(data.get("expires_in")))

    def _url(self, path: str, token: Optional[AccessToken]) -> str:
        return f"{self.base_url}{path}"

    def _auth_headers(self, token: Optional[AccessToken]) -> Dict[str, str]:
        return {"Authorization": f"Zoho-oauthtoken {token.value}"} if token else {}

    def _extract_id(self, data: Dict[str, Any]) -> Any:
        rows = data.get("data") or []
        if not rows:
            return None
        row = rows[0]
        if row.get("status") == "error":
            raise PermanentError(f"Zoho rejected record: {row.get('message') or row.get('code')}")
        return (row.get("details") or {}).get("id")

    def _map(self, kind: SyncKind, payload: Dict[str, Any]) -> ProviderRequest:
        if kind == SyncKind.CALL_LOG:
            module = "Calls"
            record = {
                "Subject": call_subject(payload),
                "Call_Start_Time": iso_datetime(payload.get("initiatedAt")),
                "Call_Duration": minutes_seconds(payload.get("duration")),
                "Description": call_description(payload),
                "Call_Result": payload.get("outcome"),
                "Who_Id": payload.get("leadId"),
            }
        elif kind == SyncKind.LEAD:
            module = "Leads"
            record = {
                "First_Name": payload.get("firstName"),
                "Last_Name": payload.get("lastName"),
                "Company": payload.get("company"),
                "Phone": payload.get("phone"),
                "Email": payload.get("email"),
                "Lead_Status": "Not Contacted",
            }
        else:
            module = "Deals"
            record = {
                "Deal_Name": payload.get("name"),
                "Amount": payload.get("amount"),
                "Stage": payload.get("stage") or "Qualification",
                "Closing_Date": iso_date(payload.get("closeDate")),
                "Description": payload.get("description"),
            }
        return ProviderRequest(method="POST", path=f"/{module}", json={"data": [drop_none(record)]})
