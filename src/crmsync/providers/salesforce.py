"""Salesforce adapter: OAuth password grant, then sObject REST inserts."""
from typing import Any, Dict, Optional

from crmsync.models.sync import SyncKind
from crmsync.providers.base import AccessToken, ProviderAdapter, ProviderRequest, expires_in
from crmsync.providers.errors import AuthError, PermanentError
from crmsync.providers.mapping import (
    call_description,
    call_subject,
    drop_none,
    iso_date,
)

API_VERSION = "v52.0"


class SalesforceAdapter(ProviderAdapter):
    id = "salesforce"
    name = "Salesforce"
    supported_kinds = frozenset({SyncKind.CALL_LOG, SyncKind.LEAD, SyncKind.OPPORTUNITY})
    extra_capabilities = ("opportunities", "accounts", "campaigns")

    def __init__(
        self,
        base_url: str = "",
        client_id: str = "",
        client_secret: str = "",
        username: str = "",
        password: str = "",
        security_token: str = "",
        http=None,
    ):
        super().__init__(http)
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.username = username
        self.password = password
        self.security_token = security_token

    def is_configured(self) -> bool:
        return bool(
            self.base_url and self.client_id and self.client_secret
            and self.username and self.password
        )

    async def _fetch_token(self) -> Optional[AccessToken]:
        try:
            data = await self._request(
                "POST",
                f"{self.base_url}/services/oauth2/token",
                data={
                    "grant_type": "password",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "username": self.username,
                    "password": self.password + self.security_token,
                },
            )
        except PermanentError as exc:
            # invalid_grant comes back as a 400, not a 401
            raise AuthError(str(exc)) from exc
        if not data.get("access_token"):
            raise AuthError("Salesforce token response had no access_token")
        return AccessToken(
            value=data["access_token"],
            instance_url=(data.get("instance_url") or self.base_url).rstrip("/"),
            expires_at=expires_in(data.get("expires_in")),
        )

    def _url(self, path: str, token: Optional[AccessToken]) -> str:
        instance = token.instance_url if token and token.instance_url else self.base_url
        return f"{instance}{path}"

    def _auth_headers(self, token: Optional[AccessToken]) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token.value}"} if token else {}

    def _map(self, kind: SyncKind, payload: Dict[str, Any]) -> ProviderRequest:
        if kind == SyncKind.CALL_LOG:
            obj = "Task"
            fields = {
                "Subject": call_subject(payload),
                "Description": call_description(payload),
                "ActivityDate": iso_date(payload.get("initiatedAt")),
                "Status": "Completed" if payload.get("outcome") == "connected" else "Not Started",
                "Priority": payload.get("priority") or "Normal",
                "Type": "Call",
                "WhoId": payload.get("leadId"),
                "CallDurationInSeconds": payload.get("duration"),
            }
        elif kind == SyncKind.LEAD:
            obj = "Lead"
            fields = {
                "FirstName": payload.get("firstName"),
                "LastName": payload.get("lastName"),
                "Company": payload.get("company"),
                "Phone": payload.get("phone"),
                "Email": payload.get("email"),
                "Status": payload.get("status") or "Open - Not Contacted",
            }
        else:
            obj = "Opportunity"
            fields = {
                "Name": payload.get("name"),
                "Amount": payload.get("amount"),
                "StageName": payload.get("stage") or "Prospecting",
                "CloseDate": iso_date(payload.get("closeDate")),
                "Description": payload.get("description"),
            }
        return ProviderRequest(
            method="POST",
            path=f"/services/data/{API_VERSION}/sobjects/{obj}",
            json=drop_none(fields),
        )
