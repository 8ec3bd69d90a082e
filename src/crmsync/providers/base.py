"""
ProviderAdapter: the contract every CRM integration implements.

The queue processor only ever calls three things on an adapter:

    await adapter.authenticate()                 # obtain / refresh credentials
    request = adapter.map_payload(kind, payload) # pure, no I/O
    remote_id = await adapter.send(request)      # one remote call

Adapters never touch the SyncItem. They report failure by raising one of the
types in crmsync.providers.errors; the processor owns all status changes.

One adapter instance is shared by every concurrent dispatch for its provider.
Token fetches are serialized on the adapter, and each send uses the token it
started with. A cached token the provider rejects is refreshed once and the
request resent; only a rejection of the refreshed token is an AuthError.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

import httpx

from crmsync.models.sync import SyncAction, SyncKind
from crmsync.providers.errors import (
    AuthError,
    PermanentError,
    TransientError,
    UnsupportedKind,
)
from crmsync.queue.retry import Outcome, classify_status_code

logger = logging.getLogger(__name__)

COMMON_CAPABILITIES = ("call_logs", "leads", "contacts")


@dataclass
class ProviderRequest:
    """Provider wire request produced by map_payload()."""

    method: str
    path: str
    json: Dict[str, Any]
    params: Dict[str, str] = field(default_factory=dict)


@dataclass
class AccessToken:
    value: str
    expires_at: Optional[datetime] = None
    instance_url: Optional[str] = None

    def is_valid(self) -> bool:
        if self.expires_at is None:
            return True
        return datetime.now(timezone.utc) < self.expires_at


class ProviderAdapter(ABC):
    """Base class for CRM adapters. Subclasses set id/name and the hooks below."""

    id: str = ""
    name: str = ""
    supported_kinds: FrozenSet[SyncKind] = frozenset()
    extra_capabilities: Tuple[str, ...] = ()

    def __init__(self, http: Optional[httpx.AsyncClient] = None):
        """
        Args:
            http: Shared httpx.AsyncClient. Tests pass one built on
                  httpx.MockTransport.
        """
        self._http = http or httpx.AsyncClient()
        self._token: Optional[AccessToken] = None
        self._auth_lock = asyncio.Lock()

    # ── Contract ──────────────────────────────────────────────────────────────

    @abstractmethod
    def is_configured(self) -> bool:
        """True if enough credentials are present to attempt authentication."""

    async def authenticate(self) -> Optional[AccessToken]:
        """
        Make sure usable credentials are held.

        Returns:
            The current token, or None for adapters with static credentials.

        Raises:
            AuthError: credentials missing, or rejected by the provider.
        """
        if not self.is_configured():
            raise AuthError(f"{self.name or self.id} is not configured")
        async with self._auth_lock:
            if self._token is None or not self._token.is_valid():
                self._token = await self._fetch_token()
            return self._token

    def map_payload(self, kind: SyncKind, payload: Dict[str, Any],
                    action: SyncAction = SyncAction.CREATE_OR_UPDATE) -> ProviderRequest:
        """
        Translate a generic payload into this provider's wire request.

        Raises:
            UnsupportedKind: no mapping for this kind or action.
            PermanentError: a field value that cannot be mapped (bad date,
                non-numeric duration, ...). The same payload would fail the
                same way on every attempt.
        """
        kind = SyncKind(kind)
        if kind not in self.supported_kinds or action != SyncAction.CREATE_OR_UPDATE:
            raise UnsupportedKind(
                f"{self.name or self.id} cannot {SyncAction(action).value} {kind.value}"
            )
        try:
            return self._map(kind, payload)
        except (TypeError, ValueError) as exc:
            raise PermanentError(
                f"{self.name or self.id} cannot map {kind.value}: {exc}"
            ) from exc

    async def send(self, request: ProviderRequest) -> str:
        """Perform the remote call. Returns the provider-assigned record id."""
        token = await self.authenticate()
        try:
            data = await self._send_with(request, token)
        except AuthError:
            if token is None:
                raise
            logger.info("%s rejected its cached token; re-authenticating", self.name)
            token = await self._refresh(token)
            data = await self._send_with(request, token)
        remote_id = self._extract_id(data)
        if remote_id in (None, ""):
            raise PermanentError(f"{self.name} response carried no record id")
        return str(remote_id)

    def capabilities(self) -> List[str]:
        return [*COMMON_CAPABILITIES, *self.extra_capabilities]

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── Hooks ─────────────────────────────────────────────────────────────────

    async def _fetch_token(self) -> Optional[AccessToken]:
        """Obtain a fresh token. Adapters with static credentials return None."""
        return None

    @abstractmethod
    def _map(self, kind: SyncKind, payload: Dict[str, Any]) -> ProviderRequest:
        ...

    @abstractmethod
    def _url(self, path: str, token: Optional[AccessToken]) -> str:
        ...

    def _auth_headers(self, token: Optional[AccessToken]) -> Dict[str, str]:
        return {}

    def _auth_params(self, token: Optional[AccessToken]) -> Dict[str, str]:
        return {}

    def _extract_id(self, data: Dict[str, Any]) -> Any:
        return data.get("id")

    # ── Tokens ────────────────────────────────────────────────────────────────

    async def _refresh(self, stale: AccessToken) -> Optional[AccessToken]:
        """
        Replace a rejected token. If another dispatch already replaced it,
        reuse that one instead of fetching again.
        """
        async with self._auth_lock:
            if self._token is stale or self._token is None:
                self._token = await self._fetch_token()
            return self._token

    # ── HTTP ──────────────────────────────────────────────────────────────────

    async def _send_with(self, request: ProviderRequest,
                         token: Optional[AccessToken]) -> Dict[str, Any]:
        return await self._request(
            request.method,
            self._url(request.path, token),
            json=request.json,
            params={**self._auth_params(token), **request.params},
            headers=self._auth_headers(token),
        )

    async def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        """
        Issue one HTTP call and return the decoded JSON body.

        Raises:
            TransientError: timeout, connection failure, 408/429/5xx.
            AuthError: 401/403.
            PermanentError: any other 4xx, or a body that is not JSON.
        """
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientError(f"{self.name} timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientError(f"{self.name} unreachable: {exc}") from exc

        outcome = classify_status_code(response.status_code)
        if outcome != Outcome.SUCCESS:
            message = f"{self.name} returned {response.status_code}: {_error_message(response)}"
            if response.status_code in (401, 403):
                raise AuthError(message)
            if outcome == Outcome.TRANSIENT:
                raise TransientError(message)
            raise PermanentError(message)

        try:
            return response.json()
        except ValueError as exc:
            raise PermanentError(f"{self.name} returned a non-JSON body") from exc


def _error_message(response: httpx.Response) -> str:
    """Best-effort human message from an error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, list) and body:
        body = body[0]
    if isinstance(body, dict):
        for key in ("message", "error", "error_description"):
            if body.get(key):
                return str(body[key])
    return str(body)[:200]


def expires_in(seconds: Optional[int]) -> Optional[datetime]:
    """Token expiry from an OAuth expires_in, with a minute of slack."""
    if not seconds:
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=int(seconds) - 60)
