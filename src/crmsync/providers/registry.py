"""Provider id → adapter lookup. Adding a CRM means registering an adapter here."""
import logging
from typing import Dict, List, Optional

import httpx

from crmsync.providers.base import ProviderAdapter
from crmsync.providers.errors import UnsupportedProvider
from crmsync.providers.hubspot import HubSpotAdapter
from crmsync.providers.pipedrive import PipedriveAdapter
from crmsync.providers.salesforce import SalesforceAdapter
from crmsync.providers.zoho import ZohoAdapter

logger = logging.getLogger(__name__)


class ProviderRegistry:
    def __init__(self):
        self._adapters: Dict[str, ProviderAdapter] = {}

    def register(self, adapter: ProviderAdapter) -> None:
        if not adapter.id:
            raise ValueError("adapter has no id")
        if adapter.id in self:
            logger.warning("Replacing adapter for provider %s", adapter.id)
        self._adapters[adapter.id] = adapter

    def get(self, provider: str) -> ProviderAdapter:
        """
        Raises:
            UnsupportedProvider: nothing registered under this id.
        """
        try:
            return self._adapters[provider]
        except KeyError:
            raise UnsupportedProvider(f"Unsupported CRM provider: {provider}") from None

    def __contains__(self, provider: str) -> bool:
        return provider in self._adapters

    def ids(self) -> List[str]:
        return list(self._adapters)

    def is_configured(self, provider: str) -> bool:
        adapter = self._adapters.get(provider)
        return adapter is not None and adapter.is_configured()

    def supported(self) -> List[Dict]:
        return [
            {
                "id": adapter.id,
                "name": adapter.name,
                "configured": adapter.is_configured(),
                "capabilities": adapter.capabilities(),
            }
            for adapter in self._adapters.values()
        ]

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()


def build_registry(settings, http: Optional[httpx.AsyncClient] = None) -> ProviderRegistry:
    """Register the four shipped CRM adapters from settings, sharing one HTTP client."""
    http = http or httpx.AsyncClient(timeout=settings.dispatch_timeout_seconds)
    registry = ProviderRegistry()
    registry.register(SalesforceAdapter(
        base_url=settings.salesforce_base_url,
        client_id=settings.salesforce_client_id,
        client_secret=settings.salesforce_client_secret,
        username=settings.salesforce_username,
        password=settings.salesforce_password,
        security_token=settings.salesforce_security_token,
        http=http,
    ))
    registry.register(HubSpotAdapter(
        base_url=settings.hubspot_base_url,
        api_key=settings.hubspot_api_key,
        access_token=settings.hubspot_access_token,
        http=http,
    ))
    registry.register(PipedriveAdapter(
        base_url=settings.pipedrive_base_url,
        api_token=settings.pipedrive_api_token,
        http=http,
    ))
    registry.register(ZohoAdapter(
        base_url=settings.zoho_base_url,
        accounts_url=settings.zoho_accounts_url,
        client_id=settings.zoho_client_id,
        client_secret=settings.zoho_client_secret,
        refresh_token=settings.zoho_refresh_token,
        http=http,
    ))
    return registry
