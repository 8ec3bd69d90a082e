from typing import Dict, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite://"  # in-memory; use sqlite:///./crmsync.db to keep items
    default_provider: str = "hubspot"

    # Queue processor
    sync_tick_seconds: int = 10
    sync_batch_size: int = 5
    sync_concurrency: int = 5
    dispatch_timeout_seconds: float = 30.0
    claim_lease_seconds: int = 300

    # Retry policy
    max_attempts: int = 3
    retry_min_delay_seconds: float = 0.0
    retry_backoff_factor: float = 1.0
    provider_max_attempts: Dict[str, int] = {}

    # Reclaimer
    reclaim_interval_seconds: int = 3600
    retention_hours: float = 24.0

    # Salesforce
    salesforce_base_url: str = ""
    salesforce_client_id: str = ""
    salesforce_client_secret: str = ""
    salesforce_username: str = ""
    salesforce_password: str = ""
    salesforce_security_token: str = ""

    # HubSpot
    hubspot_base_url: str = "https://api.hubapi.com"
    hubspot_api_key: str = ""
    hubspot_access_token: str = ""

    # Pipedrive
    pipedrive_base_url: str = ""
    pipedrive_api_token: str = ""

    # Zoho CRM
    zoho_base_url: str = "https://www.zohoapis.com/crm/v2"
    zoho_accounts_url: str = "https://accounts.zoho.com"
    zoho_client_id: str = ""
    zoho_client_secret: str = ""
    zoho_refresh_token: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "CRMSYNC_"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
