from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables or .env file.

    Priority order for configuration values:
    1. Environment variables
    2. .env file
    3. Default values
    """

    # Azure credentials
    # These are used by DefaultAzureCredential for Service Principal auth
    azure_client_id: str | None = None
    azure_client_secret: str | None = None
    azure_tenant_id: str | None = None
    azure_subscription_id: str | None = None

    # Parent image the labs are cloned from
    lab_source_resource_group: str | None = None
    lab_snapshot_name: str | None = None

    # Lab defaults (CLI flags override these)
    lab_location: str | None = None
    lab_vm_size: str = "Standard_D2s_v3"
    lab_shutdown_time: str = "1900"
    lab_shutdown_timezone: str = "UTC"
    lab_filter: str = r"Student\d+"
    lab_max_workers: int = 5

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",  # ignore extra env vars
    }


settings = Settings()
