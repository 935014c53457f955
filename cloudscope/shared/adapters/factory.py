"""
Multi-Cloud Adapter Factory

Standardizes cloud provider interactions and provides a unified interface
for AWS, Azure, and GCP.
"""

from typing import Optional

from pydantic import ValidationError

from cloudscope.schemas.inventory import (
    AWSCredentials,
    AzureCredentials,
    CREDENTIAL_MODELS,
    GCPCredentials,
    ProviderCredentials,
    ScanProvider,
)
from cloudscope.shared.adapters.aws import AWSAdapter
from cloudscope.shared.adapters.azure import AzureAdapter
from cloudscope.shared.adapters.base import BaseAdapter
from cloudscope.shared.adapters.gcp import GCPAdapter
from cloudscope.shared.core.config import Settings, get_settings
from cloudscope.shared.core.exceptions import ConfigurationError


def credentials_from_settings(provider: ScanProvider, settings: Settings) -> ProviderCredentials:
    """
    Builds the provider's credential model from environment settings.
    Raises ConfigurationError naming the missing variables before any network call.
    """
    if provider == ScanProvider.AWS:
        required = {
            "AWS_ACCESS_KEY_ID": settings.AWS_ACCESS_KEY_ID,
            "AWS_SECRET_ACCESS_KEY": settings.AWS_SECRET_ACCESS_KEY,
        }
    elif provider == ScanProvider.AZURE:
        required = {
            "AZURE_TENANT_ID": settings.AZURE_TENANT_ID,
            "AZURE_CLIENT_ID": settings.AZURE_CLIENT_ID,
            "AZURE_CLIENT_SECRET": settings.AZURE_CLIENT_SECRET,
            "AZURE_SUBSCRIPTION_ID": settings.AZURE_SUBSCRIPTION_ID,
        }
    else:
        required = {
            "GCP_PROJECT_ID": settings.GCP_PROJECT_ID,
            "GCP_BILLING_EXPORT_TABLE": settings.GCP_BILLING_EXPORT_TABLE,
        }

    missing = [name for name, value in required.items() if not value]
    if missing:
        raise ConfigurationError(
            f"{provider.value} credentials are not configured",
            details={"provider": provider.value, "missing": missing}
        )

    if provider == ScanProvider.AWS:
        return AWSCredentials(
            access_key_id=settings.AWS_ACCESS_KEY_ID,
            secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            region=settings.AWS_REGION
        )
    if provider == ScanProvider.AZURE:
        return AzureCredentials(
            tenant_id=settings.AZURE_TENANT_ID,
            client_id=settings.AZURE_CLIENT_ID,
            client_secret=settings.AZURE_CLIENT_SECRET,
            subscription_id=settings.AZURE_SUBSCRIPTION_ID
        )
    return GCPCredentials(
        project_id=settings.GCP_PROJECT_ID,
        billing_export_table=settings.GCP_BILLING_EXPORT_TABLE,
        key_file=settings.GOOGLE_APPLICATION_CREDENTIALS
    )


def parse_credentials(provider: ScanProvider, payload: dict) -> ProviderCredentials:
    """Validates request-supplied credential fields for one provider (HTTP 400 on failure)."""
    model = CREDENTIAL_MODELS[provider]
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        missing = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ConfigurationError(
            f"Invalid {provider.value} credentials",
            status_code=400,
            details={"provider": provider.value, "fields": missing}
        ) from e


class AdapterFactory:
    @staticmethod
    def get_adapter(
        provider: ScanProvider | str,
        credentials: Optional[ProviderCredentials] = None,
        settings: Optional[Settings] = None
    ) -> BaseAdapter:
        """
        Returns the adapter for a provider. Credentials are read from settings
        when the caller does not supply them.
        """
        settings = settings or get_settings()
        try:
            provider = ScanProvider(provider.lower())
        except ValueError:
            raise ValueError(f"Unsupported provider: {provider}")

        credentials = credentials or credentials_from_settings(provider, settings)
        timeout = settings.PROVIDER_SCAN_TIMEOUT_SECONDS

        if provider == ScanProvider.AWS:
            return AWSAdapter(credentials, timeout_seconds=timeout)
        elif provider == ScanProvider.AZURE:
            return AzureAdapter(credentials, timeout_seconds=timeout)
        return GCPAdapter(credentials, timeout_seconds=timeout)
