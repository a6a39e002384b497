import logging

from azure.core.exceptions import AzureError
from azure.identity import DefaultAzureCredential
from azure.keyvault.secrets import SecretClient

from .errors import ConfigurationError, DownstreamError


class SecretStore:
    """Key Vault lookups for the storage URL and SharePoint credentials.

    Uses DefaultAzureCredential, so it works with Azure CLI login locally and
    the Function's managed identity when deployed.
    """

    def __init__(self, vault_uri, client=None):
        if not vault_uri:
            raise ConfigurationError("ActivityReports__KeyVaultUri is required.")
        self._client = client or SecretClient(vault_url=vault_uri, credential=DefaultAzureCredential())

    def get(self, name):
        if not name or not name.strip():
            raise ConfigurationError("Secret name cannot be empty.")
        try:
            return self._client.get_secret(name).value
        except AzureError as exc:
            logging.error(f"[ERROR] Failed reading secret: {name}")
            raise DownstreamError(f"Failed reading secret {name}: {exc}") from exc
