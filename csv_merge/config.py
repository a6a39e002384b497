import os
from dataclasses import dataclass

from .errors import ConfigurationError

# --- CONFIGURATION ---
# App settings use "__" for nested sections (BlobStorage__ConnectionString).

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
UPLOAD_CHUNK_SIZE = 10 * 1024 * 1024   # 10MB chunks for Graph upload sessions
DEFAULT_TIMEOUT = 120

STORAGE_CONN_STR_SETTINGS = (
    "BlobStorage__ConnectionString",
    "ConnectionStrings__BlobStorage",
    "AzureWebJobsStorage",
    "BlobStorageConnectionString",
)


def _first_env(names):
    for name in names:
        value = os.getenv(name)
        if value and value.strip():
            return value
    return None


@dataclass(frozen=True)
class Settings:
    storage_connection_string: str = None
    reports_container: str = "reports"
    key_vault_uri: str = None
    storage_url_secret_name: str = "StorageUrl"
    sharepoint_upload_url_secret_name: str = "SharePointUploadUrl"
    sharepoint_token_secret_name: str = "SharePointAccessToken"
    environment_name: str = "dev"
    graph_tenant_id: str = None
    graph_client_id: str = None
    graph_client_secret: str = None
    sharepoint_site_id: str = None
    sharepoint_drive_id: str = None
    sharepoint_target_folder: str = ""
    upload_chunk_size: int = UPLOAD_CHUNK_SIZE
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls):
        return cls(
            storage_connection_string=_first_env(STORAGE_CONN_STR_SETTINGS),
            reports_container=os.getenv("REPORTS_CONTAINER", "reports"),
            key_vault_uri=os.getenv("ActivityReports__KeyVaultUri"),
            storage_url_secret_name=os.getenv("ActivityReports__StorageUrlSecretName", "StorageUrl"),
            sharepoint_upload_url_secret_name=os.getenv(
                "ActivityReports__SharePointUploadUrlSecretName", "SharePointUploadUrl"
            ),
            sharepoint_token_secret_name=os.getenv(
                "ActivityReports__SharePointAccessTokenSecretName", "SharePointAccessToken"
            ),
            environment_name=_first_env(
                ("ActivityReports__EnvironmentName", "AZURE_FUNCTIONS_ENVIRONMENT")
            ) or "dev",
            graph_tenant_id=os.getenv("GRAPH_TENANT_ID"),
            graph_client_id=os.getenv("GRAPH_CLIENT_ID"),
            graph_client_secret=os.getenv("GRAPH_CLIENT_SECRET"),
            sharepoint_site_id=os.getenv("SHAREPOINT_SITE_ID"),
            sharepoint_drive_id=os.getenv("SHAREPOINT_DRIVE_ID"),
            sharepoint_target_folder=(os.getenv("SHAREPOINT_TARGET_FOLDER") or "").strip("/"),
            upload_chunk_size=int(os.getenv("UPLOAD_CHUNK_SIZE", UPLOAD_CHUNK_SIZE)),
            timeout=float(os.getenv("HTTP_TIMEOUT_SECONDS", DEFAULT_TIMEOUT)),
        )

    def require(self, attribute, setting_name=None):
        """Return a configured value or raise ConfigurationError naming the app setting."""
        value = getattr(self, attribute)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ConfigurationError(
                f"Missing required setting: {setting_name or attribute}"
            )
        return value
