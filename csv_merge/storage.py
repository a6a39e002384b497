import logging
import re
import traceback

from azure.core.exceptions import AzureError
from azure.storage.blob import BlobServiceClient, ContentSettings

from .config import XLSX_CONTENT_TYPE
from .errors import DownstreamError
from .workbook import SourceRecord

logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.WARNING)

INVALID_FILENAME_CHARS = re.compile(r'[\x00-\x1f<>:"/\\|?*]')


def get_blob_service_client(settings):
    conn_str = settings.require("storage_connection_string", "BlobStorage__ConnectionString")
    return BlobServiceClient.from_connection_string(conn_str)


def _open_blob(container_client, blob_name):
    # Deferred until the workbook writer reaches this sheet.
    try:
        blob_client = container_client.get_blob_client(blob_name)
        yield from blob_client.download_blob().chunks()
    except AzureError as exc:
        logging.error(f"[ERROR] Failed reading blob: {blob_name} in container: {container_client.container_name}")
        logging.error(traceback.format_exc())
        raise DownstreamError(f"Failed reading blob {blob_name}: {exc}") from exc


def list_csv_sources(container_client, prefix, sort=False):
    """List the ``.csv`` blobs under ``prefix`` as SourceRecords.

    Blob contents are not fetched here; each record downloads its blob in
    chunks when the workbook writer iterates it.
    """
    try:
        names = [
            blob.name
            for blob in container_client.list_blobs(name_starts_with=prefix)
            if blob.name.lower().endswith(".csv")
        ]
    except AzureError as exc:
        logging.error(f"[ERROR] Failed listing blobs under '{prefix}' in container: {container_client.container_name}")
        logging.error(traceback.format_exc())
        raise DownstreamError(f"Failed listing blobs under '{prefix}': {exc}") from exc

    if sort:
        names.sort(key=str.lower)

    logging.info(f"Found {len(names)} CSV files under '{prefix}' in container: {container_client.container_name}")
    return [SourceRecord(name, _open_blob(container_client, name)) for name in names]


def upload_workbook(container_client, blob_name, data):
    """Write a workbook (bytes or binary stream) to ``blob_name``; returns the blob URL."""
    blob_client = container_client.get_blob_client(blob_name)
    try:
        blob_client.upload_blob(
            data,
            overwrite=True,
            content_settings=ContentSettings(content_type=XLSX_CONTENT_TYPE),
        )
    except AzureError as exc:
        logging.error(f"[ERROR] Failed uploading blob: {blob_name} in container: {container_client.container_name}")
        logging.error(traceback.format_exc())
        raise DownstreamError(f"Failed uploading blob {blob_name}: {exc}") from exc

    logging.info(f"[SUCCESS] Uploaded: {blob_name}")
    return blob_client.url


# --- BLOB NAMING ---

def daily_prefix(day):
    return f"{day:%Y-%m-%d}/"


def daily_file_name(container_name, day):
    return f"merged-{container_name}-{day:%Y-%m-%d}.xlsx"


def folder_prefix(folder_path):
    return f"clients/{folder_path}"


def folder_label(folder_path):
    return folder_path.replace("/", "-") if folder_path.strip() else "root"


def folder_file_name(container_name, folder_path):
    return f"merged-{container_name}-{folder_label(folder_path)}.xlsx"


def folder_output_blob_name(container_name, folder_path):
    file_name = folder_file_name(container_name, folder_path)
    if not folder_path.strip():
        return f"clients/{file_name}"
    return f"clients/{folder_path}/{file_name}"


def sanitize_path_segment(segment):
    sanitized = INVALID_FILENAME_CHARS.sub("_", segment).strip("_")
    return sanitized if sanitized.strip() else "member"


def activity_report_prefix(member_firm_id, day):
    return f"Reports/{sanitize_path_segment(member_firm_id)}/{day:%Y}/{day:%m}/{day:%d}/"


def activity_report_file_name(environment_name, day):
    return f"ActivityReports_{environment_name}_{day:%Y}_{day:%m}_{day:%d}.xlsx"
