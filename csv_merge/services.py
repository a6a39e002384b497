import logging
import os
import traceback
from typing import List, NamedTuple

import requests
from azure.core.exceptions import AzureError
from azure.identity import DefaultAzureCredential
from azure.storage.blob import BlobClient, ContainerClient

from . import storage
from .errors import DownstreamError, SourceNotFoundError
from .graph import acquire_graph_token
from .upload import (ResumableUploader, direct_upload,
                     graph_upload_session_endpoint, sharepoint_upload_url)
from .workbook import (READ_SIZE, SourceRecord, build_workbook,
                       build_workbook_bytes, staged_workbook)


class MergedWorkbook(NamedTuple):
    file_name: str
    content: bytes
    sheets: List
    blob_url: str = None


class ReportFileLocation(NamedTuple):
    blob_uri: str
    file_name: str
    blob_path: str

    def to_dict(self):
        return {"blobUri": self.blob_uri, "fileName": self.file_name, "blobPath": self.blob_path}

    @classmethod
    def from_dict(cls, data):
        return cls(data["blobUri"], data["fileName"], data["blobPath"])


# --- HTTP MERGES ---

def merge_daily(blob_service_client, request):
    """CSVs under ``{yyyy-MM-dd}/`` in the client's container, returned as one workbook."""
    prefix = storage.daily_prefix(request.day)
    logging.info(f"[START] Merging CSV files for container {request.container_name} and folder {prefix}")
    container_client = blob_service_client.get_container_client(request.container_name)

    sources = storage.list_csv_sources(container_client, prefix)
    if not sources:
        raise SourceNotFoundError("No CSV files found for the provided client and date.")

    content, sheets = build_workbook_bytes(sources)
    return MergedWorkbook(storage.daily_file_name(request.container_name, request.day), content, sheets)


def merge_folder(blob_service_client, request):
    """CSVs under ``clients/{folder}``; the workbook is also written back next to them."""
    folder_path = request.folder_path
    logging.info(f"[START] Merging CSV files for container {request.container_name} and folder {folder_path}")
    container_client = blob_service_client.get_container_client(request.container_name)

    sources = storage.list_csv_sources(container_client, storage.folder_prefix(folder_path))
    if not sources:
        raise SourceNotFoundError("No CSV files found for the provided folder path.")

    content, sheets = build_workbook_bytes(sources)
    blob_url = storage.upload_workbook(
        container_client,
        storage.folder_output_blob_name(request.container_name, folder_path),
        content,
    )
    return MergedWorkbook(
        storage.folder_file_name(request.container_name, folder_path), content, sheets, blob_url
    )


# --- ACTIVITY REPORTS ---

def _container_from_url(url):
    return ContainerClient.from_container_url(url, credential=DefaultAzureCredential())


def _blob_from_url(url):
    return BlobClient.from_blob_url(url, credential=DefaultAzureCredential())


def build_activity_report(settings, secret_store, request, container_factory=_container_from_url):
    """Combine one member firm's daily CSVs into ``ActivityReports_{env}_{yyyy}_{MM}_{dd}.xlsx``.

    The workbook is staged in a temp file and uploaded beside its sources.
    """
    storage_url = secret_store.get(settings.storage_url_secret_name)
    container_client = container_factory(storage_url)

    prefix = storage.activity_report_prefix(request.member_firm_id, request.reporting_period)
    sources = storage.list_csv_sources(container_client, prefix, sort=True)
    if not sources:
        raise SourceNotFoundError(
            "No CSV files were found for the specified member firm and reporting period."
        )

    file_name = storage.activity_report_file_name(settings.environment_name, request.reporting_period)
    blob_path = f"{prefix}{file_name}"

    with staged_workbook() as staging:
        build_workbook(sources, staging)
        staging.seek(0)
        blob_uri = storage.upload_workbook(container_client, blob_path, staging)

    logging.info(f"Activity report created at {blob_uri}")
    return ReportFileLocation(blob_uri, file_name, blob_path)


def upload_activity_report(settings, secret_store, session, location, blob_factory=_blob_from_url):
    upload_url_template = secret_store.get(settings.sharepoint_upload_url_secret_name)
    access_token = secret_store.get(settings.sharepoint_token_secret_name)
    destination_url = sharepoint_upload_url(upload_url_template, location.file_name)

    try:
        data = blob_factory(location.blob_uri).download_blob().readall()
    except AzureError as exc:
        logging.error(f"[ERROR] Failed reading report blob: {location.blob_path}")
        logging.error(traceback.format_exc())
        raise DownstreamError(f"Failed reading report blob {location.blob_path}: {exc}") from exc

    direct_upload(session, destination_url, data, access_token, timeout=settings.timeout)
    logging.info(f"Uploaded report to SharePoint at {destination_url}")
    return destination_url


# --- SHAREPOINT COMBINE ---

def _fetch_csv(session, url, timeout):
    # Streams the CSV body; nothing is requested until the sheet is written.
    try:
        with session.get(url, stream=True, timeout=timeout) as resp:
            resp.raise_for_status()
            yield from resp.iter_content(chunk_size=READ_SIZE)
    except requests.RequestException as exc:
        logging.error(f"[ERROR] Failed downloading CSV: {url}")
        raise DownstreamError(f"Failed downloading CSV {url}: {exc}") from exc


def combine_to_sharepoint(settings, session, request):
    """Download the listed CSVs, combine them, and push the workbook to SharePoint via Graph."""
    tenant_id = settings.require("graph_tenant_id", "GRAPH_TENANT_ID")
    client_id = settings.require("graph_client_id", "GRAPH_CLIENT_ID")
    client_secret = settings.require("graph_client_secret", "GRAPH_CLIENT_SECRET")
    site_id = settings.require("sharepoint_site_id", "SHAREPOINT_SITE_ID")
    drive_id = settings.require("sharepoint_drive_id", "SHAREPOINT_DRIVE_ID")

    sources = [
        SourceRecord(csv_file.name, _fetch_csv(session, csv_file.url, settings.timeout))
        for csv_file in request.csv_files
    ]

    with staged_workbook() as staging:
        build_workbook(sources, staging)
        total_length = staging.seek(0, os.SEEK_END)
        staging.seek(0)

        access_token = acquire_graph_token(
            session, tenant_id, client_id, client_secret, timeout=settings.timeout
        )
        endpoint = graph_upload_session_endpoint(
            site_id, drive_id, settings.sharepoint_target_folder, request.output_filename
        )
        uploader = ResumableUploader(session, settings.upload_chunk_size, settings.timeout)
        result = uploader.upload(staging, total_length, request.output_filename, endpoint, access_token)

    return {
        "status": "uploaded",
        "output_filename": request.output_filename,
        "sharepoint_url": result.destination_url,
    }
