import logging
import re
from typing import NamedTuple
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import DEFAULT_TIMEOUT, UPLOAD_CHUNK_SIZE, XLSX_CONTENT_TYPE
from .errors import DownstreamError, ProtocolError
from .graph import GRAPH_ROOT

TERMINAL_STATUSES = (200, 201)
FILE_NAME_PLACEHOLDER = re.compile(re.escape("{fileName}"), re.IGNORECASE)


class UploadSession(NamedTuple):
    upload_url: str
    total_length: int
    chunk_size: int


class UploadResult(NamedTuple):
    destination_url: str


def create_http_session(retries=3, backoff_factor=0.5):
    """One pooled session per process, handed to the upload components.

    Transient failures of idempotent calls (GET, chunk PUT) are retried with
    backoff; session creation and token POSTs are never replayed.
    """
    session = requests.Session()
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        backoff_factor=backoff_factor,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"GET", "PUT"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def _json(resp):
    try:
        payload = resp.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _send(session, method, url, what, **kwargs):
    try:
        return session.request(method, url, **kwargs)
    except requests.RequestException as exc:
        logging.error(f"[ERROR] {what} failed: {exc}")
        raise DownstreamError(f"{what} failed: {exc}") from exc


class ResumableUploader:
    """Microsoft Graph upload-session client.

    The file goes up as consecutive ``Content-Range`` PUTs against the
    session's ``uploadUrl``. A 200/201 on any chunk means the item is
    assembled; its ``webUrl`` is returned and nothing further is sent.
    """

    def __init__(self, session, chunk_size=UPLOAD_CHUNK_SIZE, timeout=DEFAULT_TIMEOUT):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.session = session
        self.chunk_size = chunk_size
        self.timeout = timeout

    def create_session(self, session_endpoint, destination_name, token, total_length):
        body = {
            "item": {
                "@microsoft.graph.conflictBehavior": "replace",
                "name": destination_name,
            }
        }
        resp = _send(
            self.session, "POST", session_endpoint, "createUploadSession",
            json=body, headers=_auth(token), timeout=self.timeout,
        )
        if not resp.ok:
            logging.error(f"[ERROR] createUploadSession failed: {resp.status_code} {resp.text[:200]}")
            raise DownstreamError(f"createUploadSession failed with status {resp.status_code}.")

        upload_url = _json(resp).get("uploadUrl")
        if not upload_url:
            raise ProtocolError("Upload session response missing upload URL.")
        return UploadSession(upload_url, total_length, self.chunk_size)

    def upload(self, stream, total_length, destination_name, session_endpoint, token):
        upload_session = self.create_session(session_endpoint, destination_name, token, total_length)
        logging.info(f"[START] Upload session for {destination_name}: {total_length} bytes")

        offset = 0
        while offset < total_length:
            chunk = stream.read(min(self.chunk_size, total_length - offset))
            if not chunk:
                break
            end = offset + len(chunk) - 1
            headers = _auth(token)
            headers["Content-Range"] = f"bytes {offset}-{end}/{total_length}"
            headers["Content-Length"] = str(len(chunk))

            resp = _send(
                self.session, "PUT", upload_session.upload_url, f"Chunk upload {offset}-{end}",
                data=chunk, headers=headers, timeout=self.timeout,
            )
            if resp.status_code in TERMINAL_STATUSES:
                web_url = _json(resp).get("webUrl") or ""
                if not web_url:
                    logging.warning(f"Upload of {destination_name} finished without a webUrl")
                logging.info(f"[SUCCESS] Uploaded {destination_name} -> {web_url}")
                return UploadResult(web_url)
            if not resp.ok:
                logging.error(f"[ERROR] Chunk {offset}-{end} rejected: {resp.status_code} {resp.text[:200]}")
                raise DownstreamError(f"Chunk upload failed with status {resp.status_code}.")
            offset += len(chunk)

        raise ProtocolError(
            f"Upload session for {destination_name} ended at byte {offset} of {total_length} "
            "without a completed item."
        )


def direct_upload(session, url, data, token, content_type=XLSX_CONTENT_TYPE, timeout=DEFAULT_TIMEOUT):
    """Single PUT of the whole payload, for small files."""
    headers = _auth(token)
    headers["Content-Type"] = content_type
    resp = _send(session, "PUT", url, "Direct upload", data=data, headers=headers, timeout=timeout)
    if not resp.ok:
        logging.error(f"[ERROR] Direct upload failed: {resp.status_code} {resp.text[:200]}")
        raise DownstreamError(f"Upload failed with status {resp.status_code}.")
    logging.info(f"[SUCCESS] Uploaded to {url}")
    return UploadResult(url)


def sharepoint_upload_url(template, file_name):
    escaped = quote(file_name, safe="")
    if FILE_NAME_PLACEHOLDER.search(template):
        return FILE_NAME_PLACEHOLDER.sub(lambda _: escaped, template)
    return f"{template.rstrip('/')}/{escaped}"


def graph_upload_session_endpoint(site_id, drive_id, folder, file_name):
    folder = (folder or "").strip("/")
    item_path = f"{folder}/{file_name}" if folder else file_name
    return f"{GRAPH_ROOT}/sites/{site_id}/drives/{drive_id}/root:/{quote(item_path)}:/createUploadSession"
