"""Shared fakes for blob storage, Key Vault and the HTTP session."""
import io
import json
from types import SimpleNamespace

import pytest

from csv_merge.config import Settings


class FakeDownloader:
    def __init__(self, data, chunk_size=7):
        self._data = data
        self._chunk_size = chunk_size

    def chunks(self):
        for start in range(0, len(self._data), self._chunk_size):
            yield self._data[start:start + self._chunk_size]

    def readall(self):
        return self._data


class FakeBlobClient:
    def __init__(self, container, name):
        self.container = container
        self.blob_name = name
        self.url = f"https://acct.blob.core.windows.net/{container.container_name}/{name}"

    def download_blob(self):
        self.container.downloads.append(self.blob_name)
        return FakeDownloader(self.container.blobs[self.blob_name])

    def upload_blob(self, data, overwrite=False, content_settings=None):
        if hasattr(data, "read"):
            data = data.read()
        self.container.blobs[self.blob_name] = data
        self.container.uploads.append((self.blob_name, overwrite, content_settings))


class FakeContainerClient:
    def __init__(self, name, blobs=None, list_error=None):
        self.container_name = name
        self.blobs = dict(blobs or {})
        self.list_error = list_error
        self.downloads = []
        self.uploads = []
        self.listed_prefixes = []

    def list_blobs(self, name_starts_with=None):
        self.listed_prefixes.append(name_starts_with)
        if self.list_error:
            raise self.list_error
        return [
            SimpleNamespace(name=name)
            for name in list(self.blobs)
            if name.startswith(name_starts_with or "")
        ]

    def get_blob_client(self, name):
        return FakeBlobClient(self, name)


class FakeBlobService:
    def __init__(self, containers=None):
        self.containers = containers or {}

    def get_container_client(self, name):
        return self.containers.setdefault(name, FakeContainerClient(name))


class FakeSecretStore:
    def __init__(self, secrets):
        self.secrets = secrets
        self.requested = []

    def get(self, name):
        self.requested.append(name)
        return self.secrets[name]


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text="", content=b""):
        self.status_code = status_code
        self._payload = payload
        self.text = text or (json.dumps(payload) if payload is not None else "")
        self.content = content

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

    def raise_for_status(self):
        import requests

        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} error")

    def iter_content(self, chunk_size=1):
        stream = io.BytesIO(self.content)
        return iter(lambda: stream.read(chunk_size), b"")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    """Records every call; answers from a queue or a routing function."""

    def __init__(self, responses=None, route=None):
        self.responses = list(responses or [])
        self.route = route
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append(SimpleNamespace(method=method, url=url, **kwargs))
        if self.route is not None:
            return self.route(method, url, kwargs)
        return self.responses.pop(0)

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)

    def put(self, url, **kwargs):
        return self.request("PUT", url, **kwargs)

    def calls_for(self, method):
        return [call for call in self.calls if call.method == method]


@pytest.fixture
def settings():
    return Settings(
        storage_connection_string="UseDevelopmentStorage=true",
        key_vault_uri="https://vault.example/",
        environment_name="test",
        graph_tenant_id="tenant",
        graph_client_id="client",
        graph_client_secret="secret",
        sharepoint_site_id="site-1",
        sharepoint_drive_id="drive-1",
        sharepoint_target_folder="Reports/Combined",
        upload_chunk_size=10,
        timeout=5,
    )


@pytest.fixture
def track_staging(monkeypatch):
    """Record every temp file the workbook layer opens."""
    import tempfile

    from csv_merge import workbook

    opened = []
    real = tempfile.TemporaryFile

    def recording(*args, **kwargs):
        handle = real(*args, **kwargs)
        opened.append(handle)
        return handle

    monkeypatch.setattr(workbook.tempfile, "TemporaryFile", recording)
    return opened
