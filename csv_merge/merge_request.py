import logging
import re
from datetime import date, datetime
from typing import NamedTuple
from urllib.parse import urlparse

from .errors import ValidationError

MERGE_FIELDS = ("blobUrl", "containerName", "folderPath", "clientName", "date")
DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%Y/%m/%d",
    "%m/%d/%Y %H:%M:%S",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
)


def parse_date(value):
    """Calendar date from a ``date``, an ISO date or date-time, or a DATE_FORMATS string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    try:
        # fromisoformat only learned the "Z" suffix in 3.11
        return datetime.fromisoformat(re.sub(r"[Zz]$", "+00:00", text)).date()
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _blank(value):
    return value is None or not str(value).strip()


def read_json_body(req):
    """JSON object body of ``req``, or None when absent or not an object."""
    if not req.get_body():
        return None
    try:
        body = req.get_json()
    except ValueError:
        logging.warning("Request body is not valid JSON; ignoring it")
        return None
    return body if isinstance(body, dict) else None


class RequestFields:
    """Query parameters and JSON body fields merged into one lookup.

    Keys are matched case-insensitively, so ``ClientName`` and ``clientName``
    are the same field. By default a non-blank body value wins over the
    query; with ``query_first`` the body only fills fields the query leaves
    blank (the daily merge reads its parameters that way).
    """

    def __init__(self, values):
        self._values = values

    @classmethod
    def from_http(cls, req, names=MERGE_FIELDS, query_first=False):
        query = {k.lower(): v for k, v in req.params.items()}
        body = {k.lower(): v for k, v in (read_json_body(req) or {}).items()}
        sources = (query, body) if query_first else (body, query)
        values = {}
        for name in names:
            key = name.lower()
            for source in sources:
                if not _blank(source.get(key)):
                    values[name] = str(source[key]).strip()
                    break
        return cls(values)

    def get(self, name, default=None):
        return self._values.get(name, default)

    def has(self, *names):
        return all(not _blank(self._values.get(name)) for name in names)

    def with_default(self, name, value):
        if self.has(name):
            return self
        return RequestFields(dict(self._values, **{name: value}))


class DailyMergeRequest(NamedTuple):
    container_name: str
    day: date

    @classmethod
    def from_fields(cls, fields):
        day = parse_date(fields.get("date"))
        if not fields.has("clientName") or day is None:
            raise ValidationError("Provide 'clientName' and 'date' parameters.")
        return cls(fields.get("clientName").lower(), day)


def _from_blob_url(fields):
    parsed = urlparse(fields.get("blobUrl"))
    if not parsed.scheme or not parsed.netloc:
        return None
    segments = [s for s in parsed.path.split("/") if s]
    if len(segments) < 2:
        return None
    return segments[0], f"{segments[1]}/{fields.get('clientName')}"


def _from_client_name(fields):
    return fields.get("containerName"), fields.get("clientName")


def _from_folder_path(fields):
    return fields.get("containerName"), fields.get("folderPath")


def _from_date(fields):
    return fields.get("containerName"), ""


# Evaluated in order; the first rule whose fields are present and which
# yields a target wins.
FOLDER_RULES = (
    (("blobUrl", "clientName"), _from_blob_url),
    (("containerName", "clientName"), _from_client_name),
    (("containerName", "folderPath"), _from_folder_path),
    (("containerName", "date"), _from_date),
)


class FolderMergeRequest(NamedTuple):
    container_name: str
    folder_path: str

    @classmethod
    def from_fields(cls, fields, default_container="reports"):
        fields = fields.with_default("containerName", default_container)
        for required, rule in FOLDER_RULES:
            if not fields.has(*required):
                continue
            target = rule(fields)
            if target is not None:
                container_name, folder_path = target
                return cls(container_name.strip().lower(), folder_path.strip().strip("/"))
        raise ValidationError("Provide 'blobUrl' and 'clientName' parameters. 'date' is optional.")


class ActivityReportRequest(NamedTuple):
    member_firm_id: str
    reporting_period: date

    @classmethod
    def from_payload(cls, payload):
        if not isinstance(payload, dict):
            raise ValidationError("Payload is required.")
        fields = {k.lower(): v for k, v in payload.items()}
        member_firm_id = fields.get("memberfirmid")
        if _blank(member_firm_id):
            raise ValidationError("MemberFirmId is required.")
        reporting_period = parse_date(fields.get("reportingperiod"))
        if reporting_period is None:
            raise ValidationError("ReportingPeriod must be a valid date.")
        return cls(str(member_firm_id).strip(), reporting_period)

    def to_dict(self):
        return {
            "memberFirmId": self.member_firm_id,
            "reportingPeriod": self.reporting_period.isoformat(),
        }


class CsvFile(NamedTuple):
    name: str
    url: str


class CombineRequest(NamedTuple):
    csv_files: list
    output_filename: str

    @classmethod
    def from_http(cls, req):
        try:
            payload = req.get_json()
        except ValueError:
            raise ValidationError("Invalid JSON payload.") from None
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload.")

        entries = payload.get("csv_files")
        if not isinstance(entries, list) or not entries:
            raise ValidationError("Payload must include a non-empty 'csv_files' array.")

        csv_files = []
        for entry in entries:
            if not isinstance(entry, dict) or _blank(entry.get("name")) or _blank(entry.get("url")):
                raise ValidationError("Each csv_files entry must contain 'name' and 'url'.")
            csv_files.append(CsvFile(str(entry["name"]), str(entry["url"])))

        output_filename = payload.get("output_filename")
        if _blank(output_filename):
            output_filename = "combined.xlsx"
        return cls(csv_files, str(output_filename).strip())
