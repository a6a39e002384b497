import json
import logging
import traceback

import azure.functions as func

from . import services
from .config import XLSX_CONTENT_TYPE, Settings
from .errors import MergeError
from .merge_request import (ActivityReportRequest, CombineRequest,
                            DailyMergeRequest, FolderMergeRequest,
                            RequestFields, read_json_body)


def error_response(exc):
    """Map a failure to the response the caller sees.

    MergeError subclasses carry their own status; anything else is a 500.
    """
    if isinstance(exc, MergeError):
        if exc.status_code >= 500:
            logging.error(f"[ERROR] {type(exc).__name__}: {exc}")
        else:
            logging.warning(f"{type(exc).__name__}: {exc}")
        return func.HttpResponse(str(exc), status_code=exc.status_code)

    logging.error("[FATAL] HTTP function failed.")
    logging.error(traceback.format_exc())
    return func.HttpResponse("Failed", status_code=500)


def workbook_response(merged):
    return func.HttpResponse(
        body=merged.content,
        status_code=200,
        mimetype=XLSX_CONTENT_TYPE,
        headers={"Content-Disposition": f"attachment; filename={merged.file_name}"},
    )


def merge_daily(req, get_blob_service):
    try:
        request = DailyMergeRequest.from_fields(RequestFields.from_http(req, query_first=True))
        merged = services.merge_daily(get_blob_service(), request)
        logging.info(f"[SUCCESS] {merged.file_name}: {len(merged.sheets)} sheets")
        return workbook_response(merged)
    except Exception as exc:
        return error_response(exc)


def merge_folder(req, get_blob_service, get_settings=Settings):
    try:
        default_container = get_settings().reports_container
        request = FolderMergeRequest.from_fields(RequestFields.from_http(req), default_container)
        merged = services.merge_folder(get_blob_service(), request)
        logging.info(f"[SUCCESS] {merged.file_name}: {len(merged.sheets)} sheets, saved to {merged.blob_url}")
        return workbook_response(merged)
    except Exception as exc:
        return error_response(exc)


def combine_csvs(req, get_settings, get_session):
    try:
        request = CombineRequest.from_http(req)
        logging.info(f"[START] Combining {len(request.csv_files)} CSV files into {request.output_filename}")
        result = services.combine_to_sharepoint(get_settings(), get_session(), request)
        return func.HttpResponse(json.dumps(result), status_code=200, mimetype="application/json")
    except Exception as exc:
        return error_response(exc)


def parse_activity_report_request(req):
    """Validated orchestration input, or raises ValidationError."""
    return ActivityReportRequest.from_payload(read_json_body(req))
