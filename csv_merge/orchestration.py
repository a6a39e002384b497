import logging

from . import services
from .merge_request import ActivityReportRequest

ORCHESTRATOR_NAME = "ActivityReportsOrchestrator"
COMBINE_ACTIVITY = "CombineActivityReports"
UPLOAD_ACTIVITY = "UploadActivityReportsToSharePoint"


def run_activity_reports(context):
    """Combine then upload; the upload never starts before the combine result exists."""
    request = context.get_input()
    if not request:
        raise ValueError("Orchestration input was missing.")
    if not context.is_replaying:
        logging.info(f"Starting activity report orchestration for {request.get('memberFirmId')}.")

    report_file = yield context.call_activity(COMBINE_ACTIVITY, request)
    sharepoint_location = yield context.call_activity(UPLOAD_ACTIVITY, report_file)

    return {
        "blobUri": report_file["blobUri"],
        "fileName": report_file["fileName"],
        "sharePointLocation": sharepoint_location,
    }


def combine_activity(payload, settings, secret_store):
    request = ActivityReportRequest.from_payload(payload)
    logging.info(
        f"Combining activity report for member firm {request.member_firm_id} "
        f"with period {request.reporting_period.isoformat()}"
    )
    return services.build_activity_report(settings, secret_store, request).to_dict()


def upload_activity(payload, settings, secret_store, session):
    location = services.ReportFileLocation.from_dict(payload)
    logging.info(f"Uploading report {location.file_name} to SharePoint.")
    return services.upload_activity_report(settings, secret_store, session, location)
