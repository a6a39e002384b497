# CSV merge functions: CSV blobs -> one xlsx workbook, delivered over HTTP,
# back to blob storage, or to SharePoint.
import azure.durable_functions as df
import azure.functions as func
import logging
from functools import lru_cache

from csv_merge import handlers, orchestration
from csv_merge.config import Settings
from csv_merge.errors import ValidationError
from csv_merge.secrets import SecretStore
from csv_merge.storage import get_blob_service_client
from csv_merge.upload import create_http_session

# --- CONFIGURATION ---
app = df.DFApp(http_auth_level=func.AuthLevel.FUNCTION)

logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.WARNING)


# Process-scoped clients, created on first use and shared by every invocation.
@lru_cache(maxsize=None)
def get_settings():
    return Settings.from_env()


@lru_cache(maxsize=None)
def get_blob_service():
    return get_blob_service_client(get_settings())


@lru_cache(maxsize=None)
def get_http_session():
    return create_http_session()


@lru_cache(maxsize=None)
def get_secret_store():
    return SecretStore(get_settings().key_vault_uri)


@app.function_name(name="Health")
@app.route(route="health", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
def health(req: func.HttpRequest) -> func.HttpResponse:
    return func.HttpResponse(status_code=200)


@app.function_name(name="MergeCsv")
@app.route(route="MergeCsv", methods=["GET", "POST"])
def merge_csv(req: func.HttpRequest) -> func.HttpResponse:
    logging.info("MergeCsv triggered")
    return handlers.merge_daily(req, get_blob_service)


@app.function_name(name="MergeCsvFolder")
@app.route(route="MergeCsvFolder", methods=["POST"], auth_level=func.AuthLevel.ANONYMOUS)
def merge_csv_folder(req: func.HttpRequest) -> func.HttpResponse:
    logging.info("MergeCsvFolder triggered")
    return handlers.merge_folder(req, get_blob_service, get_settings)


@app.function_name(name="CombineCsvToSharePoint")
@app.route(route="combine-csvs", methods=["POST"])
def combine_csvs(req: func.HttpRequest) -> func.HttpResponse:
    logging.info("CombineCsvToSharePoint triggered")
    return handlers.combine_csvs(req, get_settings, get_http_session)


# --- ACTIVITY REPORTS (durable) ---

@app.function_name(name="StartActivityReports")
@app.route(route="activity-reports", methods=["POST"])
@app.durable_client_input(client_name="client")
async def start_activity_reports(req: func.HttpRequest, client) -> func.HttpResponse:
    try:
        request = handlers.parse_activity_report_request(req)
    except ValidationError as exc:
        return handlers.error_response(exc)

    try:
        instance_id = await client.start_new(orchestration.ORCHESTRATOR_NAME, None, request.to_dict())
        logging.info(f"Started {orchestration.ORCHESTRATOR_NAME} with ID = {instance_id}")
        return client.create_check_status_response(req, instance_id)
    except Exception as exc:
        return handlers.error_response(exc)


@app.function_name(name=orchestration.ORCHESTRATOR_NAME)
@app.orchestration_trigger(context_name="context")
def activity_reports_orchestrator(context: df.DurableOrchestrationContext):
    return (yield from orchestration.run_activity_reports(context))


@app.function_name(name=orchestration.COMBINE_ACTIVITY)
@app.activity_trigger(input_name="request")
def combine_activity_reports(request: dict) -> dict:
    return orchestration.combine_activity(request, get_settings(), get_secret_store())


@app.function_name(name=orchestration.UPLOAD_ACTIVITY)
@app.activity_trigger(input_name="reportFile")
def upload_activity_reports_to_sharepoint(reportFile: dict) -> str:
    return orchestration.upload_activity(reportFile, get_settings(), get_secret_store(), get_http_session())
