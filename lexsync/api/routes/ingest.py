import logging
import threading
import uuid
from typing import Optional
from datetime import datetime, timezone
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Request, UploadFile

from lexsync.core.container import Services
from lexsync.core.errors import CatalogError, ConfigurationError
from lexsync.models.catalog import CatalogFilters
from lexsync.models.ingestion import IngestionJob, IngestionRun, IngestionStats, JobStage, RunState

router = APIRouter()
logger = logging.getLogger(__name__)

def get_services(request: Request) -> Services:
    return request.app.state.services

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()

@router.post("/ingest/catalog", response_model=IngestionRun, summary="Search the catalog and ingest the results in the background")
def ingest_catalog(
    filters: CatalogFilters,
    request: Request,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services)
):
    """
    1. Fails fast (400) when the catalog credential is missing.
    2. Registers a run in the in-memory run registry.
    3. Dispatches search + ingestion to BackgroundTasks and returns immediately.
    """
    try:
        services.catalog.ensure_configured()
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    run_id = str(uuid.uuid4())
    runs = request.app.state.runs
    cancel_event = threading.Event()
    request.app.state.cancel_events[run_id] = cancel_event
    run = IngestionRun(run_id=run_id, state=RunState.queued, message="Queued for processing", created_at=_now())
    runs[run_id] = run

    def progress_callback(stats: IngestionStats):
        run.stats = stats.model_copy()
        run.message = f"{stats.processed}/{stats.total} processed"

    def run_ingestion():
        run.state = RunState.running
        try:
            items = services.catalog.search(filters)
            run.message = f"Found {len(items)} downloadable items"
            stats = services.pipeline.ingest_catalog(items, cancel_event=cancel_event, progress_callback=progress_callback)
            run.stats = stats
            run.state = RunState.cancelled if stats.cancelled else RunState.completed
            run.message = "Cancelled at batch boundary" if stats.cancelled else "Ingestion completed"
        except (CatalogError, ConfigurationError) as e:
            logger.error(f"Catalog ingestion run {run_id} failed: {e}")
            run.state = RunState.failed
            run.message = str(e)
        except Exception as e:
            logger.exception(f"Catalog ingestion run {run_id} crashed")
            run.state = RunState.failed
            run.message = f"Error: {e}"
        finally:
            run.completed_at = _now()
            request.app.state.cancel_events.pop(run_id, None)

    background_tasks.add_task(run_ingestion)
    return run

@router.post("/ingest/upload", response_model=IngestionJob, summary="Upload one document and run it through the pipeline")
def ingest_upload(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    services: Services = Depends(get_services)
):
    try:
        data = file.file.read()
    finally:
        file.file.close()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")

    job = services.pipeline.ingest_upload(data, file.filename or "document.pdf", file.content_type or "", title=title)
    if job.stage == JobStage.failed:
        raise HTTPException(status_code=500, detail=job.last_error or "Ingestion failed")
    return job

@router.get("/ingest/status/{run_id}", response_model=IngestionRun, summary="Get the status of a catalog ingestion run")
def get_ingest_status(run_id: str, request: Request):
    runs = request.app.state.runs
    if run_id not in runs:
        raise HTTPException(status_code=404, detail="Run ID not found.")
    return runs[run_id]

@router.post("/ingest/cancel/{run_id}", response_model=IngestionRun, summary="Stop a run after its current batch")
def cancel_ingest(run_id: str, request: Request):
    runs = request.app.state.runs
    if run_id not in runs:
        raise HTTPException(status_code=404, detail="Run ID not found.")
    event = request.app.state.cancel_events.get(run_id)
    if event is not None:
        event.set()
        runs[run_id].message = "Cancellation requested"
    return runs[run_id]
