import logging
from fastapi import APIRouter, Depends, HTTPException, Request

from lexsync.core.errors import LexSyncError
from lexsync.core.pipeline.cleanup import PlaceholderCleanup
from lexsync.core.pipeline.reconciliation import ReconciliationEngine
from lexsync.models.ingestion import CleanupReport, PurgeResult, SyncReport, SyncStatus

router = APIRouter()
logger = logging.getLogger(__name__)

def get_reconciliation(request: Request) -> ReconciliationEngine:
    return request.app.state.services.reconciliation

def get_cleanup(request: Request) -> PlaceholderCleanup:
    return request.app.state.services.cleanup

@router.post("/sync", response_model=SyncReport, summary="Run one reconciliation pass across blob, metadata and index stores")
def run_sync(dry_run: bool = False, engine: ReconciliationEngine = Depends(get_reconciliation)):
    # Per-item problems come back in report.failures; only unexpected errors reach the except
    try:
        return engine.reconcile(dry_run=dry_run)
    except Exception as e:
        logger.exception("Reconciliation crashed")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/sync/status", response_model=SyncStatus, summary="Store counts and a drift estimate")
def sync_status(engine: ReconciliationEngine = Depends(get_reconciliation)):
    try:
        return engine.status()
    except LexSyncError as e:
        logger.error(f"Sync status unavailable: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/cleanup/analysis", response_model=CleanupReport, summary="Count placeholder artifacts without deleting anything")
def cleanup_analysis(cleanup: PlaceholderCleanup = Depends(get_cleanup)):
    try:
        return cleanup.analyze()
    except LexSyncError as e:
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/cleanup/purge", response_model=PurgeResult, summary="Delete blobs whose content carries the placeholder marker")
def cleanup_purge(cleanup: PlaceholderCleanup = Depends(get_cleanup)):
    try:
        return cleanup.purge()
    except LexSyncError as e:
        raise HTTPException(status_code=500, detail=str(e))
