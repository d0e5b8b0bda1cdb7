import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Request

from lexsync.core.errors import PersistenceFailure
from lexsync.core.pipeline.ingestion import IngestionPipeline
from lexsync.models.document import DocumentRecord, DocumentStatus
from lexsync.models.ingestion import IngestionStats
from lexsync.storage.base import MetadataStore

router = APIRouter()
logger = logging.getLogger(__name__)

def get_metadata_store(request: Request) -> MetadataStore:
    return request.app.state.services.metadata_store

def get_ingestion_pipeline(request: Request) -> IngestionPipeline:
    return request.app.state.services.pipeline

@router.get("/documents", response_model=List[DocumentRecord], summary="List document records, optionally by status")
def list_documents(status: Optional[DocumentStatus] = None, store: MetadataStore = Depends(get_metadata_store)):
    try:
        return store.list_records(status=status)
    except PersistenceFailure:
        logger.exception("Failed to list documents.")
        raise HTTPException(status_code=500, detail="Could not retrieve documents from the metadata store.")

@router.get("/documents/{doc_id}", response_model=DocumentRecord, summary="Get one document record")
def get_document(doc_id: str, store: MetadataStore = Depends(get_metadata_store)):
    try:
        record = store.get(doc_id)
    except PersistenceFailure:
        logger.exception(f"Failed to load document {doc_id}.")
        raise HTTPException(status_code=500, detail="Could not reach the metadata store.")
    if record is None:
        raise HTTPException(status_code=404, detail="Document not found.")
    return record

@router.post("/documents/retry-failed", response_model=IngestionStats, summary="Re-run failed documents whose blob still exists")
def retry_failed(pipeline: IngestionPipeline = Depends(get_ingestion_pipeline)):
    try:
        return pipeline.retry_failed()
    except PersistenceFailure as e:
        logger.exception("Retry of failed documents could not start.")
        raise HTTPException(status_code=500, detail=str(e))
