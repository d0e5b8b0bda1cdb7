from datetime import datetime, timezone
from enum import Enum
from typing import Any
from pydantic import BaseModel, Field

from lexsync.core.errors import InvalidStatusTransition

class DocumentStatus(str, Enum):
    processing = "processing"
    indexed = "indexed"
    failed = "failed"

class PiiStatus(str, Enum):
    pending = "pending"
    detected = "detected"
    redacted = "redacted"
    clean = "clean"

# processing -> indexed | failed, failed -> processing (retry)
_ALLOWED_TRANSITIONS = {
    (DocumentStatus.processing, DocumentStatus.indexed),
    (DocumentStatus.processing, DocumentStatus.failed),
    (DocumentStatus.failed, DocumentStatus.processing),
}

def check_transition(current: DocumentStatus, target: DocumentStatus) -> None:
    current, target = DocumentStatus(current), DocumentStatus(target)
    if current == target:
        return
    if (current, target) not in _ALLOWED_TRANSITIONS:
        raise InvalidStatusTransition(f"Status cannot move from {current.value} to {target.value}")

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

class DocumentRecord(BaseModel):
    id: str
    title: str
    file_name: str                   # normalized natural key used for dedup
    file_path: str                   # BlobStore key, unique
    file_type: str                   # MIME type
    status: DocumentStatus = DocumentStatus.processing
    pii_status: PiiStatus = PiiStatus.pending
    extracted_text: str | None = None
    summary: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    user_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

class BlobObject(BaseModel):
    key: str
    size: int = 0
    content_type: str = "application/octet-stream"
    updated_at: datetime | None = None

class DocumentChunk(BaseModel):
    text: str
    chunk_index: int
    token_count: int
    page_number: int | None = None

class LegalEntity(BaseModel):
    type: str
    value: str
    confidence: float = 0.5

class CaseCitation(BaseModel):
    citation: str
    court: str | None = None
    date: str | None = None

class DocumentAnalysis(BaseModel):
    """Output of the summarization service, kept under DocumentRecord.metadata['analysis']."""
    summary: str
    legal_entities: list[LegalEntity] = Field(default_factory=list)
    case_citations: list[CaseCitation] = Field(default_factory=list)
    legal_concepts: list[str] = Field(default_factory=list)
    confidence: float = 0.0

class IndexDocument(BaseModel):
    id: str
    user_id: str | None = None
    title: str
    file_name: str
    file_type: str
    status: str
    content: str = ""
    summary: str = ""
    created_at: datetime
    updated_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)
    chunks: list[DocumentChunk] = Field(default_factory=list)
    legal_entities: list[LegalEntity] = Field(default_factory=list)
    case_citations: list[CaseCitation] = Field(default_factory=list)
    legal_concepts: list[str] = Field(default_factory=list)
