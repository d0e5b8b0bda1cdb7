from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field

class JobStage(str, Enum):
    fetching = "fetching"
    extracting = "extracting"
    summarizing = "summarizing"
    persisting = "persisting"
    indexing = "indexing"
    done = "done"
    failed = "failed"
    skipped = "skipped"

class IngestionJob(BaseModel):
    """Ephemeral per-item state. Lives only for the duration of a pipeline run."""
    source: str                      # catalog item reference or upload file name
    stage: JobStage = JobStage.fetching
    attempts: int = 0
    last_error: str | None = None
    document_id: str | None = None
    index_failed: bool = False
    downloaded: bool = False
    skip_reason: str | None = None   # "unavailable" | "duplicate"

class IngestionStats(BaseModel):
    total: int = 0
    downloaded: int = 0
    processed: int = 0
    failed: int = 0
    skipped_unavailable: int = 0
    duplicates: int = 0
    index_failures: int = 0
    cancelled: bool = False
    errors: list[str] = Field(default_factory=list)

class RunState(str, Enum):
    queued = "queued"
    running = "running"
    completed = "completed"
    cancelled = "cancelled"
    failed = "failed"

class IngestionRun(BaseModel):
    run_id: str
    state: RunState
    stats: IngestionStats = Field(default_factory=IngestionStats)
    message: str = ""
    created_at: str
    completed_at: str | None = None

class SyncFailure(BaseModel):
    stage: str                       # "classify" | "backfill" | "flag_orphan" | "reindex" | "delete_placeholder" | "inventory"
    key: str
    error: str

class SyncReport(BaseModel):
    missing_metadata: int = 0
    missing_index: int = 0
    orphan_metadata: int = 0
    placeholder_artifacts_removed: int = 0
    flagged_for_review: list[str] = Field(default_factory=list)
    failures: list[SyncFailure] = Field(default_factory=list)
    dry_run: bool = False
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def is_converged(self) -> bool:
        return (self.missing_metadata == 0 and self.missing_index == 0
                and self.orphan_metadata == 0 and self.placeholder_artifacts_removed == 0)

class SyncStatus(BaseModel):
    blob_objects: int
    metadata_records: int
    index_documents: int
    drift: int

class CleanupReport(BaseModel):
    total_files: int = 0
    canonical_files: int = 0
    legacy_text_files: int = 0
    placeholder_files: int = 0
    real_text_files: int = 0

class PurgeResult(BaseModel):
    deleted: int = 0
    errors: list[str] = Field(default_factory=list)
