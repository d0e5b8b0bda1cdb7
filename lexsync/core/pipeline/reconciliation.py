import logging
from typing import Dict, List, Set, Tuple
from lexsync.config.settings import ReconciliationConfig
from lexsync.core.chunk.chunker import Chunker
from lexsync.core.classify.placeholder import ContentClassifier
from lexsync.core.errors import BlobNotFound, IndexFailure, PersistenceFailure
from lexsync.core.pipeline.ingestion import IngestionPipeline
from lexsync.core.pipeline.projection import project_record
from lexsync.models.document import BlobObject, DocumentRecord, DocumentStatus, utc_now
from lexsync.models.ingestion import JobStage, SyncFailure, SyncReport, SyncStatus
from lexsync.storage.base import BlobStore, MetadataStore, SearchIndex

logger = logging.getLogger(__name__)

class ReconciliationEngine:
    """
    Read-then-repair pass over the three stores:
    1. classify blobs (placeholder vs canonical) from a bounded byte prefix
    2. backfill metadata for canonical blobs that have no row
    3. flag rows whose blob is gone (never delete them)
    4. re-project rows missing from the search index
    5. delete placeholder blobs, and only those
    Every repair is idempotent, so a second pass over unchanged stores reports zeros.
    """

    def __init__(self,
                 blob_store: BlobStore,
                 metadata_store: MetadataStore,
                 search_index: SearchIndex,
                 pipeline: IngestionPipeline,
                 classifier: ContentClassifier,
                 chunker: Chunker,
                 config: ReconciliationConfig,
                 prefix: str = "documents/"):
        self.blob_store = blob_store
        self.metadata_store = metadata_store
        self.search_index = search_index
        self.pipeline = pipeline
        self.classifier = classifier
        self.chunker = chunker
        self.config = config
        self.prefix = prefix

    def reconcile(self, dry_run: bool = False) -> SyncReport:
        report = SyncReport(dry_run=dry_run, started_at=utc_now())
        logger.info(f"Reconciliation started (dry_run={dry_run})")

        # 1. Blob inventory
        try:
            blobs = self.blob_store.list(self.prefix)
        except PersistenceFailure as e:
            return self._abort(report, "inventory", "blob_store", e)
        canonical, placeholders = self._classify(blobs, report)

        # 2. Metadata inventory
        try:
            records = self.metadata_store.list_records()
        except PersistenceFailure as e:
            return self._abort(report, "inventory", "metadata_store", e)
        by_path = {r.file_path: r for r in records}

        # 3. Canonical blobs without a row
        missing = [blob for key, blob in canonical.items() if key not in by_path]
        report.missing_metadata = len(missing)
        if not dry_run:
            for blob in missing:
                job = self.pipeline.backfill_from_blob(blob)
                if job.stage == JobStage.failed:
                    report.failures.append(SyncFailure(stage="backfill", key=blob.key, error=job.last_error or "unknown"))
                elif job.stage == JobStage.skipped:
                    report.failures.append(SyncFailure(stage="backfill", key=blob.key, error=f"skipped: {job.skip_reason}"))
                elif job.index_failed:
                    report.failures.append(SyncFailure(stage="reindex", key=blob.key, error=job.last_error or "unknown"))

        # 4. Rows without a canonical blob
        placeholder_keys = {b.key for b in placeholders}
        orphans = [r for r in records if self._is_orphan(r, canonical, placeholder_keys, report)]
        report.flagged_for_review = [r.id for r in orphans]
        newly_flagged = [r for r in orphans if not r.metadata.get("review_reason")]
        report.orphan_metadata = len(newly_flagged)
        if not dry_run:
            for record in newly_flagged:
                self._flag_orphan(record, "placeholder_blob" if record.file_path in placeholder_keys else "missing_blob", report)

        # 5. Rows missing from the search index
        if not dry_run and (missing or newly_flagged):
            try:
                records = self.metadata_store.list_records()
            except PersistenceFailure as e:
                return self._abort(report, "inventory", "metadata_store", e)
        try:
            index_ids = set(self.search_index.list_ids())
        except IndexFailure as e:
            report.failures.append(SyncFailure(stage="inventory", key="search_index", error=str(e)))
            index_ids = None
        if index_ids is not None:
            orphan_ids = {r.id for r in orphans}
            stale = [
                r for r in records
                if r.id not in index_ids
                or (r.status == DocumentStatus.processing and r.id not in orphan_ids)
            ]
            report.missing_index = len(stale)
            if not dry_run:
                for record in stale:
                    self._reindex(record, report)

        # 6. Placeholder artifacts
        if dry_run:
            report.placeholder_artifacts_removed = len(placeholders)
        else:
            report.placeholder_artifacts_removed = sum(1 for blob in placeholders if self._delete_placeholder(blob, report))

        report.finished_at = utc_now()
        logger.info(
            f"Reconciliation finished: missing_metadata={report.missing_metadata} missing_index={report.missing_index} "
            f"orphan_metadata={report.orphan_metadata} placeholders_removed={report.placeholder_artifacts_removed} "
            f"failures={len(report.failures)}"
        )
        return report

    def status(self) -> SyncStatus:
        """Cheap drift estimate: no sniffing, no repairs."""
        blob_keys = {b.key for b in self.blob_store.list(self.prefix)}
        records = self.metadata_store.list_records()
        metadata_paths = {r.file_path for r in records if r.file_path.startswith(self.prefix)}
        metadata_ids = {r.id for r in records}
        index_ids = set(self.search_index.list_ids())
        return SyncStatus(
            blob_objects=len(blob_keys),
            metadata_records=len(records),
            index_documents=len(index_ids),
            drift=len(blob_keys ^ metadata_paths) + len(metadata_ids ^ index_ids)
        )

    def _classify(self, blobs: List[BlobObject], report: SyncReport) -> Tuple[Dict[str, BlobObject], List[BlobObject]]:
        canonical: Dict[str, BlobObject] = {}
        placeholders: List[BlobObject] = []
        for blob in blobs:
            try:
                head = self.blob_store.read_prefix(blob.key, self.config.sniff_bytes)
            except BlobNotFound:
                # Deleted between list and read
                continue
            except PersistenceFailure as e:
                # Unknown content is never treated as a placeholder
                report.failures.append(SyncFailure(stage="classify", key=blob.key, error=str(e)))
                canonical[blob.key] = blob
                continue
            if self.classifier.is_placeholder(head):
                placeholders.append(blob)
            else:
                canonical[blob.key] = blob
        return canonical, placeholders

    def _is_orphan(self, record: DocumentRecord, canonical: Dict[str, BlobObject],
                   placeholder_keys: Set[str], report: SyncReport) -> bool:
        if record.file_path in canonical:
            return False
        if record.file_path in placeholder_keys or record.file_path.startswith(self.prefix):
            return True
        # Outside the listed prefix: ask the store directly
        try:
            return not self.blob_store.exists(record.file_path)
        except PersistenceFailure as e:
            report.failures.append(SyncFailure(stage="flag_orphan", key=record.file_path, error=str(e)))
            return False

    def _flag_orphan(self, record: DocumentRecord, reason: str, report: SyncReport) -> None:
        fields = {"metadata": {**record.metadata, "review_reason": reason, "flagged_at": utc_now().isoformat()}}
        if record.status == DocumentStatus.processing:
            fields["status"] = DocumentStatus.failed
        try:
            self.metadata_store.update(record.id, fields)
            logger.warning(f"Flagged {record.id} ({record.file_path}) for review: {reason}")
        except PersistenceFailure as e:
            report.failures.append(SyncFailure(stage="flag_orphan", key=record.id, error=str(e)))

    def _reindex(self, record: DocumentRecord, report: SyncReport) -> None:
        target = DocumentStatus.indexed if record.status == DocumentStatus.processing else record.status
        try:
            self.search_index.upsert(project_record(record, self.chunker, status=target))
            if target != record.status:
                self.metadata_store.update_status(record.id, target)
        except (IndexFailure, PersistenceFailure) as e:
            report.failures.append(SyncFailure(stage="reindex", key=record.id, error=str(e)))

    def _delete_placeholder(self, blob: BlobObject, report: SyncReport) -> bool:
        try:
            # Re-sniff right before the only destructive action
            if not self.classifier.is_placeholder(self.blob_store.read_prefix(blob.key, self.config.sniff_bytes)):
                logger.warning(f"{blob.key} no longer matches the placeholder marker, keeping it")
                return False
            self.blob_store.delete(blob.key)
            logger.info(f"Deleted placeholder artifact {blob.key}")
            return True
        except BlobNotFound:
            return False
        except PersistenceFailure as e:
            report.failures.append(SyncFailure(stage="delete_placeholder", key=blob.key, error=str(e)))
            return False

    @staticmethod
    def _abort(report: SyncReport, stage: str, key: str, error: Exception) -> SyncReport:
        logger.error(f"Reconciliation aborted, cannot read {key}: {error}")
        report.failures.append(SyncFailure(stage=stage, key=key, error=str(error)))
        report.finished_at = utc_now()
        return report
