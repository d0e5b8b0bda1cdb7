import hashlib
import logging
import mimetypes
import os
import re
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Optional
from lexsync.config.settings import IngestionConfig
from lexsync.core.catalog.courtlistener import CourtListenerConnector, is_usable_url
from lexsync.core.chunk.chunker import Chunker
from lexsync.core.errors import ConfigurationError, IndexFailure, PersistenceFailure, SummarizationFailure
from lexsync.core.generate.summarizer import SummarizationService
from lexsync.core.parse.extractor import ExtractionService
from lexsync.core.pipeline.projection import project_record
from lexsync.models.catalog import CatalogItem
from lexsync.models.document import BlobObject, DocumentAnalysis, DocumentRecord, DocumentStatus
from lexsync.models.ingestion import IngestionJob, IngestionStats, JobStage
from lexsync.storage.base import BlobStore, MetadataStore, SearchIndex

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9\s\-_]")
_TIMESTAMP_PREFIX = re.compile(r"^\d{10,}-")

def normalize_file_name(name: str, extension: str = ".pdf") -> str:
    """
    Natural dedup key: "Roe v. Wade, 410 U.S. 113" -> "Roe_v_Wade_410_US_113.pdf".
    """
    safe = _UNSAFE_CHARS.sub("", name or "")
    safe = re.sub(r"\s+", "_", safe)
    safe = re.sub(r"_+", "_", safe).strip("_")[:50]
    if extension and not extension.startswith("."):
        extension = f".{extension}"
    return f"{safe or 'document'}{extension.lower()}"

def title_from_key(key: str) -> str:
    """documents/1712345678901-roe_v_wade.pdf -> "Roe V Wade"."""
    stem = os.path.splitext(os.path.basename(key))[0]
    stem = _TIMESTAMP_PREFIX.sub("", stem)
    return re.sub(r"\s+", " ", re.sub(r"[_\-]", " ", stem)).strip().title() or "Untitled Document"

def catalog_metadata(item: CatalogItem) -> Dict[str, Any]:
    return {
        "ingest_source": "catalog",
        "court_listener_cluster_id": item.cluster_id,
        "court": item.court,
        "court_id": item.court_id,
        "docket_number": item.docket_number,
        "docket_id": item.docket_id,
        "date_filed": item.date_filed,
        "citation": item.citations,
        "cite_count": item.cite_count,
        "status": item.status,
        "source": item.source,
        "opinions": [a.model_dump() for a in item.artifacts],
    }

class IngestionPipeline:
    """
    Orchestrates one item through:
    fetch -> extract -> summarize -> persist -> index

    Catalog runs are split into fixed-size batches with a delay in between; items inside a
    batch run on a small thread pool. Per-item problems end up in IngestionStats, never raised.
    """

    def __init__(self,
                 blob_store: BlobStore,
                 metadata_store: MetadataStore,
                 search_index: SearchIndex,
                 extractor: ExtractionService,
                 summarizer: SummarizationService,
                 chunker: Chunker,
                 config: IngestionConfig,
                 catalog: Optional[CourtListenerConnector] = None,
                 blob_prefix: str = "documents/"):
        self.blob_store = blob_store
        self.metadata_store = metadata_store
        self.search_index = search_index
        self.extractor = extractor
        self.summarizer = summarizer
        self.chunker = chunker
        self.config = config
        self.catalog = catalog
        self.blob_prefix = blob_prefix
        self.cancel_event = threading.Event()
        # Dedup re-check + persist must not interleave between workers
        self._persist_lock = threading.Lock()

    def cancel(self) -> None:
        logger.info("Cancellation requested, no further batches will start")
        self.cancel_event.set()

    def ingest_catalog(self,
                       items: List[CatalogItem],
                       cancel_event: Optional[threading.Event] = None,
                       progress_callback: Optional[Callable[[IngestionStats], None]] = None) -> IngestionStats:
        """
        Runs every usable catalog item through the pipeline.
        Raises ConfigurationError before any work if the catalog credential is missing.
        """
        if self.catalog is None:
            raise ConfigurationError("No catalog connector configured")
        self.catalog.ensure_configured()

        if cancel_event is None:
            # A cancel only applies to the run it was issued against
            self.cancel_event.clear()
            cancel_event = self.cancel_event
        usable = [i for i in items if i.primary_artifact and is_usable_url(i.primary_artifact.download_url, i.primary_artifact.artifact_type)]
        if len(usable) < len(items):
            logger.info(f"Ignoring {len(items) - len(usable)} catalog items without a usable artifact")

        stats = IngestionStats(total=len(usable))
        batch_size = max(self.config.batch_size, 1)
        batches = [usable[i:i + batch_size] for i in range(0, len(usable), batch_size)]

        for batch_num, batch in enumerate(batches):
            if batch_num > 0:
                if cancel_event.is_set():
                    break
                logger.info(f"Waiting {self.config.batch_delay}s before batch {batch_num + 1}/{len(batches)}")
                time.sleep(self.config.batch_delay)
            if cancel_event.is_set():
                break

            logger.info(f"Processing batch {batch_num + 1}/{len(batches)} ({len(batch)} items)")
            for job in self._run_batch(batch, self._process_catalog_item):
                self._record(stats, job)
            if progress_callback:
                progress_callback(stats)

        stats.cancelled = cancel_event.is_set()
        logger.info(
            f"Ingestion finished: total={stats.total} downloaded={stats.downloaded} processed={stats.processed} "
            f"failed={stats.failed} skipped={stats.skipped_unavailable} duplicates={stats.duplicates}"
            + (" (cancelled)" if stats.cancelled else "")
        )
        return stats

    def ingest_upload(self, data: bytes, file_name: str, content_type: str = "",
                      title: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> IngestionJob:
        stem, extension = os.path.splitext(os.path.basename(file_name))
        content_type = content_type or mimetypes.guess_type(file_name)[0] or "application/octet-stream"
        job = IngestionJob(source=file_name, stage=JobStage.extracting)
        try:
            self._process_bytes(
                job, data,
                file_name=normalize_file_name(stem, extension or ".pdf"),
                content_type=content_type,
                title=title or stem,
                metadata={"ingest_source": "upload", "original_file_name": file_name, **(metadata or {})}
            )
        except Exception as e:
            self._fail(job, e)
        return job

    def backfill_from_blob(self, blob: BlobObject) -> IngestionJob:
        """
        Builds the metadata row (and index entry) for a blob that has none.
        The bytes already live in the blob store, so fetching and uploading are skipped.
        """
        job = IngestionJob(source=blob.key, stage=JobStage.extracting)
        try:
            data = self.blob_store.download(blob.key)
            base_name = os.path.basename(blob.key)
            file_name = self._backfill_file_name(blob.key)
            content_type = blob.content_type
            if not content_type or content_type == "application/octet-stream":
                content_type = mimetypes.guess_type(base_name)[0] or "application/octet-stream"
            self._process_bytes(
                job, data,
                file_name=file_name,
                content_type=content_type,
                title=title_from_key(blob.key),
                metadata={"ingest_source": "blob_sync", "blob_synced": True},
                existing_key=blob.key
            )
        except Exception as e:
            self._fail(job, e)
        return job

    def _backfill_file_name(self, key: str) -> str:
        """
        Picks a dedup name for a blob without a row: the timestamp-stripped name, then the
        timestamped stem, then a name carrying a digest of the key. Two blobs never share the last one.
        """
        stem, extension = os.path.splitext(os.path.basename(key))
        plain = _TIMESTAMP_PREFIX.sub("", stem)
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:10]
        candidates = [
            normalize_file_name(plain, extension),
            normalize_file_name(stem, extension),
            normalize_file_name(f"{digest}_{plain}", extension),
        ]
        for file_name in candidates:
            existing = self.metadata_store.find_by_file_name(file_name)
            if existing is None or existing.file_path == key:
                return file_name
        return candidates[-1]

    def retry_failed(self) -> IngestionStats:
        """Failed rows whose blob still exists re-enter processing and are rebuilt in place."""
        failed = self.metadata_store.list_records(status=DocumentStatus.failed)
        stats = IngestionStats(total=len(failed))
        for record in failed:
            job = IngestionJob(source=record.file_path, stage=JobStage.fetching, document_id=record.id)
            reopened = False
            try:
                if not self.blob_store.exists(record.file_path):
                    job.stage = JobStage.skipped
                    job.skip_reason = "unavailable"
                    self._record(stats, job)
                    continue
                data = self.blob_store.download(record.file_path)
                job.stage = JobStage.persisting
                self.metadata_store.update_status(record.id, DocumentStatus.processing)
                reopened = True

                job.stage = JobStage.extracting
                extraction = self.extractor.extract(data, record.file_type, record.file_name)
                job.stage = JobStage.summarizing
                analysis = self._analyze(extraction.text, record.file_name)

                job.stage = JobStage.persisting
                metadata = {k: v for k, v in record.metadata.items() if k != "review_reason"}
                metadata.update(self._extraction_metadata(extraction, analysis))
                updated = self.metadata_store.update(record.id, {
                    "extracted_text": extraction.text,
                    "summary": analysis.summary,
                    "metadata": metadata,
                })
                self._index(job, updated)
            except Exception as e:
                self._fail(job, e)
                if reopened:
                    self._restore_failed(record.id)
            self._record(stats, job)
        return stats

    def _restore_failed(self, document_id: str) -> None:
        # A reopened row left `processing` would be promoted to `indexed` by reconciliation
        try:
            self.metadata_store.update_status(document_id, DocumentStatus.failed)
        except PersistenceFailure as e:
            logger.error(f"Could not return {document_id} to failed: {e}")

    def _run_batch(self, batch: List[Any], worker: Callable[[Any], IngestionJob]) -> List[IngestionJob]:
        jobs = []
        with ThreadPoolExecutor(max_workers=max(1, min(self.config.max_workers, len(batch)))) as executor:
            futures = {executor.submit(worker, item): item for item in batch}
            for future in as_completed(futures):
                jobs.append(future.result())
        return jobs

    def _process_catalog_item(self, item: CatalogItem) -> IngestionJob:
        job = IngestionJob(source=item.reference)
        try:
            file_name = normalize_file_name(item.case_name, ".pdf")
            # Cheap pre-check so known documents are not downloaded again
            if self.metadata_store.find_by_file_name(file_name):
                return self._skip(job, "duplicate")

            job.attempts += 1
            data = self.catalog.download(item)
            if data is None:
                return self._skip(job, "unavailable")
            job.downloaded = True

            self._process_bytes(
                job, data,
                file_name=file_name,
                content_type="application/pdf",
                title=item.case_name or file_name,
                metadata=catalog_metadata(item)
            )
        except Exception as e:
            self._fail(job, e)
        return job

    def _process_bytes(self, job: IngestionJob, data: bytes, file_name: str, content_type: str,
                       title: str, metadata: Dict[str, Any], existing_key: Optional[str] = None) -> None:
        # 1. Extracting (soft-fail: empty text)
        job.stage = JobStage.extracting
        extraction = self.extractor.extract(data, content_type, file_name)

        # 2. Summarizing (soft-fail: sentinel summary)
        job.stage = JobStage.summarizing
        analysis = self._analyze(extraction.text, file_name)

        # 3. Persisting
        job.stage = JobStage.persisting
        with self._persist_lock:
            if self.metadata_store.find_by_file_name(file_name):
                self._skip(job, "duplicate")
                return
            key = existing_key or f"{self.blob_prefix}{int(time.time() * 1000)}-{file_name}"
            if existing_key is None:
                self.blob_store.upload(data, key, content_type)
            record = DocumentRecord(
                id=str(uuid.uuid4()),
                title=title,
                file_name=file_name,
                file_path=key,
                file_type=content_type,
                status=DocumentStatus.processing,
                extracted_text=extraction.text,
                summary=analysis.summary,
                metadata={**metadata, **self._extraction_metadata(extraction, analysis)}
            )
            record = self.metadata_store.insert(record)
        job.document_id = record.id
        logger.info(f"Persisted {job.source} as {record.id} ({key})")

        # 4. Indexing
        self._index(job, record)

    def _index(self, job: IngestionJob, record: DocumentRecord) -> None:
        job.stage = JobStage.indexing
        try:
            self.search_index.upsert(project_record(record, self.chunker, status=DocumentStatus.indexed))
            self.metadata_store.update_status(record.id, DocumentStatus.indexed)
        except Exception as e:
            # Row is already persisted and stays `processing`; reconciliation re-projects it
            if isinstance(e, (IndexFailure, PersistenceFailure)):
                logger.error(f"Indexing failed for {record.id}: {e}")
            else:
                logger.exception(f"Unexpected indexing failure for {record.id}")
            job.index_failed = True
            job.last_error = str(e)
        job.stage = JobStage.done

    def _analyze(self, text: str, name: str) -> DocumentAnalysis:
        if not text.strip():
            return self.summarizer.unavailable()
        try:
            return self.summarizer.analyze(text)
        except SummarizationFailure as e:
            logger.warning(f"Summarization failed for {name}: {e}")
            return self.summarizer.unavailable()

    @staticmethod
    def _extraction_metadata(extraction, analysis: DocumentAnalysis) -> Dict[str, Any]:
        return {
            "extraction_method": extraction.method,
            "page_count": extraction.page_count,
            "analysis": analysis.model_dump(mode="json"),
        }

    @staticmethod
    def _skip(job: IngestionJob, reason: str) -> IngestionJob:
        logger.info(f"Skipping {job.source}: {reason}")
        job.stage = JobStage.skipped
        job.skip_reason = reason
        return job

    @staticmethod
    def _fail(job: IngestionJob, error: Exception) -> None:
        if isinstance(error, PersistenceFailure):
            logger.error(f"[{job.source}] failed at {job.stage.value}: {error}")
        else:
            logger.exception(f"[{job.source}] unexpected failure at {job.stage.value}")
        job.last_error = f"{type(error).__name__}: {error}"
        job.stage = JobStage.failed

    @staticmethod
    def _record(stats: IngestionStats, job: IngestionJob) -> None:
        if job.downloaded:
            stats.downloaded += 1
        if job.stage == JobStage.done:
            stats.processed += 1
            if job.index_failed:
                stats.index_failures += 1
        elif job.stage == JobStage.failed:
            stats.failed += 1
            stats.errors.append(f"{job.source}: {job.last_error}")
        elif job.skip_reason == "duplicate":
            stats.duplicates += 1
        elif job.skip_reason == "unavailable":
            stats.skipped_unavailable += 1
