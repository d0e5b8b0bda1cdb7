import logging
from typing import List, Tuple
from lexsync.core.classify.placeholder import ContentClassifier
from lexsync.core.errors import BlobNotFound, PersistenceFailure
from lexsync.models.document import BlobObject
from lexsync.models.ingestion import CleanupReport, PurgeResult
from lexsync.storage.base import BlobStore

logger = logging.getLogger(__name__)

def _is_legacy_text(blob: BlobObject) -> bool:
    return blob.key.lower().endswith(".txt") or blob.content_type.startswith("text/plain")

class PlaceholderCleanup:
    """
    One-time migration tool for placeholder text artifacts written by older ingestion runs.
    Classification is by content marker; the extension only feeds the report.
    """

    def __init__(self, blob_store: BlobStore, classifier: ContentClassifier, sniff_bytes: int = 512, prefix: str = ""):
        self.blob_store = blob_store
        self.classifier = classifier
        self.sniff_bytes = sniff_bytes
        self.prefix = prefix

    def analyze(self) -> CleanupReport:
        blobs, placeholders, _ = self._scan()
        legacy = [b for b in blobs if _is_legacy_text(b)]
        placeholder_keys = {b.key for b in placeholders}
        return CleanupReport(
            total_files=len(blobs),
            canonical_files=len(blobs) - len(placeholders),
            legacy_text_files=len(legacy),
            placeholder_files=len(placeholders),
            real_text_files=len([b for b in legacy if b.key not in placeholder_keys])
        )

    def purge(self) -> PurgeResult:
        _, placeholders, errors = self._scan()
        result = PurgeResult(errors=errors)
        for blob in placeholders:
            try:
                self.blob_store.delete(blob.key)
                result.deleted += 1
                logger.info(f"Deleted placeholder: {blob.key}")
            except PersistenceFailure as e:
                result.errors.append(f"{blob.key}: {e}")
        logger.info(f"Placeholder purge finished: deleted={result.deleted} errors={len(result.errors)}")
        return result

    def _scan(self) -> Tuple[List[BlobObject], List[BlobObject], List[str]]:
        blobs = self.blob_store.list(self.prefix)
        placeholders, errors = [], []
        for blob in blobs:
            try:
                head = self.blob_store.read_prefix(blob.key, self.sniff_bytes)
            except BlobNotFound:
                continue
            except PersistenceFailure as e:
                errors.append(f"{blob.key}: {e}")
                continue
            if self.classifier.is_placeholder(head):
                placeholders.append(blob)
        return blobs, placeholders, errors
