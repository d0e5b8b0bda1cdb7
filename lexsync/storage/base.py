from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from lexsync.core.errors import BlobNotFound
from lexsync.models.document import BlobObject, DocumentRecord, DocumentStatus, IndexDocument
from lexsync.models.search import SearchFilters, SearchResponse

class BlobStore(ABC):
    """Raw document bytes. Single source of truth for content; keys are caller-supplied."""

    @abstractmethod
    def upload(self, data: bytes, key: str, content_type: str = "application/pdf") -> str:
        pass

    @abstractmethod
    def download(self, key: str) -> bytes:
        pass

    @abstractmethod
    def list(self, prefix: str = "") -> List[BlobObject]:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Idempotent: deleting a missing key succeeds."""
        pass

    def read_prefix(self, key: str, length: int) -> bytes:
        return self.download(key)[:length]

    def exists(self, key: str) -> bool:
        try:
            self.read_prefix(key, 1)
            return True
        except BlobNotFound:
            return False

class MetadataStore(ABC):
    @abstractmethod
    def insert(self, record: DocumentRecord) -> DocumentRecord:
        pass

    @abstractmethod
    def get(self, doc_id: str) -> Optional[DocumentRecord]:
        pass

    @abstractmethod
    def find_by_file_name(self, file_name: str) -> Optional[DocumentRecord]:
        pass

    @abstractmethod
    def list_records(self, status: Optional[DocumentStatus] = None) -> List[DocumentRecord]:
        pass

    @abstractmethod
    def update(self, doc_id: str, fields: Dict[str, Any]) -> DocumentRecord:
        """Updates the given columns. A `status` key is checked against the allowed transitions."""
        pass

    def update_status(self, doc_id: str, status: DocumentStatus) -> DocumentRecord:
        return self.update(doc_id, {"status": status})

class SearchIndex(ABC):
    @abstractmethod
    def ensure_schema(self) -> None:
        pass

    @abstractmethod
    def upsert(self, doc: IndexDocument) -> None:
        pass

    @abstractmethod
    def get(self, doc_id: str) -> Optional[IndexDocument]:
        pass

    @abstractmethod
    def list_ids(self) -> List[str]:
        pass

    @abstractmethod
    def delete(self, doc_id: str) -> None:
        pass

    @abstractmethod
    def search(self, query: str, filters: Optional[SearchFilters] = None, size: int = 10) -> SearchResponse:
        """Read path used by the UI. Returns a degraded empty response instead of raising."""
        pass

    @abstractmethod
    def suggest(self, prefix: str, size: int = 5) -> List[str]:
        pass
