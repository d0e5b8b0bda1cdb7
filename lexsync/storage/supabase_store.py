import logging
from typing import Any, Dict, List, Optional
import httpx
from lexsync.config.settings import MetadataStoreConfig
from lexsync.core.errors import ConfigurationError, PersistenceFailure
from lexsync.models.document import DocumentRecord, DocumentStatus, check_transition, utc_now
from lexsync.storage.base import MetadataStore

logger = logging.getLogger(__name__)

class SupabaseMetadataStore(MetadataStore):
    """
    Implements MetadataStore over Supabase's PostgREST endpoint (/rest/v1/legal_documents).
    Uses the service-role key, so row-level security does not hide rows from sync jobs.
    """

    def __init__(self, config: MetadataStoreConfig, service_key: str, client: Optional[httpx.Client] = None):
        if not config.supabase_url or not service_key:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required for the supabase metadata store")
        self.config = config
        self.url = f"{config.supabase_url.rstrip('/')}/rest/v1/{config.table}"
        self.headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }
        self.client = client or httpx.Client(timeout=config.timeout)

    def _request(self, method: str, params: Optional[Dict[str, str]] = None, json: Any = None,
                 prefer: Optional[str] = None) -> List[Dict[str, Any]]:
        headers = dict(self.headers)
        if prefer:
            headers["Prefer"] = prefer
        try:
            response = self.client.request(method, self.url, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise PersistenceFailure(f"Supabase unreachable: {e}") from e
        if response.status_code >= 400:
            raise PersistenceFailure(f"Supabase rejected {method}: {response.status_code} {response.text[:200]}")
        if not response.content:
            return []
        return response.json()

    def insert(self, record: DocumentRecord) -> DocumentRecord:
        payload = record.model_dump(mode="json")
        payload["user_id"] = record.user_id or self.config.owner_id
        rows = self._request("POST", json=payload, prefer="return=representation")
        return DocumentRecord(**rows[0]) if rows else record

    def get(self, doc_id: str) -> Optional[DocumentRecord]:
        rows = self._request("GET", params={"id": f"eq.{doc_id}", "limit": "1"})
        return DocumentRecord(**rows[0]) if rows else None

    def find_by_file_name(self, file_name: str) -> Optional[DocumentRecord]:
        rows = self._request("GET", params={"file_name": f"eq.{file_name}", "limit": "1"})
        return DocumentRecord(**rows[0]) if rows else None

    def list_records(self, status: Optional[DocumentStatus] = None) -> List[DocumentRecord]:
        params = {"select": "*", "order": "created_at.asc"}
        if status is not None:
            params["status"] = f"eq.{DocumentStatus(status).value}"
        return [DocumentRecord(**row) for row in self._request("GET", params=params)]

    def update(self, doc_id: str, fields: Dict[str, Any]) -> DocumentRecord:
        current = self.get(doc_id)
        if current is None:
            raise PersistenceFailure(f"Document {doc_id} not found")
        payload = dict(fields)
        params = {"id": f"eq.{doc_id}"}
        if "status" in payload:
            target = DocumentStatus(payload["status"])
            check_transition(current.status, target)
            payload["status"] = target.value
            # Guard against a concurrent writer moving the row in between
            params["status"] = f"eq.{current.status.value}"
        if "pii_status" in payload:
            payload["pii_status"] = getattr(payload["pii_status"], "value", payload["pii_status"])
        payload["updated_at"] = utc_now().isoformat()
        rows = self._request("PATCH", params=params, json=payload, prefer="return=representation")
        if not rows:
            raise PersistenceFailure(f"Document {doc_id} changed concurrently, update not applied")
        return DocumentRecord(**rows[0])
