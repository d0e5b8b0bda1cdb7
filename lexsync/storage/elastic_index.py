import logging
import threading
from typing import Any, Dict, List, Optional
from urllib.parse import quote
import httpx
from lexsync.config.settings import SearchIndexConfig
from lexsync.core.errors import IndexFailure
from lexsync.models.document import IndexDocument
from lexsync.models.search import FacetBucket, SearchFacets, SearchFilters, SearchResponse, SearchResult
from lexsync.storage.analysis import index_mappings, index_settings
from lexsync.storage.base import SearchIndex

logger = logging.getLogger(__name__)

class ElasticsearchIndex(SearchIndex):
    """
    Implements SearchIndex over the Elasticsearch REST API.
    The index (analyzer, nested fields, completion field) is created lazily on first use.
    """

    def __init__(self, config: SearchIndexConfig, password: str = "", client: Optional[httpx.Client] = None):
        self.config = config
        self.base_url = config.url.rstrip("/")
        self.index = config.index_name
        auth = (config.username, password) if config.username and password else None
        self.client = client or httpx.Client(timeout=config.timeout, auth=auth)
        self._schema_ready = False
        self._schema_lock = threading.Lock()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{self.index}{path}"

    def ensure_schema(self) -> None:
        if self._schema_ready:
            return
        with self._schema_lock:
            if self._schema_ready:
                return
            try:
                response = self.client.head(self._url(""))
                if response.status_code == 404:
                    logger.info(f"Creating Elasticsearch index: {self.index}")
                    created = self.client.put(self._url(""), json={
                        "settings": index_settings(),
                        "mappings": index_mappings()
                    })
                    # 400 resource_already_exists: another worker won the race
                    if created.status_code >= 400 and "resource_already_exists" not in created.text:
                        raise IndexFailure(f"Index creation failed: {created.status_code} {created.text[:200]}")
                elif response.status_code >= 400:
                    raise IndexFailure(f"Index check failed: {response.status_code}")
            except httpx.HTTPError as e:
                raise IndexFailure(f"Elasticsearch unreachable: {e}") from e
            self._schema_ready = True

    def upsert(self, doc: IndexDocument) -> None:
        self.ensure_schema()
        try:
            response = self.client.put(self._url(f"/_doc/{quote(doc.id, safe='')}"), json=doc.model_dump(mode="json"))
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise IndexFailure(f"Indexing {doc.id} failed: {e}") from e

    def get(self, doc_id: str) -> Optional[IndexDocument]:
        self.ensure_schema()
        try:
            response = self.client.get(self._url(f"/_doc/{quote(doc_id, safe='')}"))
        except httpx.HTTPError as e:
            raise IndexFailure(f"Elasticsearch unreachable: {e}") from e
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise IndexFailure(f"Fetching {doc_id} failed: {response.status_code}")
        return IndexDocument(**response.json()["_source"])

    def list_ids(self) -> List[str]:
        self.ensure_schema()
        ids = []
        try:
            response = self.client.post(
                self._url("/_search"),
                params={"scroll": "1m"},
                json={"size": 1000, "_source": False, "query": {"match_all": {}}}
            )
            response.raise_for_status()
            data = response.json()
            scroll_id = data.get("_scroll_id")
            hits = data["hits"]["hits"]
            while hits:
                ids.extend(hit["_id"] for hit in hits)
                response = self.client.post(
                    f"{self.base_url}/_search/scroll",
                    json={"scroll": "1m", "scroll_id": scroll_id}
                )
                response.raise_for_status()
                data = response.json()
                scroll_id = data.get("_scroll_id", scroll_id)
                hits = data["hits"]["hits"]
            if scroll_id:
                self.client.request("DELETE", f"{self.base_url}/_search/scroll", json={"scroll_id": scroll_id})
        except httpx.HTTPError as e:
            raise IndexFailure(f"Listing index ids failed: {e}") from e
        return ids

    def delete(self, doc_id: str) -> None:
        self.ensure_schema()
        try:
            response = self.client.delete(self._url(f"/_doc/{quote(doc_id, safe='')}"))
        except httpx.HTTPError as e:
            raise IndexFailure(f"Deleting {doc_id} failed: {e}") from e
        if response.status_code >= 400 and response.status_code != 404:
            raise IndexFailure(f"Deleting {doc_id} failed: {response.status_code}")

    def search(self, query: str, filters: Optional[SearchFilters] = None, size: int = 10) -> SearchResponse:
        query = (query or "").strip()
        bool_query: Dict[str, Any] = {"filter": self._build_filters(filters or SearchFilters())}
        if query:
            bool_query["must"] = [{
                "multi_match": {
                    "query": query,
                    "fields": ["title^3", "summary^2", "content"],
                    "type": "best_fields",
                    "fuzziness": "AUTO"
                }
            }]
            bool_query["should"] = [{
                "nested": {
                    "path": "chunks",
                    "query": {"match": {"chunks.text": {"query": query, "fuzziness": "AUTO"}}},
                    "inner_hits": {"size": 1, "highlight": {"fields": {"chunks.text": {"fragment_size": 150}}}}
                }
            }]
        else:
            # Blank query browses everything that passes the filters, newest first
            bool_query["must"] = [{"match_all": {}}]

        body = {
            "query": {"bool": bool_query},
            "highlight": {"fields": {"content": {"fragment_size": 150}, "summary": {"fragment_size": 150}}},
            "aggs": {
                "file_types": {"terms": {"field": "file_type"}},
                "courts": {
                    "nested": {"path": "case_citations"},
                    "aggs": {"names": {"terms": {"field": "case_citations.court"}}}
                },
                "date_ranges": {"date_histogram": {"field": "created_at", "calendar_interval": "year", "format": "yyyy"}}
            },
            "size": size
        }
        if not query:
            body["sort"] = [{"created_at": {"order": "desc"}}]
        try:
            self.ensure_schema()
            response = self.client.post(self._url("/_search"), json=body)
            response.raise_for_status()
        except (httpx.HTTPError, IndexFailure) as e:
            logger.warning(f"Search unavailable, returning degraded response: {e}")
            return SearchResponse(degraded=True)

        data = response.json()
        results = [self._to_result(hit) for hit in data["hits"]["hits"]]
        aggs = data.get("aggregations", {})
        facets = SearchFacets(
            file_types=[FacetBucket(key=b["key"], doc_count=b["doc_count"]) for b in aggs.get("file_types", {}).get("buckets", [])],
            courts=[FacetBucket(key=b["key"], doc_count=b["doc_count"]) for b in aggs.get("courts", {}).get("names", {}).get("buckets", [])],
            date_ranges=[FacetBucket(key=b.get("key_as_string", str(b["key"])), doc_count=b["doc_count"])
                         for b in aggs.get("date_ranges", {}).get("buckets", []) if b["doc_count"]]
        )
        total = data["hits"]["total"]
        return SearchResponse(
            results=results,
            facets=facets,
            total=total["value"] if isinstance(total, dict) else int(total)
        )

    def suggest(self, prefix: str, size: int = 5) -> List[str]:
        body = {"suggest": {"title_suggest": {"prefix": prefix, "completion": {"field": "title.suggest", "size": min(size, 5)}}}}
        try:
            self.ensure_schema()
            response = self.client.post(self._url("/_search"), json=body)
            response.raise_for_status()
        except (httpx.HTTPError, IndexFailure) as e:
            logger.warning(f"Suggestions unavailable: {e}")
            return []
        options = response.json().get("suggest", {}).get("title_suggest", [{}])[0].get("options", [])
        return [o["text"] for o in options][:5]

    def _build_filters(self, filters: SearchFilters) -> List[Dict[str, Any]]:
        clauses = []
        if filters.file_type:
            clauses.append({"terms": {"file_type": filters.file_type}})
        if filters.courts:
            clauses.append({"nested": {"path": "case_citations", "query": {"terms": {"case_citations.court": filters.courts}}}})
        if filters.date_range:
            bounds = {}
            if filters.date_range.from_:
                bounds["gte"] = filters.date_range.from_
            if filters.date_range.to:
                bounds["lte"] = filters.date_range.to
            if bounds:
                clauses.append({"range": {"created_at": bounds}})
        if filters.legal_concepts:
            clauses.append({"terms": {"legal_concepts": filters.legal_concepts}})
        return clauses

    @staticmethod
    def _to_result(hit: Dict[str, Any]) -> SearchResult:
        source = hit.get("_source", {})
        snippets = []
        for inner in hit.get("inner_hits", {}).get("chunks", {}).get("hits", {}).get("hits", []):
            snippets.extend(inner.get("highlight", {}).get("chunks.text", []))
        highlight = hit.get("highlight", {})
        snippets.extend(highlight.get("content", []))
        snippets.extend(highlight.get("summary", []))
        return SearchResult(
            id=hit["_id"],
            title=source.get("title", ""),
            summary=source.get("summary", ""),
            file_type=source.get("file_type", ""),
            created_at=source.get("created_at"),
            legal_entities=source.get("legal_entities") or [],
            case_citations=source.get("case_citations") or [],
            legal_concepts=source.get("legal_concepts") or [],
            ai_confidence=(source.get("metadata") or {}).get("analysis", {}).get("confidence", 0.5),
            highlighted_text=" ... ".join(snippets),
            score=hit.get("_score") or 0.0
        )
