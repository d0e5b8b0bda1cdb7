import json
from datetime import datetime, timezone

import httpx
import pytest

from lexsync.config.settings import BlobStoreConfig, MetadataStoreConfig, SearchIndexConfig
from lexsync.core.errors import BlobNotFound, ConfigurationError, IndexFailure, InvalidStatusTransition, PersistenceFailure
from lexsync.models.document import CaseCitation, DocumentRecord, DocumentStatus, IndexDocument, check_transition
from lexsync.models.search import DateRange, SearchFilters
from lexsync.storage.bm25_index import LocalSearchIndex
from lexsync.storage.elastic_index import ElasticsearchIndex
from lexsync.storage.file_store import LocalBlobStore
from lexsync.storage.gcs_store import GCSBlobStore
from lexsync.storage.sql_store import SqlMetadataStore
from lexsync.storage.supabase_store import SupabaseMetadataStore

def _record(doc_id="doc-1", file_name="smith_v_jones.pdf", status=DocumentStatus.processing):
    return DocumentRecord(
        id=doc_id, title="Smith v. Jones", file_name=file_name,
        file_path=f"documents/1700000000000-{file_name}", file_type="application/pdf", status=status
    )

def _index_docs():
    return [
        IndexDocument(
            id="doc-1", title="Smith v. Jones", file_name="Smith_v_Jones.pdf", file_type="application/pdf",
            status="indexed", content="The plaintiff alleges breach of contract and negligent misrepresentation.",
            summary="Summary judgment affirmed.",
            created_at=datetime(2023, 5, 1, tzinfo=timezone.utc), updated_at=datetime(2023, 5, 1, tzinfo=timezone.utc),
            metadata={"analysis": {"confidence": 0.9}},
            case_citations=[CaseCitation(citation="123 F.3d 456", court="ca9")],
            legal_concepts=["breach of contract"]
        ),
        IndexDocument(
            id="doc-2", title="Doe v. Roe", file_name="Doe_v_Roe.txt", file_type="text/plain",
            status="indexed", content="Negligence claim dismissed by the district court for lack of standing.",
            created_at=datetime(2024, 2, 1, tzinfo=timezone.utc), updated_at=datetime(2024, 2, 1, tzinfo=timezone.utc),
            metadata={"court": "scotus"},
            legal_concepts=["standing"]
        ),
    ]

# --- Status transitions ---

def test_check_transition():
    check_transition(DocumentStatus.processing, DocumentStatus.indexed)
    check_transition(DocumentStatus.processing, DocumentStatus.failed)
    check_transition(DocumentStatus.failed, DocumentStatus.processing)
    check_transition("indexed", "indexed")
    with pytest.raises(InvalidStatusTransition):
        check_transition(DocumentStatus.indexed, DocumentStatus.processing)
    with pytest.raises(InvalidStatusTransition):
        check_transition(DocumentStatus.indexed, DocumentStatus.failed)

# --- SqlMetadataStore ---

@pytest.fixture
def sql_store(tmp_path):
    return SqlMetadataStore(f"sqlite:///{tmp_path / 'nested' / 'metadata.db'}", owner_id="owner-1")

def test_sql_store_round_trip_and_lookup(sql_store):
    inserted = sql_store.insert(_record())
    assert inserted.user_id == "owner-1"
    assert sql_store.get("doc-1").title == "Smith v. Jones"
    assert sql_store.find_by_file_name("smith_v_jones.pdf").id == "doc-1"
    assert sql_store.find_by_file_name("missing.pdf") is None
    assert sql_store.get("nope") is None

def test_sql_store_enforces_status_transitions(sql_store):
    sql_store.insert(_record())
    assert sql_store.update_status("doc-1", DocumentStatus.indexed).status == DocumentStatus.indexed
    with pytest.raises(InvalidStatusTransition):
        sql_store.update_status("doc-1", DocumentStatus.processing)
    assert sql_store.get("doc-1").status == DocumentStatus.indexed
    assert [r.id for r in sql_store.list_records(status=DocumentStatus.indexed)] == ["doc-1"]

def test_sql_store_rejects_duplicate_path_and_unknown_columns(sql_store):
    sql_store.insert(_record())
    with pytest.raises(PersistenceFailure):
        sql_store.insert(_record(doc_id="doc-2"))
    with pytest.raises(ValueError):
        sql_store.update("doc-1", {"file_path": "elsewhere.pdf"})
    with pytest.raises(PersistenceFailure):
        sql_store.update("missing", {"summary": "x"})

def test_sql_store_updates_metadata(sql_store):
    sql_store.insert(_record())
    updated = sql_store.update("doc-1", {"metadata": {"review_reason": "missing_blob"}, "summary": "Short."})
    assert updated.metadata == {"review_reason": "missing_blob"}
    assert sql_store.get("doc-1").summary == "Short."

# --- Supabase metadata store ---

def _row(status="processing"):
    return _record(status=DocumentStatus(status)).model_dump(mode="json")

def test_supabase_update_guards_against_concurrent_writer():
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        if request.method == "GET":
            return httpx.Response(200, json=[_row("processing")])
        # Another writer already moved the row
        return httpx.Response(200, json=[])

    config = MetadataStoreConfig(backend="supabase", supabase_url="https://project.supabase.co")
    store = SupabaseMetadataStore(config, "service-key", client=httpx.Client(transport=httpx.MockTransport(handler)))

    with pytest.raises(PersistenceFailure):
        store.update_status("doc-1", DocumentStatus.indexed)

    patch = seen[-1]
    assert patch.method == "PATCH"
    assert patch.url.params["status"] == "eq.processing"
    assert patch.headers["apikey"] == "service-key"
    assert json.loads(patch.content)["status"] == "indexed"

# --- Blob stores ---

def test_local_blob_store(tmp_path):
    store = LocalBlobStore(str(tmp_path))
    store.upload(b"%PDF-1.7 body", "documents/1-a.pdf", "application/pdf")
    store.upload(b"notes", "other/b.txt", "text/plain")

    assert [b.key for b in store.list("documents/")] == ["documents/1-a.pdf"]
    assert store.list("documents/")[0].content_type == "application/pdf"
    assert store.read_prefix("documents/1-a.pdf", 4) == b"%PDF"
    assert store.exists("other/b.txt")

    store.delete("documents/1-a.pdf")
    store.delete("documents/1-a.pdf")
    assert not store.exists("documents/1-a.pdf")
    with pytest.raises(BlobNotFound):
        store.download("documents/1-a.pdf")
    with pytest.raises(PersistenceFailure):
        store.upload(b"x", "../escape.pdf")

def _gcs(handler):
    return GCSBlobStore(BlobStoreConfig(backend="gcs"), "gcs-key", client=httpx.Client(transport=httpx.MockTransport(handler)))

def test_gcs_delete_missing_is_ok():
    def handler(request):
        assert request.url.params["key"] == "gcs-key"
        assert "documents%2F1-a.pdf" in str(request.url)
        return httpx.Response(404)

    _gcs(handler).delete("documents/1-a.pdf")

def test_gcs_read_prefix_and_exists():
    def handler(request):
        if "missing" in str(request.url):
            return httpx.Response(404)
        assert request.headers["Range"] == "bytes=0-3"
        return httpx.Response(200, content=b"%PDF-1.7 full body")

    store = _gcs(handler)
    assert store.read_prefix("documents/1-a.pdf", 4) == b"%PDF"
    assert not store.exists("documents/missing.pdf")

def test_gcs_list_follows_page_token():
    pages = {
        None: {"items": [{"name": "documents/1.pdf", "size": "10", "contentType": "application/pdf",
                          "updated": "2024-03-01T10:00:00.000Z"}], "nextPageToken": "p2"},
        "p2": {"items": [{"name": "documents/2.txt", "size": "5", "contentType": "text/plain"}]},
    }

    def handler(request):
        return httpx.Response(200, json=pages[request.url.params.get("pageToken")])

    blobs = _gcs(handler).list("documents/")
    assert [b.key for b in blobs] == ["documents/1.pdf", "documents/2.txt"]
    assert blobs[0].size == 10
    assert blobs[0].updated_at.year == 2024

def test_gcs_requires_key():
    with pytest.raises(ConfigurationError):
        GCSBlobStore(BlobStoreConfig(backend="gcs"), "")

# --- LocalSearchIndex ---

@pytest.fixture
def local_index():
    index = LocalSearchIndex()
    for doc in _index_docs():
        index.upsert(doc)
    return index

def test_local_search_uses_synonyms_and_highlights(local_index):
    response = local_index.search("agreement")
    assert [r.id for r in response.results] == ["doc-1"]
    assert "<em>contract</em>" in response.results[0].highlighted_text
    assert response.results[0].ai_confidence == 0.9
    assert not response.degraded

def test_local_search_tolerates_typos(local_index):
    response = local_index.search("contrct")
    assert response.results[0].id == "doc-1"

def test_local_search_filters_and_facets(local_index):
    browse = local_index.search("")
    assert browse.total == 2
    assert [r.id for r in browse.results] == ["doc-2", "doc-1"]
    assert {b.key for b in browse.facets.courts} == {"ca9", "scotus"}
    assert [b.key for b in browse.facets.date_ranges] == ["2023", "2024"]
    assert {b.key: b.doc_count for b in browse.facets.file_types} == {"application/pdf": 1, "text/plain": 1}

    assert [r.id for r in local_index.search("", SearchFilters(courts=["scotus"])).results] == ["doc-2"]
    assert [r.id for r in local_index.search("", SearchFilters(file_type=["application/pdf"])).results] == ["doc-1"]
    assert [r.id for r in local_index.search("", SearchFilters(legal_concepts=["standing"])).results] == ["doc-2"]
    in_2024 = SearchFilters(date_range=DateRange(**{"from": "2024-01-01"}))
    assert [r.id for r in local_index.search("", in_2024).results] == ["doc-2"]

def test_local_suggest(local_index):
    assert local_index.suggest("sm") == ["Smith v. Jones"]
    assert local_index.suggest("DOE") == ["Doe v. Roe"]
    assert local_index.suggest("") == []

def test_local_index_persists_to_disk(tmp_path):
    path = str(tmp_path / "index" / "search.json")
    index = LocalSearchIndex(path)
    for doc in _index_docs():
        index.upsert(doc)
    index.delete("doc-2")
    index.delete("doc-2")

    reloaded = LocalSearchIndex(path)
    assert reloaded.list_ids() == ["doc-1"]
    assert reloaded.get("doc-1").case_citations[0].court == "ca9"

# --- ElasticsearchIndex ---

def _es(handler):
    config = SearchIndexConfig(backend="elasticsearch", url="http://es:9200")
    return ElasticsearchIndex(config, client=httpx.Client(transport=httpx.MockTransport(handler)))

def test_es_search_degrades_when_unreachable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    index = _es(handler)
    response = index.search("contract")
    assert response.degraded
    assert response.results == []
    assert index.suggest("sm") == []

def test_es_list_ids_raises_index_failure():
    def handler(request):
        if request.method == "HEAD":
            return httpx.Response(200)
        return httpx.Response(503, json={"error": "unavailable"})

    with pytest.raises(IndexFailure):
        _es(handler).list_ids()

def test_es_creates_index_lazily_once():
    calls = []

    def handler(request):
        calls.append((request.method, request.url.path))
        if request.method == "HEAD":
            return httpx.Response(404)
        if request.method == "PUT" and request.url.path == "/legal_documents":
            body = json.loads(request.content)
            assert body["mappings"]["properties"]["chunks"]["type"] == "nested"
            assert "legal_analyzer" in body["settings"]["analysis"]["analyzer"]
            return httpx.Response(200, json={"acknowledged": True})
        return httpx.Response(201, json={"result": "created"})

    index = _es(handler)
    doc = _index_docs()[0]
    index.upsert(doc)
    index.upsert(doc)

    assert calls.count(("HEAD", "/legal_documents")) == 1
    assert calls.count(("PUT", "/legal_documents")) == 1
    assert calls.count(("PUT", "/legal_documents/_doc/doc-1")) == 2

def test_es_list_ids_scrolls_and_clears():
    scroll_pages = iter([
        {"_scroll_id": "s1", "hits": {"hits": [{"_id": "c"}]}},
        {"_scroll_id": "s1", "hits": {"hits": []}},
    ])
    cleared = []

    def handler(request):
        if request.method == "HEAD":
            return httpx.Response(200)
        if request.url.path == "/legal_documents/_search":
            return httpx.Response(200, json={"_scroll_id": "s1", "hits": {"hits": [{"_id": "a"}, {"_id": "b"}]}})
        if request.method == "DELETE":
            cleared.append(json.loads(request.content)["scroll_id"])
            return httpx.Response(200, json={"succeeded": True})
        return httpx.Response(200, json=next(scroll_pages))

    assert _es(handler).list_ids() == ["a", "b", "c"]
    assert cleared == ["s1"]

def test_es_search_parses_hits_and_facets():
    sent = {}

    def handler(request):
        if request.method == "HEAD":
            return httpx.Response(200)
        sent.update(json.loads(request.content))
        return httpx.Response(200, json={
            "hits": {"total": {"value": 1}, "hits": [{
                "_id": "doc-1", "_score": 4.2,
                "_source": {"title": "Smith v. Jones", "summary": "Affirmed.", "file_type": "application/pdf",
                            "created_at": "2023-05-01T00:00:00Z", "metadata": {"analysis": {"confidence": 0.8}}},
                "highlight": {"content": ["breach of <em>contract</em>"]},
            }]},
            "aggregations": {
                "file_types": {"buckets": [{"key": "application/pdf", "doc_count": 1}]},
                "courts": {"names": {"buckets": [{"key": "ca9", "doc_count": 1}]}},
                "date_ranges": {"buckets": [{"key": 1672531200000, "key_as_string": "2023", "doc_count": 1},
                                            {"key": 1704067200000, "key_as_string": "2024", "doc_count": 0}]},
            },
        })

    response = _es(handler).search("contract", SearchFilters(courts=["ca9"]))

    assert response.total == 1
    result = response.results[0]
    assert result.highlighted_text == "breach of <em>contract</em>"
    assert result.ai_confidence == 0.8
    assert [b.key for b in response.facets.courts] == ["ca9"]
    assert [b.key for b in response.facets.date_ranges] == ["2023"]
    bool_query = sent["query"]["bool"]
    assert bool_query["must"][0]["multi_match"]["fuzziness"] == "AUTO"
    assert bool_query["filter"][0]["nested"]["path"] == "case_citations"

def test_es_blank_query_browses_newest_first():
    sent = {}

    def handler(request):
        if request.method == "HEAD":
            return httpx.Response(200)
        sent.update(json.loads(request.content))
        return httpx.Response(200, json={"hits": {"total": {"value": 0}, "hits": []}})

    _es(handler).search("  ")
    assert sent["query"]["bool"]["must"] == [{"match_all": {}}]
    assert sent["sort"] == [{"created_at": {"order": "desc"}}]
