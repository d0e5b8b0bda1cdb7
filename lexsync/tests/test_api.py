import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import catalog_result, make_connector
from lexsync.api.main import create_app
from lexsync.core.classify.placeholder import MarkerClassifier
from lexsync.core.container import Services
from lexsync.core.pipeline.cleanup import PlaceholderCleanup

@pytest.fixture
def make_client(stores, make_pipeline, make_engine, pdf_bytes):
    def _make(api_key="test-key"):
        def handler(request: httpx.Request):
            if request.url.path.endswith("/search/"):
                return httpx.Response(200, json={"next": None, "results": [
                    catalog_result(1, "Smith v. Jones", "https://storage.courtlistener.com/pdf/1.pdf"),
                ]})
            return httpx.Response(200, content=pdf_bytes)

        catalog = make_connector(handler, api_key=api_key)
        pipeline = make_pipeline(catalog=catalog)
        services = Services(
            blob_store=stores.blob_store,
            metadata_store=stores.metadata_store,
            search_index=stores.search_index,
            catalog=catalog,
            pipeline=pipeline,
            reconciliation=make_engine(pipeline),
            cleanup=PlaceholderCleanup(stores.blob_store, MarkerClassifier())
        )
        return TestClient(create_app(services))
    return _make

def test_health(make_client):
    with make_client() as client:
        assert client.get("/health").json() == {"status": "ok"}

def test_upload_then_search_and_fetch(make_client, pdf_bytes):
    with make_client() as client:
        response = client.post(
            "/api/ingest/upload",
            files={"file": ("smith_v_jones.pdf", pdf_bytes, "application/pdf")},
            data={"title": "Smith v. Jones"}
        )
        assert response.status_code == 200
        job = response.json()
        assert job["stage"] == "done"

        document = client.get(f"/api/documents/{job['document_id']}").json()
        assert document["title"] == "Smith v. Jones"
        assert document["status"] == "indexed"

        results = client.get("/api/search", params={"q": "contract"}).json()
        assert results["degraded"] is False
        assert [r["id"] for r in results["results"]] == [job["document_id"]]

        filtered = client.get("/api/search", params={"q": "contract", "file_type": "text/plain"}).json()
        assert filtered["results"] == []

        assert client.get("/api/suggest", params={"prefix": "smi"}).json() == {"suggestions": ["Smith v. Jones"]}
        assert len(client.get("/api/documents", params={"status": "indexed"}).json()) == 1

def test_empty_upload_is_rejected(make_client):
    with make_client() as client:
        response = client.post("/api/ingest/upload", files={"file": ("empty.pdf", b"", "application/pdf")})
        assert response.status_code == 400

def test_missing_document_is_404(make_client):
    with make_client() as client:
        assert client.get("/api/documents/does-not-exist").status_code == 404

def test_catalog_ingest_without_key_is_400(make_client):
    with make_client(api_key="") as client:
        response = client.post("/api/ingest/catalog", json={"query": "contract"})
        assert response.status_code == 400
        assert "COURTLISTENER_API_KEY" in response.json()["detail"]

def test_catalog_ingest_runs_in_background(make_client):
    with make_client() as client:
        run = client.post("/api/ingest/catalog", json={"query": "contract"}).json()
        assert run["state"] == "queued"

        status = client.get(f"/api/ingest/status/{run['run_id']}").json()
        assert status["state"] == "completed"
        assert status["stats"]["processed"] == 1
        assert client.get("/api/ingest/status/unknown").status_code == 404

def test_catalog_search_endpoint(make_client):
    with make_client() as client:
        items = client.post("/api/catalog/search", json={"query": "contract"}).json()
        assert [i["cluster_id"] for i in items] == [1]

def test_sync_endpoints(make_client, stores, pdf_bytes):
    stores.blob_store.upload(pdf_bytes, "documents/1700000000000-marbury_v_madison.pdf", "application/pdf")
    with make_client() as client:
        dry = client.post("/api/sync", params={"dry_run": "true"}).json()
        assert dry["dry_run"] is True
        assert dry["missing_metadata"] == 1
        assert stores.metadata_store.list_records() == []

        status = client.get("/api/sync/status").json()
        assert status == {"blob_objects": 1, "metadata_records": 0, "index_documents": 0, "drift": 1}

        report = client.post("/api/sync").json()
        assert report["missing_metadata"] == 1
        assert client.get("/api/sync/status").json()["drift"] == 0

        analysis = client.get("/api/cleanup/analysis").json()
        assert analysis["placeholder_files"] == 0
        assert client.post("/api/cleanup/purge").json() == {"deleted": 0, "errors": []}

def test_retry_failed_endpoint(make_client):
    with make_client() as client:
        stats = client.post("/api/documents/retry-failed").json()
        assert stats["total"] == 0
