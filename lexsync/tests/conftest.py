"""Shared fixtures: real local stores on tmp_path, generated PDFs, mocked LLM/OCR/catalog."""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import fitz
import httpx
import pytest

from lexsync.config.settings import (
    CatalogConfig, ExtractionConfig, IngestionConfig, ReconciliationConfig, SummarizationConfig
)
from lexsync.core.catalog.courtlistener import CourtListenerConnector
from lexsync.core.classify.placeholder import MarkerClassifier
from lexsync.core.generate.summarizer import SummarizationService
from lexsync.core.parse.extractor import ExtractionService
from lexsync.core.pipeline.ingestion import IngestionPipeline
from lexsync.core.pipeline.reconciliation import ReconciliationEngine
from lexsync.storage.bm25_index import LocalSearchIndex
from lexsync.storage.file_store import LocalBlobStore
from lexsync.storage.sql_store import SqlMetadataStore

OPINION_LINES = [
    "UNITED STATES COURT OF APPEALS",
    "FOR THE NINTH CIRCUIT",
    "Smith v. Jones Manufacturing Co.",
    "The plaintiff alleges breach of contract and",
    "negligent misrepresentation under state law.",
    "The district court granted summary judgment",
    "for the defendant. We affirm the judgment.",
]

ANALYSIS = {
    "summary": "The court affirmed summary judgment for the defendant on the contract claim.",
    "legal_entities": [{"type": "case_name", "value": "Smith v. Jones", "confidence": 0.9}],
    "case_citations": [{"citation": "123 F.3d 456", "court": "ca9", "date": "1999"}],
    "legal_concepts": ["breach of contract", "summary judgment"],
    "confidence": 0.85,
}

PLACEHOLDER_TEXT = (
    "COURT DOCUMENT PLACEHOLDER - Case: Doe v. Roe - Court: scotus - Note: This is a placeholder "
    "document. The actual PDF could not be downloaded."
)

def make_pdf(pages):
    """Builds a PDF in memory; each page is a list of short lines."""
    doc = fitz.open()
    for lines in pages:
        page = doc.new_page()
        for i, line in enumerate(lines):
            page.insert_text((50, 60 + i * 20), line, fontsize=11)
    data = doc.tobytes()
    doc.close()
    return data

@pytest.fixture
def pdf_bytes():
    return make_pdf([OPINION_LINES])

@pytest.fixture
def stores(tmp_path):
    return SimpleNamespace(
        blob_store=LocalBlobStore(str(tmp_path / "blobs")),
        metadata_store=SqlMetadataStore(f"sqlite:///{tmp_path / 'metadata.db'}"),
        search_index=LocalSearchIndex(),
    )

@pytest.fixture
def chunker():
    # tiktoken needs its BPE files; chunking itself is covered in test_chunking.py
    stub = MagicMock()
    stub.chunk_text.return_value = []
    return stub

@pytest.fixture
def ocr():
    stub = MagicMock()
    stub.extract_text.return_value = ""
    return stub

@pytest.fixture
def llm():
    stub = MagicMock()
    stub.generate.return_value = json.dumps(ANALYSIS)
    return stub

@pytest.fixture
def make_pipeline(stores, chunker, ocr, llm):
    def _make(catalog=None, batch_size=10, max_workers=4, search_index=None, blob_store=None, metadata_store=None):
        return IngestionPipeline(
            blob_store=blob_store or stores.blob_store,
            metadata_store=metadata_store or stores.metadata_store,
            search_index=search_index or stores.search_index,
            extractor=ExtractionService(ExtractionConfig(), ocr=ocr),
            summarizer=SummarizationService(llm, SummarizationConfig(min_interval=0)),
            chunker=chunker,
            config=IngestionConfig(batch_size=batch_size, batch_delay=0, max_workers=max_workers),
            catalog=catalog,
        )
    return _make

@pytest.fixture
def make_engine(stores, chunker):
    def _make(pipeline, search_index=None):
        return ReconciliationEngine(
            blob_store=stores.blob_store,
            metadata_store=stores.metadata_store,
            search_index=search_index or stores.search_index,
            pipeline=pipeline,
            classifier=MarkerClassifier(),
            chunker=chunker,
            config=ReconciliationConfig(),
        )
    return _make

def catalog_result(cluster_id, case_name, download_url, opinion_type="010combined"):
    return {
        "cluster_id": cluster_id,
        "caseName": case_name,
        "court": "Court of Appeals for the Ninth Circuit",
        "court_id": "ca9",
        "dateFiled": "2024-03-01",
        "docketNumber": f"22-{cluster_id}",
        "citation": [f"{cluster_id} F.4th 1"],
        "citeCount": 3,
        "opinions": [{"id": cluster_id * 10, "download_url": download_url, "sha1": "abc", "type": opinion_type}],
        "snippet": "ignored",
    }

def make_connector(handler, api_key="test-key", **overrides):
    config = CatalogConfig(request_interval=0, retry_base_delay=0.5, max_retry_delay=8.0, **overrides)
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return CourtListenerConnector(config, api_key, client=client)
