import logging
from dataclasses import dataclass
from lexsync.config.settings import AppSettings
from lexsync.core.catalog.courtlistener import CourtListenerConnector
from lexsync.core.chunk.chunker import Chunker
from lexsync.core.classify.placeholder import MarkerClassifier
from lexsync.core.errors import ConfigurationError
from lexsync.core.generate.llm_client import LLMClient
from lexsync.core.generate.summarizer import SummarizationService
from lexsync.core.parse.extractor import ExtractionService
from lexsync.core.pipeline.cleanup import PlaceholderCleanup
from lexsync.core.pipeline.ingestion import IngestionPipeline
from lexsync.core.pipeline.reconciliation import ReconciliationEngine
from lexsync.storage.base import BlobStore, MetadataStore, SearchIndex
from lexsync.storage.bm25_index import LocalSearchIndex
from lexsync.storage.elastic_index import ElasticsearchIndex
from lexsync.storage.file_store import LocalBlobStore
from lexsync.storage.gcs_store import GCSBlobStore
from lexsync.storage.sql_store import SqlMetadataStore
from lexsync.storage.supabase_store import SupabaseMetadataStore

logger = logging.getLogger(__name__)

@dataclass
class Services:
    blob_store: BlobStore
    metadata_store: MetadataStore
    search_index: SearchIndex
    catalog: CourtListenerConnector
    pipeline: IngestionPipeline
    reconciliation: ReconciliationEngine
    cleanup: PlaceholderCleanup

def build_blob_store(settings: AppSettings) -> BlobStore:
    config = settings.blob_store
    if config.backend == "local":
        return LocalBlobStore(config.local_path)
    if config.backend == "gcs":
        return GCSBlobStore(config, settings.gcs_api_key)
    raise ConfigurationError(f"Unknown blob_store backend: {config.backend}")

def build_metadata_store(settings: AppSettings) -> MetadataStore:
    config = settings.metadata_store
    if config.backend == "sql":
        return SqlMetadataStore(config.database_url, owner_id=config.owner_id)
    if config.backend == "supabase":
        return SupabaseMetadataStore(config, settings.supabase_service_key)
    raise ConfigurationError(f"Unknown metadata_store backend: {config.backend}")

def build_search_index(settings: AppSettings) -> SearchIndex:
    config = settings.search_index
    if config.backend == "local":
        return LocalSearchIndex(config.local_path or None)
    if config.backend == "elasticsearch":
        return ElasticsearchIndex(config, settings.elasticsearch_password)
    raise ConfigurationError(f"Unknown search_index backend: {config.backend}")

def build_services(settings: AppSettings) -> Services:
    """
    The only place where settings turn into objects. Fails fast on missing backend credentials.
    """
    settings.require(*settings.required_credentials())

    blob_store = build_blob_store(settings)
    metadata_store = build_metadata_store(settings)
    search_index = build_search_index(settings)
    catalog = CourtListenerConnector(settings.catalog, settings.courtlistener_api_key)
    chunker = Chunker(settings.chunking)
    summarizer = SummarizationService(LLMClient(settings.llm, settings.openrouter_api_key), settings.summarization)
    classifier = MarkerClassifier(settings.reconciliation.placeholder_marker, settings.reconciliation.sniff_bytes)

    pipeline = IngestionPipeline(
        blob_store=blob_store,
        metadata_store=metadata_store,
        search_index=search_index,
        extractor=ExtractionService(settings.extraction),
        summarizer=summarizer,
        chunker=chunker,
        config=settings.ingestion,
        catalog=catalog,
        blob_prefix=settings.blob_store.prefix
    )
    reconciliation = ReconciliationEngine(
        blob_store=blob_store,
        metadata_store=metadata_store,
        search_index=search_index,
        pipeline=pipeline,
        classifier=classifier,
        chunker=chunker,
        config=settings.reconciliation,
        prefix=settings.blob_store.prefix
    )
    cleanup = PlaceholderCleanup(blob_store, classifier, settings.reconciliation.sniff_bytes)

    logger.info(
        f"Services ready: blob_store={settings.blob_store.backend} metadata_store={settings.metadata_store.backend} "
        f"search_index={settings.search_index.backend}"
    )
    return Services(
        blob_store=blob_store,
        metadata_store=metadata_store,
        search_index=search_index,
        catalog=catalog,
        pipeline=pipeline,
        reconciliation=reconciliation,
        cleanup=cleanup
    )
