from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel
import yaml
import os

from lexsync.core.errors import ConfigurationError

class CatalogConfig(BaseModel):
    base_url: str = "https://www.courtlistener.com/api/rest/v4"
    download_proxy_url: str = ""
    page_size: int = 20
    max_pages: int = 5
    max_attempts: int = 3
    retry_base_delay: float = 1.0
    rate_limit_multiplier: float = 2.0
    max_retry_delay: float = 30.0
    request_interval: float = 1.0
    timeout: float = 30.0

class BlobStoreConfig(BaseModel):
    backend: str = "local"                  # "local" | "gcs"
    local_path: str = "./data/blobs"
    bucket: str = "lex-legal-documents-bucket"
    api_base: str = "https://storage.googleapis.com"
    prefix: str = "documents/"
    timeout: float = 60.0

class MetadataStoreConfig(BaseModel):
    backend: str = "sql"                    # "sql" | "supabase"
    database_url: str = "sqlite:///./data/metadata.db"
    supabase_url: str = ""
    table: str = "legal_documents"
    owner_id: str = "00000000-0000-0000-0000-000000000000"
    timeout: float = 30.0

class SearchIndexConfig(BaseModel):
    backend: str = "local"                  # "local" | "elasticsearch"
    url: str = "http://localhost:9200"
    username: str = ""
    index_name: str = "legal_documents"
    local_path: str = "./data/search_index.json"
    timeout: float = 30.0

class ExtractionConfig(BaseModel):
    min_meaningful_chars: int = 100
    header_footer_threshold: int = 3
    ocr_enabled: bool = True
    ocr_max_pages: int = 10
    ocr_zoom: float = 2.0
    ocr_language: str = "eng"

class ChunkingConfig(BaseModel):
    chunk_size: int = 256
    chunk_overlap: int = 32
    max_chunks: int = 200
    encoding: str = "cl100k_base"

class LLMConfig(BaseModel):
    provider: str = "openrouter"
    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "mistralai/mistral-7b-instruct"
    fallback_model: str = "google/gemma-3-27b-it"
    max_tokens: int = 1024
    temperature: float = 0.1
    max_retries: int = 3
    base_delay: float = 2.0
    timeout: float = 60.0

class SummarizationConfig(BaseModel):
    max_input_chars: int = 4000
    min_interval: float = 2.0
    unavailable_text: str = "Summary unavailable"

class IngestionConfig(BaseModel):
    batch_size: int = 10
    batch_delay: float = 2.0
    max_workers: int = 4

class ReconciliationConfig(BaseModel):
    placeholder_marker: str = "COURT DOCUMENT PLACEHOLDER"
    sniff_bytes: int = 512

class AppSettings(BaseSettings):
    catalog: CatalogConfig = CatalogConfig()
    blob_store: BlobStoreConfig = BlobStoreConfig()
    metadata_store: MetadataStoreConfig = MetadataStoreConfig()
    search_index: SearchIndexConfig = SearchIndexConfig()
    extraction: ExtractionConfig = ExtractionConfig()
    chunking: ChunkingConfig = ChunkingConfig()
    llm: LLMConfig = LLMConfig()
    summarization: SummarizationConfig = SummarizationConfig()
    ingestion: IngestionConfig = IngestionConfig()
    reconciliation: ReconciliationConfig = ReconciliationConfig()

    # Secrets come from the environment / .env only
    courtlistener_api_key: str = ""
    openrouter_api_key: str = ""
    gcs_api_key: str = ""
    supabase_service_key: str = ""
    elasticsearch_password: str = ""
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    def require(self, *names: str) -> None:
        """Raises ConfigurationError naming every empty credential in `names`."""
        missing = [name.upper() for name in names if not (getattr(self, name, "") or "").strip()]
        if missing:
            raise ConfigurationError("Missing credential(s): " + ", ".join(missing))

    def required_credentials(self) -> list[str]:
        """Credentials needed by the configured backends."""
        names = []
        if self.blob_store.backend == "gcs":
            names.append("gcs_api_key")
        if self.metadata_store.backend == "supabase":
            names.append("supabase_service_key")
        return names

def load_settings(config_path: str = "lexsync/config/config.yaml") -> AppSettings:
    """Loads settings from config.yaml and applies env overrides."""

    paths_to_try = [
        config_path,
        "config.yaml",
        "config/config.yaml",
        os.path.join(os.path.dirname(__file__), "config.yaml")
    ]

    yaml_data = {}
    for path in paths_to_try:
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f) or {}
            break

    return AppSettings(
        catalog=CatalogConfig(**yaml_data.get("catalog", {})),
        blob_store=BlobStoreConfig(**yaml_data.get("blob_store", {})),
        metadata_store=MetadataStoreConfig(**yaml_data.get("metadata_store", {})),
        search_index=SearchIndexConfig(**yaml_data.get("search_index", {})),
        extraction=ExtractionConfig(**yaml_data.get("extraction", {})),
        chunking=ChunkingConfig(**yaml_data.get("chunking", {})),
        llm=LLMConfig(**yaml_data.get("llm", {})),
        summarization=SummarizationConfig(**yaml_data.get("summarization", {})),
        ingestion=IngestionConfig(**yaml_data.get("ingestion", {})),
        reconciliation=ReconciliationConfig(**yaml_data.get("reconciliation", {}))
    )

@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    # Only the API app and the CLI call this; everything else gets config injected.
    return load_settings()
