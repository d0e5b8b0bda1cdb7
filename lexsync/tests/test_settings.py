from unittest.mock import patch

import pytest

from lexsync.config.settings import AppSettings, BlobStoreConfig, MetadataStoreConfig, SearchIndexConfig, load_settings
from lexsync.core.container import build_search_index, build_services
from lexsync.core.errors import ConfigurationError
from lexsync.storage.bm25_index import LocalSearchIndex

def test_load_settings_reads_yaml_and_env(tmp_path, monkeypatch):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "catalog:\n  page_size: 50\n"
        "ingestion:\n  batch_size: 5\n  batch_delay: 0.5\n"
        "reconciliation:\n  sniff_bytes: 1024\n",
        encoding="utf-8"
    )
    monkeypatch.setenv("COURTLISTENER_API_KEY", "cl-key")

    settings = load_settings(str(config_file))

    assert settings.catalog.page_size == 50
    assert settings.catalog.max_attempts == 3
    assert settings.ingestion.batch_size == 5
    assert settings.reconciliation.sniff_bytes == 1024
    assert settings.courtlistener_api_key == "cl-key"

def test_require_names_every_missing_credential():
    settings = AppSettings(courtlistener_api_key="set", openrouter_api_key="  ", gcs_api_key="")
    settings.require("courtlistener_api_key")
    with pytest.raises(ConfigurationError) as exc:
        settings.require("courtlistener_api_key", "openrouter_api_key", "gcs_api_key")
    assert str(exc.value) == "Missing credential(s): OPENROUTER_API_KEY, GCS_API_KEY"

def test_required_credentials_follow_backends():
    assert AppSettings().required_credentials() == []
    settings = AppSettings(blob_store=BlobStoreConfig(backend="gcs"))
    assert settings.required_credentials() == ["gcs_api_key"]

def test_build_services_fails_fast_on_missing_backend_credential():
    settings = AppSettings(blob_store=BlobStoreConfig(backend="gcs"), gcs_api_key="")
    with pytest.raises(ConfigurationError) as exc:
        build_services(settings)
    assert "GCS_API_KEY" in str(exc.value)

def test_build_services_with_local_backends(tmp_path):
    settings = AppSettings(
        blob_store=BlobStoreConfig(local_path=str(tmp_path / "blobs")),
        metadata_store=MetadataStoreConfig(database_url=f"sqlite:///{tmp_path / 'metadata.db'}"),
        search_index=SearchIndexConfig(local_path=str(tmp_path / "index.json"))
    )

    with patch("lexsync.core.container.Chunker"):
        services = build_services(settings)

    assert isinstance(services.search_index, LocalSearchIndex)
    assert services.pipeline.catalog is services.catalog
    assert services.reconciliation.pipeline is services.pipeline

def test_unknown_backend_is_configuration_error():
    settings = AppSettings(search_index=SearchIndexConfig(backend="solr"))
    with pytest.raises(ConfigurationError):
        build_search_index(settings)
