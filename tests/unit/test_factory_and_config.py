"""Unit tests for store construction, presets, Settings and the YAML loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from mnemosyne.config.loader import _deep_merge, load_config
from mnemosyne.config.settings import Settings
from mnemosyne.models.store_config import BackendType, ServerStoreConfig, VectorStoreConfig
from mnemosyne.providers.vector_store.embedded_store import EmbeddedVectorStore
from mnemosyne.providers.vector_store.factory import (
    create_vector_store,
    large_corpus_config,
    medium_corpus_config,
    small_corpus_config,
)
from mnemosyne.providers.vector_store.file_store import FileVectorStore
from mnemosyne.providers.vector_store.server_store import ServerVectorStore


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestFactory:
    @pytest.mark.parametrize(
        ("backend", "expected"),
        [
            (BackendType.FILE, FileVectorStore),
            (BackendType.EMBEDDED, EmbeddedVectorStore),
            (BackendType.SERVER, ServerVectorStore),
        ],
    )
    def test_dispatch(self, backend: BackendType, expected: type) -> None:
        store = create_vector_store(VectorStoreConfig(backend=backend, dimension=8))
        assert isinstance(store, expected)
        assert store.get_dimension() == 8
        assert store.get_backend_name() == backend.value
        assert not store.is_ready()

    def test_dimension_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            VectorStoreConfig(backend=BackendType.FILE, dimension=0)

    def test_small_preset(self) -> None:
        config = small_corpus_config(384, "bge", path="x.json")
        assert config.backend is BackendType.FILE
        assert config.file.path == "x.json"
        assert config.embedding_model == "bge"

    def test_medium_preset(self) -> None:
        config = medium_corpus_config(384)
        assert config.backend is BackendType.EMBEDDED
        assert config.embedded.durable is True
        assert config.embedded.cache_size == 10000

    def test_large_preset_forces_tls_and_pool(self) -> None:
        config = large_corpus_config(768, ServerStoreConfig(host="db", pool_size=2))
        assert config.backend is BackendType.SERVER
        assert config.server.host == "db"
        assert config.server.ssl is True
        assert config.server.pool_size == 10


class TestSettings:
    def test_defaults(self) -> None:
        s = _settings()
        assert s.vector_backend is BackendType.FILE
        assert s.chunk_size == 1000
        assert s.chunk_overlap == 200
        assert s.ingest_batch_size == 5
        assert s.skip_existing is True

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MNEMOSYNE_VECTOR_BACKEND", "embedded")
        monkeypatch.setenv("MNEMOSYNE_CHUNK_SIZE", "500")
        s = _settings()
        assert s.vector_backend is BackendType.EMBEDDED
        assert s.chunk_size == 500

    def test_to_vector_store_config(self) -> None:
        s = _settings(embedded_store_path="/tmp/x.db", server_host="pg", server_password="secret")
        config = s.to_vector_store_config(dimension=384, embedding_model="m", backend="server")
        assert config.backend is BackendType.SERVER
        assert config.embedded.path == "/tmp/x.db"
        assert config.server.host == "pg"
        assert config.server.password.get_secret_value() == "secret"

    def test_available_providers(self) -> None:
        assert _settings().get_available_embedding_providers() == ["fastembed", "nomic"]
        with_key = _settings(openai_api_key="sk-test")
        assert with_key.get_available_embedding_providers()[0] == "openai"


class TestLoader:
    def test_yaml_merged_with_settings(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("app:\n  name: mnemosyne\nvector_store:\n  backend: server\n  extra: kept\n")

        config = load_config(str(path), settings=_settings(vector_backend="embedded"))

        assert config["app"]["name"] == "mnemosyne"
        assert config["vector_store"]["backend"] == "embedded"
        assert config["vector_store"]["extra"] == "kept"
        assert config["ingestion"]["chunk_size"] == 1000

    def test_missing_file_yields_settings_only(self, tmp_path: Path) -> None:
        config = load_config(str(tmp_path / "absent.yaml"), settings=_settings())
        assert config["vector_store"]["backend"] == "file"

    def test_deep_merge(self) -> None:
        base = {"a": {"b": 1, "c": 2}, "d": 3}
        _deep_merge(base, {"a": {"b": 10}, "e": 4})
        assert base == {"a": {"b": 10, "c": 2}, "d": 3, "e": 4}
