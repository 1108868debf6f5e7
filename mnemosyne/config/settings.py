"""Application settings loaded from environment variables via pydantic-settings.

Values are read, in priority order, from environment variables and from a
``.env`` file in the working directory.  Field ``server_host`` maps to the
env var ``MNEMOSYNE_SERVER_HOST`` (prefix + uppercase).  Defaults apply when
neither source sets a value.
"""

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from mnemosyne.models.store_config import (
    BackendType,
    EmbeddedStoreConfig,
    FileStoreConfig,
    ServerStoreConfig,
    VectorStoreConfig,
)


class Settings(BaseSettings):
    """mnemosyne settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(
        env_prefix="MNEMOSYNE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Vector store ===
    vector_backend: BackendType = BackendType.FILE
    file_store_path: str = "data/vectors.json"
    embedded_store_path: str = "data/vectors.db"
    embedded_durable: bool = True
    embedded_cache_size: int = 10000
    server_host: str = "localhost"
    server_port: int = 5432
    server_database: str = "mnemosyne"
    server_user: str = "postgres"
    server_password: SecretStr = SecretStr("")
    server_table: str = "mnemosyne_chunks"
    server_ssl: bool = False
    server_pool_size: int = 10
    server_connect_timeout: float = 10.0
    server_command_timeout: float = 60.0

    # === Embeddings ===
    # Empty key = "not configured"; the CLI falls through to the next provider.
    openai_api_key: SecretStr = SecretStr("")
    openai_base_url: str = ""
    openai_embedding_model: str = "text-embedding-3-small"
    fastembed_model: str = "BAAI/bge-small-en-v1.5"
    ollama_base_url: str = "http://localhost:11434"
    ollama_embedding_model: str = "nomic-embed-text"
    embedding_timeout: float = 30.0

    # === Ingestion defaults ===
    chunk_size: int = 1000
    chunk_overlap: int = 200
    ingest_batch_size: int = 5
    skip_existing: bool = True
    batch_yield_seconds: float = 0.01

    # === Migration defaults ===
    migration_batch_size: int = 100
    migration_progress_every: int = 10

    # === App ===
    app_env: str = "development"
    log_level: str = "INFO"

    def to_vector_store_config(
        self,
        dimension: int,
        embedding_model: str,
        backend: BackendType | str | None = None,
    ) -> VectorStoreConfig:
        """Build a :class:`VectorStoreConfig` for *backend* (default: ``vector_backend``)."""
        selected = BackendType(backend) if backend is not None else self.vector_backend
        return VectorStoreConfig(
            backend=selected,
            dimension=dimension,
            embedding_model=embedding_model,
            file=FileStoreConfig(path=self.file_store_path),
            embedded=EmbeddedStoreConfig(
                path=self.embedded_store_path,
                durable=self.embedded_durable,
                cache_size=self.embedded_cache_size,
            ),
            server=ServerStoreConfig(
                host=self.server_host,
                port=self.server_port,
                database=self.server_database,
                user=self.server_user,
                password=self.server_password,
                table_name=self.server_table,
                ssl=self.server_ssl,
                pool_size=self.server_pool_size,
                connect_timeout=self.server_connect_timeout,
                command_timeout=self.server_command_timeout,
            ),
        )

    def get_available_embedding_providers(self) -> list[str]:
        """Return the embedding providers worth trying, in fallback order."""
        providers: list[str] = []
        if self.openai_api_key.get_secret_value():
            providers.append("openai")
        providers.append("fastembed")
        if self.ollama_base_url:
            providers.append("nomic")
        return providers
