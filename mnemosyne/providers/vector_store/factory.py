"""Vector store factory and corpus-size presets.

``create_vector_store`` is the only place that knows the concrete backend
classes; everything else depends on :class:`IVectorStore`.  Each backend
keeps its data in its own location, so building a store for another backend
never touches the current one's data.
"""

from __future__ import annotations

import structlog

from mnemosyne.interfaces.vector_store import IVectorStore
from mnemosyne.models.store_config import (
    BackendType,
    EmbeddedStoreConfig,
    FileStoreConfig,
    ServerStoreConfig,
    VectorStoreConfig,
)
from mnemosyne.providers.vector_store.embedded_store import EmbeddedVectorStore
from mnemosyne.providers.vector_store.file_store import FileVectorStore
from mnemosyne.providers.vector_store.server_store import ServerVectorStore
from mnemosyne.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)


def create_vector_store(config: VectorStoreConfig) -> IVectorStore:
    """Build an uninitialized store for ``config.backend``.

    Raises
    ------
    ConfigurationError
        If the backend is unknown.
    """
    backend = config.backend
    logger.info("creating_vector_store", backend=backend.value, dimension=config.dimension)

    if backend is BackendType.FILE:
        return FileVectorStore(
            path=config.file.path,
            dimension=config.dimension,
            embedding_model=config.embedding_model,
        )
    if backend is BackendType.EMBEDDED:
        return EmbeddedVectorStore(
            db_path=config.embedded.path,
            dimension=config.dimension,
            embedding_model=config.embedding_model,
            durable=config.embedded.durable,
            cache_size=config.embedded.cache_size,
        )
    if backend is BackendType.SERVER:
        return ServerVectorStore(
            config=config.server,
            dimension=config.dimension,
            embedding_model=config.embedding_model,
        )
    raise ConfigurationError(message=f"Unknown vector store backend {backend!r}")


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------

def small_corpus_config(
    dimension: int,
    embedding_model: str = "",
    path: str = "data/vectors.json",
) -> VectorStoreConfig:
    """A few thousand chunks: single JSON file, no extra services."""
    return VectorStoreConfig(
        backend=BackendType.FILE,
        dimension=dimension,
        embedding_model=embedding_model,
        file=FileStoreConfig(path=path),
    )


def medium_corpus_config(
    dimension: int,
    embedding_model: str = "",
    path: str = "data/vectors.db",
) -> VectorStoreConfig:
    """Tens of thousands of chunks: durable SQLite with a large page cache."""
    return VectorStoreConfig(
        backend=BackendType.EMBEDDED,
        dimension=dimension,
        embedding_model=embedding_model,
        embedded=EmbeddedStoreConfig(path=path, durable=True, cache_size=10000),
    )


def large_corpus_config(
    dimension: int,
    server: ServerStoreConfig,
    embedding_model: str = "",
) -> VectorStoreConfig:
    """Hundreds of thousands of chunks: PostgreSQL + pgvector over TLS."""
    return VectorStoreConfig(
        backend=BackendType.SERVER,
        dimension=dimension,
        embedding_model=embedding_model,
        server=server.model_copy(update={"ssl": True, "pool_size": max(server.pool_size, 10)}),
    )
