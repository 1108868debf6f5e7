"""Abstract base class for vector stores.

Defines the single contract implemented by the file, embedded and server
backends.  Callers (ingestion, migration, the CLI) only ever hold an
:class:`IVectorStore`; the factory in
``mnemosyne.providers.vector_store.factory`` picks the implementation.

Every backend scores ``query()`` results with **cosine similarity**, so the
same query returns comparable scores whichever backend answers it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from mnemosyne.models.chunk import (
    Chunk,
    ChunkMetadata,
    MetadataFilter,
    ScoredChunk,
    StoreStats,
    VerificationReport,
)


# Concrete implementations (mnemosyne/providers/vector_store/):
#   FileVectorStore      -- single JSON file, brute-force numpy search
#   EmbeddedVectorStore  -- SQLite via aiosqlite + in-memory numpy index
#   ServerVectorStore    -- PostgreSQL + pgvector via asyncpg (HNSW)
class IVectorStore(ABC):
    """Contract for chunk storage and similarity search.

    All I/O methods are async.  Embedding length is fixed per instance:
    a vector of any other length is rejected with
    :class:`~mnemosyne.utils.errors.ConfigurationError` and is never
    truncated or padded.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Open or create the underlying storage.  Idempotent.

        Raises
        ------
        mnemosyne.utils.errors.StoreConnectionError
            If the backend is unreachable.
        mnemosyne.utils.errors.CorruptionError
            If existing persisted data cannot be read.
        mnemosyne.utils.errors.ConfigurationError
            If existing data was written with a different dimension.
        """

    @abstractmethod
    async def insert(
        self,
        chunk_id: str,
        content: str,
        embedding: list[float],
        metadata: ChunkMetadata,
    ) -> None:
        """Insert a chunk, replacing any chunk that has the same id."""

    @abstractmethod
    async def insert_batch(self, chunks: list[Chunk]) -> int:
        """Upsert several chunks.

        Returns
        -------
        int
            Number of chunks written.
        """

    @abstractmethod
    async def get(self, chunk_id: str) -> Chunk | None:
        """Return the chunk with *chunk_id*, or ``None``."""

    @abstractmethod
    async def query(
        self,
        embedding: list[float],
        k: int = 10,
        min_score: float | None = None,
        filters: MetadataFilter | None = None,
    ) -> list[ScoredChunk]:
        """Return at most *k* chunks ranked by cosine similarity, highest first.

        Parameters
        ----------
        embedding:
            Query vector; must have :meth:`get_dimension` components.
        k:
            Maximum number of results.  ``k <= 0`` returns nothing.
        min_score:
            Drop results scoring below this similarity.
        filters:
            Only consider chunks whose metadata matches.  Filtering happens
            before ranking, so up to *k* matching chunks are returned.
        """

    @abstractmethod
    async def get_stats(self) -> StoreStats:
        """Return totals, dimension, model and per-document/type breakdowns."""

    @abstractmethod
    def iter_batches(self, batch_size: int = 100) -> AsyncIterator[list[Chunk]]:
        """Yield every stored chunk in batches, ordered by id.

        Each chunk is yielded exactly once.  Used by the migration engine to
        stream a store without loading it whole.
        """

    @abstractmethod
    async def delete(self, chunk_id: str) -> bool:
        """Delete one chunk.  Returns ``True`` when it existed."""

    @abstractmethod
    async def delete_document(self, document_id: str) -> int:
        """Delete every chunk of *document_id*.  Returns the number removed."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every chunk, keeping the store usable."""

    @abstractmethod
    async def count(self) -> int:
        """Return the number of stored chunks."""

    @abstractmethod
    async def verify(self) -> VerificationReport:
        """Check internal consistency: duplicate ids, dimensions, counts."""

    @abstractmethod
    async def flush(self) -> None:
        """Make all completed writes durable."""

    @abstractmethod
    async def close(self) -> None:
        """Flush and release resources.  The store may be initialized again."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Return ``True`` between a successful ``initialize()`` and ``close()``."""

    @abstractmethod
    def get_backend_name(self) -> str:
        """Return ``"file"``, ``"embedded"`` or ``"server"``."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the fixed embedding length of this store."""
