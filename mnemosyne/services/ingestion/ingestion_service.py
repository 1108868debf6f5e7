"""Orchestrator for the document ingestion pipeline.

Pipeline phases: **scanning -> chunking -> embedding/indexing -> complete**.

The :class:`IngestionService` coordinates three collaborators (chunker,
embedding provider, vector store) without any of them knowing about each
other.  All of them are injected, so the embedding backend or the storage
backend can be swapped without touching this class.

Progress is reported through a :class:`ProgressReporter`: the chunking phase
fills the first 30% of the bar (one report per file) and embedding/indexing
the remaining 70% (one report per batch).  A :class:`CancellationToken` is
checked between phases, between files and before every batch.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import TYPE_CHECKING

import structlog

from mnemosyne.models.chunk import ChunkDraft
from mnemosyne.models.pipeline import (
    IngestionOptions,
    IngestionPhase,
    IngestionProgress,
    IngestionResult,
    RecordError,
)
from mnemosyne.pipeline.cancellation import CancellationToken
from mnemosyne.pipeline.progress import ProgressCallback, ProgressReporter
from mnemosyne.services.ingestion.chunk_builder import build_chunk_drafts
from mnemosyne.services.ingestion.chunker import TextChunker
from mnemosyne.utils.errors import (
    ConfigurationError,
    EmbeddingProviderError,
    StoreConnectionError,
    VectorStoreError,
)
from mnemosyne.utils.logging import bound_run_context

if TYPE_CHECKING:
    from mnemosyne.interfaces.document_source import IDocument
    from mnemosyne.interfaces.embedding_provider import IEmbeddingProvider
    from mnemosyne.interfaces.vector_store import IVectorStore

logger = structlog.get_logger(logger_name=__name__)

_CHUNKING_SHARE = 30
_INDEXING_SHARE = 70


class _Cancelled(Exception):
    """Internal signal: the token was set at a check point."""


class IngestionService:
    """Chunks, embeds and stores documents into one vector store.

    Parameters
    ----------
    embedding_provider:
        Generates embedding vectors for chunk text.
    vector_store:
        Destination store; its dimension must equal the provider's.
    """

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        vector_store: IVectorStore,
    ) -> None:
        self._embedding_provider = embedding_provider
        self._vector_store = vector_store

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(
        self,
        documents: list[IDocument],
        options: IngestionOptions | None = None,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> IngestionResult:
        """Run the full pipeline over *documents*.

        Returns
        -------
        IngestionResult
            ``success`` is ``True`` only when the run completed without a
            fatal error and was not cancelled.  Chunks stored before a
            cancellation or a fatal error stay in the store.

        Raises
        ------
        ConfigurationError
            Before any work starts, when chunk options are invalid or the
            embedding dimension differs from the store dimension.
        """
        options = options or IngestionOptions()
        chunker = TextChunker(chunk_size=options.chunk_size, overlap=options.overlap)
        dimension = self._embedding_provider.get_dimension()
        if dimension != self._vector_store.get_dimension():
            raise ConfigurationError(
                message=(
                    f"Embedding provider produces {dimension}-dimensional vectors "
                    f"but the store expects {self._vector_store.get_dimension()}"
                ),
                provider_name=self._embedding_provider.get_provider_name(),
            )

        run_id = uuid.uuid4().hex[:12]
        with bound_run_context(run_id=run_id, operation="ingest"):
            return await _IngestionRun(
                embedding_provider=self._embedding_provider,
                store=self._vector_store,
                chunker=chunker,
                options=options,
                reporter=ProgressReporter[IngestionProgress](on_progress, run_id=run_id),
                token=cancellation or CancellationToken(),
            ).execute(documents)


class _IngestionRun:
    """State of a single ``ingest()`` call."""

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        store: IVectorStore,
        chunker: TextChunker,
        options: IngestionOptions,
        reporter: ProgressReporter[IngestionProgress],
        token: CancellationToken,
    ) -> None:
        self._embedder = embedding_provider
        self._store = store
        self._chunker = chunker
        self._options = options
        self._reporter = reporter
        self._token = token

        self._total_files = 0
        self._processed_files = 0
        self._total_chunks = 0
        self._processed_chunks = 0
        self._indexed = 0
        self._skipped = 0
        self._errors: list[RecordError] = []
        self._percentage = 0

    async def execute(self, documents: list[IDocument]) -> IngestionResult:
        start = time.monotonic()
        try:
            if not self._store.is_ready():
                await self._store.initialize()

            docs = await self._scan(documents)
            drafts = await self._chunk_all(docs)
            await self._embed_and_index(drafts)

            await self._store.flush()
            await self._report(IngestionPhase.COMPLETE, 100, "Ingestion complete")
        except _Cancelled:
            await self._safe_flush()
            duration = time.monotonic() - start
            logger.info(
                "ingestion_cancelled",
                indexed=self._indexed,
                skipped=self._skipped,
                reason=self._token.reason,
            )
            return self._result(success=False, cancelled=True, duration=duration)
        except (EmbeddingProviderError, VectorStoreError) as exc:
            await self._safe_flush()
            duration = time.monotonic() - start
            logger.error(
                "ingestion_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                indexed=self._indexed,
            )
            await self._report(
                IngestionPhase.ERROR,
                self._percentage,
                f"Ingestion failed: {exc.message}",
                error=str(exc),
            )
            return self._result(success=False, duration=duration, error=str(exc))

        duration = time.monotonic() - start
        logger.info(
            "ingestion_complete",
            files=self._total_files,
            chunks=self._total_chunks,
            indexed=self._indexed,
            skipped=self._skipped,
            record_errors=len(self._errors),
            duration_s=round(duration, 2),
        )
        return self._result(success=True, duration=duration)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _scan(self, documents: list[IDocument]) -> list[IDocument]:
        seen: set[str] = set()
        docs: list[IDocument] = []
        for doc in documents:
            if doc.path not in seen:
                seen.add(doc.path)
                docs.append(doc)
        self._total_files = len(docs)
        await self._report(IngestionPhase.SCANNING, 0, f"Found {len(docs)} documents")
        self._check_cancelled()
        return docs

    async def _chunk_all(self, docs: list[IDocument]) -> list[ChunkDraft]:
        drafts: list[ChunkDraft] = []
        for i, doc in enumerate(docs):
            self._check_cancelled()
            try:
                content = await doc.read_content()
            except OSError as exc:
                logger.warning("document_read_failed", path=doc.path, error=str(exc))
                self._errors.append(RecordError(chunk_id=doc.path, error=f"read failed: {exc}"))
                content = ""

            doc_drafts = build_chunk_drafts(doc, self._chunker.chunk(content))
            drafts.extend(doc_drafts)
            self._processed_files = i + 1
            self._total_chunks = len(drafts)
            await self._report(
                IngestionPhase.CHUNKING,
                round((i + 1) / len(docs) * _CHUNKING_SHARE),
                f"Chunked {i + 1}/{len(docs)} documents",
                current_file=doc.path,
            )

        self._total_chunks = len(drafts)
        logger.info("chunking_phase_complete", files=len(docs), chunks=len(drafts))
        self._check_cancelled()
        return drafts

    async def _embed_and_index(self, drafts: list[ChunkDraft]) -> None:
        if not drafts:
            return

        total = len(drafts)
        batch_size = self._options.batch_size
        await self._report(
            IngestionPhase.EMBEDDING,
            _CHUNKING_SHARE,
            f"Embedding {total} chunks",
        )

        for batch_start in range(0, total, batch_size):
            self._check_cancelled()
            batch = drafts[batch_start : batch_start + batch_size]
            vectors = await self._embed_batch(batch)

            for draft, vector in zip(batch, vectors):
                await self._index_one(draft, vector)

            self._processed_chunks = min(batch_start + len(batch), total)
            await self._report(
                IngestionPhase.INDEXING,
                _CHUNKING_SHARE + round(_INDEXING_SHARE * self._processed_chunks / total),
                f"Indexed {self._processed_chunks}/{total} chunks",
                current_chunk=batch[-1].id,
            )

            if self._processed_chunks < total:
                await asyncio.sleep(self._options.batch_yield_seconds)

    async def _embed_batch(self, batch: list[ChunkDraft]) -> list[list[float]]:
        """Embed a whole batch at once and validate the response shape."""
        vectors = await self._embedder.embed([d.content for d in batch])
        provider = self._embedder.get_provider_name()
        if len(vectors) != len(batch):
            raise EmbeddingProviderError(
                message=f"Expected {len(batch)} embeddings, got {len(vectors)}",
                provider_name=provider,
            )
        dimension = self._store.get_dimension()
        for vector in vectors:
            if len(vector) != dimension:
                raise EmbeddingProviderError(
                    message=f"Received a {len(vector)}-dimensional embedding, expected {dimension}",
                    provider_name=provider,
                )
        return vectors

    async def _index_one(self, draft: ChunkDraft, vector: list[float]) -> None:
        if self._options.skip_existing and await self._store.get(draft.id) is not None:
            self._skipped += 1
            return
        try:
            await self._store.insert(draft.id, draft.content, vector, draft.metadata)
            self._indexed += 1
        except StoreConnectionError:
            raise
        except VectorStoreError as exc:
            logger.warning("chunk_insert_failed", chunk_id=draft.id, error=str(exc))
            self._errors.append(RecordError(chunk_id=draft.id, error=str(exc)))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_cancelled(self) -> None:
        if self._token.is_cancelled:
            raise _Cancelled

    async def _safe_flush(self) -> None:
        try:
            await self._store.flush()
        except VectorStoreError as exc:
            logger.error("ingestion_flush_failed", error=str(exc))

    async def _report(
        self,
        phase: IngestionPhase,
        percentage: int,
        message: str,
        current_file: str | None = None,
        current_chunk: str | None = None,
        error: str | None = None,
    ) -> None:
        self._percentage = percentage
        await self._reporter.report(
            IngestionProgress(
                phase=phase,
                total_files=self._total_files,
                processed_files=self._processed_files,
                total_chunks=self._total_chunks,
                processed_chunks=self._processed_chunks,
                percentage=percentage,
                message=message,
                current_file=current_file,
                current_chunk=current_chunk,
                error=error,
            )
        )

    def _result(
        self,
        success: bool,
        duration: float,
        cancelled: bool = False,
        error: str | None = None,
    ) -> IngestionResult:
        return IngestionResult(
            success=success,
            cancelled=cancelled,
            total_files=self._total_files,
            total_chunks=self._total_chunks,
            indexed_chunks=self._indexed,
            skipped_chunks=self._skipped,
            errors=list(self._errors),
            error=error,
            duration=duration,
        )
