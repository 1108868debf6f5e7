"""Unit tests for IngestionService -- phases, progress, skip/cancel, and failure handling."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import aiosqlite
import pytest

from mnemosyne.interfaces.document_source import IDocument
from mnemosyne.models.chunk import ChunkMetadata
from mnemosyne.models.pipeline import IngestionOptions, IngestionPhase, IngestionProgress
from mnemosyne.pipeline.cancellation import CancellationToken
from mnemosyne.providers.documents import InMemoryDocument
from mnemosyne.providers.vector_store.embedded_store import EmbeddedVectorStore
from mnemosyne.providers.vector_store.file_store import FileVectorStore
from mnemosyne.services.ingestion.ingestion_service import IngestionService
from mnemosyne.utils.errors import (
    ConfigurationError,
    EmbeddingProviderError,
    StoreConnectionError,
    VectorStoreError,
)
from tests.conftest import MOCK_DIMENSION, MockEmbeddingProvider

_FAST = IngestionOptions(batch_size=2, batch_yield_seconds=0.0)


def _docs(n: int = 10) -> list[InMemoryDocument]:
    return [InMemoryDocument(path=f"notes/doc-{i:02d}.md", content=f"Paragraph number {i} about storage.") for i in range(n)]


class _UnreadableDocument(IDocument):
    @property
    def path(self) -> str:
        return "notes/locked.md"

    @property
    def title(self) -> str:
        return "locked"

    async def read_content(self) -> str:
        raise PermissionError("permission denied")


class _FlakyStore(FileVectorStore):
    """File store that rejects one chunk id, or loses its connection."""

    def __init__(self, *args, reject_id: str = "", lose_connection: bool = False, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._reject_id = reject_id
        self._lose_connection = lose_connection

    async def insert(self, chunk_id: str, content: str, embedding: list[float], metadata: ChunkMetadata) -> None:
        if self._lose_connection:
            raise StoreConnectionError(message="socket closed", provider_name="file")
        if chunk_id == self._reject_id:
            raise VectorStoreError(message="rejected", provider_name="file")
        await super().insert(chunk_id, content, embedding, metadata)


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_all_chunks_indexed(self, embedder: MockEmbeddingProvider, file_store: FileVectorStore) -> None:
        service = IngestionService(embedder, file_store)
        result = await service.ingest(_docs(), options=_FAST)

        assert result.success
        assert not result.cancelled
        assert result.total_files == 10
        assert result.total_chunks == 10
        assert result.indexed_chunks == 10
        assert result.skipped_chunks == 0
        assert result.errors == []
        assert await file_store.count() == 10

        stored = await file_store.get("notes/doc-03.md#chunk-0")
        assert stored is not None
        assert stored.metadata.content_type == "markdown"
        assert stored.embedding == await embedder.embed_single(stored.content)

    @pytest.mark.asyncio
    async def test_store_initialized_on_demand(self, embedder: MockEmbeddingProvider, file_store: FileVectorStore) -> None:
        assert not file_store.is_ready()
        await IngestionService(embedder, file_store).ingest(_docs(1), options=_FAST)
        assert file_store.is_ready()

    @pytest.mark.asyncio
    async def test_result_flushed_to_disk(
        self, embedder: MockEmbeddingProvider, file_store: FileVectorStore, tmp_path: Path
    ) -> None:
        await IngestionService(embedder, file_store).ingest(_docs(3), options=_FAST)

        reopened = FileVectorStore(tmp_path / "vectors.json", dimension=MOCK_DIMENSION)
        await reopened.initialize()
        assert await reopened.count() == 3

    @pytest.mark.asyncio
    async def test_duplicate_documents_ingested_once(
        self, embedder: MockEmbeddingProvider, file_store: FileVectorStore
    ) -> None:
        docs = _docs(2)
        result = await IngestionService(embedder, file_store).ingest(docs + docs, options=_FAST)
        assert result.total_files == 2
        assert result.indexed_chunks == 2

    @pytest.mark.asyncio
    async def test_batches_sent_to_embedder(self, embedder: MockEmbeddingProvider, file_store: FileVectorStore) -> None:
        await IngestionService(embedder, file_store).ingest(_docs(5), options=_FAST)
        assert [len(call) for call in embedder.calls] == [2, 2, 1]

    @pytest.mark.asyncio
    async def test_empty_document_list(self, embedder: MockEmbeddingProvider, file_store: FileVectorStore) -> None:
        result = await IngestionService(embedder, file_store).ingest([], options=_FAST)
        assert result.success
        assert result.total_chunks == 0


class TestProgress:
    @pytest.mark.asyncio
    async def test_phases_in_order_and_percentages_monotonic(
        self, embedder: MockEmbeddingProvider, file_store: FileVectorStore
    ) -> None:
        records: list[IngestionProgress] = []
        await IngestionService(embedder, file_store).ingest(_docs(4), options=_FAST, on_progress=records.append)

        phases = [r.phase for r in records]
        assert phases[0] is IngestionPhase.SCANNING
        assert phases[-1] is IngestionPhase.COMPLETE
        order = [IngestionPhase.SCANNING, IngestionPhase.CHUNKING, IngestionPhase.EMBEDDING, IngestionPhase.INDEXING, IngestionPhase.COMPLETE]
        positions = [order.index(p) for p in phases]
        assert positions == sorted(positions)

        percentages = [r.percentage for r in records]
        assert percentages == sorted(percentages)
        assert percentages[-1] == 100
        chunking = [r.percentage for r in records if r.phase is IngestionPhase.CHUNKING]
        assert chunking[-1] == 30

    @pytest.mark.asyncio
    async def test_async_callback_supported(self, embedder: MockEmbeddingProvider, file_store: FileVectorStore) -> None:
        callback = AsyncMock()
        await IngestionService(embedder, file_store).ingest(_docs(2), options=_FAST, on_progress=callback)
        assert callback.await_count > 0


class TestSkipAndCancel:
    @pytest.mark.asyncio
    async def test_second_run_skips_everything(
        self, embedder: MockEmbeddingProvider, file_store: FileVectorStore
    ) -> None:
        service = IngestionService(embedder, file_store)
        await service.ingest(_docs(), options=_FAST)
        second = await service.ingest(_docs(), options=_FAST)

        assert second.success
        assert second.indexed_chunks == 0
        assert second.skipped_chunks == 10
        assert await file_store.count() == 10

    @pytest.mark.asyncio
    async def test_skip_disabled_reinserts(self, embedder: MockEmbeddingProvider, file_store: FileVectorStore) -> None:
        service = IngestionService(embedder, file_store)
        await service.ingest(_docs(3), options=_FAST)
        options = IngestionOptions(batch_size=2, batch_yield_seconds=0.0, skip_existing=False)
        second = await service.ingest(_docs(3), options=options)

        assert second.indexed_chunks == 3
        assert await file_store.count() == 3

    @pytest.mark.asyncio
    async def test_cancel_after_two_batches(self, embedder: MockEmbeddingProvider, file_store: FileVectorStore) -> None:
        token = CancellationToken()

        def on_progress(record: IngestionProgress) -> None:
            if record.phase is IngestionPhase.INDEXING and record.processed_chunks == 4:
                token.cancel("test")

        result = await IngestionService(embedder, file_store).ingest(
            _docs(), options=_FAST, on_progress=on_progress, cancellation=token
        )

        assert result.cancelled
        assert not result.success
        assert result.indexed_chunks == 4
        assert await file_store.count() == 4

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, embedder: MockEmbeddingProvider, file_store: FileVectorStore) -> None:
        token = CancellationToken()
        token.cancel()
        result = await IngestionService(embedder, file_store).ingest(_docs(), options=_FAST, cancellation=token)
        assert result.cancelled
        assert result.indexed_chunks == 0
        assert embedder.calls == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_dimension_mismatch_raises_before_work(self, file_store: FileVectorStore) -> None:
        embedder = MockEmbeddingProvider(dimension=MOCK_DIMENSION // 2)
        with pytest.raises(ConfigurationError):
            await IngestionService(embedder, file_store).ingest(_docs(), options=_FAST)
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_invalid_chunk_options_raise(self, embedder: MockEmbeddingProvider, file_store: FileVectorStore) -> None:
        with pytest.raises(ConfigurationError):
            await IngestionService(embedder, file_store).ingest(
                _docs(), options=IngestionOptions(chunk_size=100, overlap=100)
            )

    @pytest.mark.asyncio
    async def test_embedding_failure_ends_in_error_phase(
        self, embedder: MockEmbeddingProvider, file_store: FileVectorStore
    ) -> None:
        embedder.embed = AsyncMock(side_effect=EmbeddingProviderError(message="quota", provider_name="mock"))
        records: list[IngestionProgress] = []

        result = await IngestionService(embedder, file_store).ingest(_docs(), options=_FAST, on_progress=records.append)

        assert not result.success
        assert "quota" in (result.error or "")
        assert records[-1].phase is IngestionPhase.ERROR
        assert records[-1].error is not None

    @pytest.mark.asyncio
    async def test_wrong_vector_count_is_provider_error(
        self, embedder: MockEmbeddingProvider, file_store: FileVectorStore
    ) -> None:
        embedder.embed = AsyncMock(return_value=[[0.0] * MOCK_DIMENSION])
        result = await IngestionService(embedder, file_store).ingest(_docs(4), options=_FAST)
        assert not result.success
        assert result.indexed_chunks == 0

    @pytest.mark.asyncio
    async def test_unreadable_document_recorded(
        self, embedder: MockEmbeddingProvider, file_store: FileVectorStore
    ) -> None:
        docs: list[IDocument] = [*_docs(2), _UnreadableDocument()]
        result = await IngestionService(embedder, file_store).ingest(docs, options=_FAST)

        assert result.success
        assert result.indexed_chunks == 2
        assert [e.chunk_id for e in result.errors] == ["notes/locked.md"]

    @pytest.mark.asyncio
    async def test_rejected_chunk_recorded_and_run_continues(
        self, embedder: MockEmbeddingProvider, tmp_path: Path
    ) -> None:
        store = _FlakyStore(tmp_path / "v.json", MOCK_DIMENSION, reject_id="notes/doc-01.md#chunk-0")
        result = await IngestionService(embedder, store).ingest(_docs(3), options=_FAST)

        assert result.success
        assert result.indexed_chunks == 2
        assert [e.chunk_id for e in result.errors] == ["notes/doc-01.md#chunk-0"]

    @pytest.mark.asyncio
    async def test_connection_loss_aborts(self, embedder: MockEmbeddingProvider, tmp_path: Path) -> None:
        store = _FlakyStore(tmp_path / "v.json", MOCK_DIMENSION, lose_connection=True)
        result = await IngestionService(embedder, store).ingest(_docs(3), options=_FAST)

        assert not result.success
        assert result.indexed_chunks == 0
        assert "socket closed" in (result.error or "")

    @pytest.mark.asyncio
    async def test_sqlite_failure_ends_in_error_phase(
        self, embedder: MockEmbeddingProvider, embedded_store: EmbeddedVectorStore, tmp_path: Path
    ) -> None:
        await embedded_store.initialize()
        async with aiosqlite.connect(tmp_path / "vectors.db") as db:
            await db.execute("DROP TABLE chunks")
            await db.commit()
        records: list[IngestionProgress] = []

        try:
            result = await IngestionService(embedder, embedded_store).ingest(
                _docs(3), options=_FAST, on_progress=records.append
            )
        finally:
            await embedded_store.close()

        assert not result.success
        assert result.indexed_chunks == 0
        assert "no such table" in (result.error or "")
        assert records[-1].phase is IngestionPhase.ERROR
