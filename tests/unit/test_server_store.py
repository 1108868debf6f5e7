"""Unit tests for ServerVectorStore with asyncpg mocked out.

These cover SQL dispatch, row decoding and error translation; a live
PostgreSQL + pgvector instance is not required.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import numpy as np
import pytest

from mnemosyne.models.chunk import MetadataFilter
from mnemosyne.models.store_config import ServerStoreConfig
from mnemosyne.providers.vector_store.server_store import ServerVectorStore
from mnemosyne.utils.errors import ConfigurationError, CorruptionError, StoreConnectionError, VectorStoreError
from tests.conftest import MOCK_DIMENSION, MOCK_MODEL, make_chunk

_MODULE = "mnemosyne.providers.vector_store.server_store"


def _fake_pool(meta_rows: list[dict] | None = None) -> MagicMock:
    pool = MagicMock()
    pool.execute = AsyncMock(return_value="OK")
    pool.executemany = AsyncMock()
    pool.fetch = AsyncMock(return_value=meta_rows or [])
    pool.fetchrow = AsyncMock(return_value=None)
    pool.fetchval = AsyncMock(return_value=0)
    pool.close = AsyncMock()
    return pool


def _fake_connection() -> MagicMock:
    conn = MagicMock()
    conn.execute = AsyncMock()
    conn.close = AsyncMock()
    return conn


def _row(chunk, score: float | None = None) -> dict:
    row = {
        "id": chunk.id,
        "content": chunk.content,
        "embedding": np.asarray(chunk.embedding, dtype=np.float32),
        "metadata": chunk.metadata.model_dump_json(),
    }
    if score is not None:
        row["score"] = score
    return row


async def _ready_store(pool: MagicMock) -> ServerVectorStore:
    store = ServerVectorStore(ServerStoreConfig(), dimension=MOCK_DIMENSION, embedding_model=MOCK_MODEL)
    with (
        patch(f"{_MODULE}.asyncpg.connect", new=AsyncMock(return_value=_fake_connection())),
        patch(f"{_MODULE}.asyncpg.create_pool", new=AsyncMock(return_value=pool)),
    ):
        await store.initialize()
    return store


class TestInitialize:
    @pytest.mark.asyncio
    async def test_creates_extension_schema_and_meta(self) -> None:
        pool = _fake_pool()
        conn = _fake_connection()
        store = ServerVectorStore(ServerStoreConfig(), dimension=MOCK_DIMENSION, embedding_model=MOCK_MODEL)
        with (
            patch(f"{_MODULE}.asyncpg.connect", new=AsyncMock(return_value=conn)),
            patch(f"{_MODULE}.asyncpg.create_pool", new=AsyncMock(return_value=pool)) as create_pool,
        ):
            await store.initialize()

        conn.execute.assert_awaited_once_with("CREATE EXTENSION IF NOT EXISTS vector")
        conn.close.assert_awaited_once()
        kwargs = create_pool.call_args.kwargs
        assert kwargs["max_size"] == 10
        assert kwargs["init"] is not None
        sql = " ".join(call.args[0] for call in pool.execute.await_args_list)
        assert f"vector({MOCK_DIMENSION})" in sql
        assert "hnsw" in sql and "vector_cosine_ops" in sql
        pool.executemany.assert_awaited_once()
        assert store.is_ready()

    @pytest.mark.asyncio
    async def test_unreachable_server(self) -> None:
        store = ServerVectorStore(ServerStoreConfig(), dimension=MOCK_DIMENSION)
        with patch(f"{_MODULE}.asyncpg.connect", new=AsyncMock(side_effect=OSError("connection refused"))):
            with pytest.raises(StoreConnectionError):
                await store.initialize()
        assert not store.is_ready()

    @pytest.mark.asyncio
    async def test_dimension_mismatch_closes_pool(self) -> None:
        pool = _fake_pool(meta_rows=[{"key": "dimension", "value": "1536"}])
        store = ServerVectorStore(ServerStoreConfig(), dimension=MOCK_DIMENSION)
        with (
            patch(f"{_MODULE}.asyncpg.connect", new=AsyncMock(return_value=_fake_connection())),
            patch(f"{_MODULE}.asyncpg.create_pool", new=AsyncMock(return_value=pool)),
        ):
            with pytest.raises(ConfigurationError):
                await store.initialize()
        pool.close.assert_awaited_once()
        assert not store.is_ready()

    def test_invalid_table_name_rejected(self) -> None:
        with pytest.raises(ValueError):
            ServerStoreConfig(table_name="chunks; DROP TABLE users")

    @pytest.mark.asyncio
    async def test_wide_embeddings_skip_hnsw_index(self) -> None:
        pool = _fake_pool()
        store = ServerVectorStore(ServerStoreConfig(), dimension=3072)
        with (
            patch(f"{_MODULE}.asyncpg.connect", new=AsyncMock(return_value=_fake_connection())),
            patch(f"{_MODULE}.asyncpg.create_pool", new=AsyncMock(return_value=pool)),
        ):
            await store.initialize()

        sql = " ".join(call.args[0] for call in pool.execute.await_args_list)
        assert "vector(3072)" in sql
        assert "hnsw" not in sql
        assert store.is_ready()

    def test_dimension_beyond_vector_limit_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="16000"):
            ServerVectorStore(ServerStoreConfig(), dimension=16001)


class TestOperations:
    @pytest.mark.asyncio
    async def test_query_maps_rows_to_scored_chunks(self) -> None:
        pool = _fake_pool()
        store = await _ready_store(pool)
        chunk = make_chunk()
        pool.fetch = AsyncMock(return_value=[_row(chunk, score=0.75)])

        results = await store.query(chunk.embedding, k=3)

        assert len(results) == 1
        assert results[0].chunk.id == chunk.id
        assert results[0].chunk.metadata == chunk.metadata
        assert results[0].score == pytest.approx(0.75)
        sql, vector, k = pool.fetch.await_args.args
        assert "<=>" in sql
        assert vector.dtype == np.float32
        assert k == 3

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self) -> None:
        store = await _ready_store(_fake_pool())
        assert await store.get("nope") is None

    @pytest.mark.asyncio
    async def test_embeddings_are_float32_rounded(self) -> None:
        pool = _fake_pool()
        store = await _ready_store(pool)
        chunk = make_chunk()
        pool.fetchrow = AsyncMock(return_value=_row(chunk))

        stored = await store.get(chunk.id)
        assert stored is not None
        assert stored.embedding == pytest.approx(chunk.embedding, abs=1e-6)

    @pytest.mark.asyncio
    async def test_delete_parses_command_tag(self) -> None:
        pool = _fake_pool()
        store = await _ready_store(pool)
        pool.execute = AsyncMock(side_effect=["DELETE 3", "INSERT 0 1", "DELETE 0"])

        assert await store.delete_document("a.md") == 3
        assert await store.delete("missing") is False

    @pytest.mark.asyncio
    async def test_insert_wrong_dimension_never_hits_database(self) -> None:
        pool = _fake_pool()
        store = await _ready_store(pool)
        pool.execute.reset_mock()
        chunk = make_chunk()

        with pytest.raises(ConfigurationError):
            await store.insert(chunk.id, chunk.content, [0.5], chunk.metadata)
        pool.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_connection_loss_is_store_connection_error(self) -> None:
        pool = _fake_pool()
        store = await _ready_store(pool)
        pool.fetchval = AsyncMock(side_effect=asyncpg.exceptions.ConnectionDoesNotExistError("gone"))

        with pytest.raises(StoreConnectionError):
            await store.count()

    @pytest.mark.asyncio
    async def test_statement_failure_is_vector_store_error(self) -> None:
        pool = _fake_pool()
        store = await _ready_store(pool)
        pool.fetchval = AsyncMock(side_effect=asyncpg.exceptions.UndefinedTableError("no table"))

        with pytest.raises(VectorStoreError) as exc_info:
            await store.count()
        assert not isinstance(exc_info.value, StoreConnectionError)

    @pytest.mark.asyncio
    async def test_iter_batches_uses_keyset_pagination(self) -> None:
        pool = _fake_pool()
        store = await _ready_store(pool)
        chunks = [make_chunk("a.md", i) for i in range(3)]
        pool.fetch = AsyncMock(side_effect=[[_row(chunks[0]), _row(chunks[1])], [_row(chunks[2])], []])

        batches = [b async for b in store.iter_batches(batch_size=2)]

        assert [[c.id for c in b] for b in batches] == [[chunks[0].id, chunks[1].id], [chunks[2].id]]
        last_ids = [call.args[1] for call in pool.fetch.await_args_list]
        assert last_ids == ["", chunks[1].id, chunks[2].id]

    @pytest.mark.asyncio
    async def test_stats(self) -> None:
        pool = _fake_pool()
        store = await _ready_store(pool)
        pool.fetch = AsyncMock(
            side_effect=[
                [{"key": "a.md", "n": 2}, {"key": "b.md", "n": 1}],
                [{"key": "markdown", "n": 3}],
            ]
        )

        stats = await store.get_stats()
        assert stats.total_chunks == 3
        assert stats.backend == "server"
        assert stats.document_counts == {"a.md": 2, "b.md": 1}
        assert stats.content_type_counts == {"markdown": 3}

    @pytest.mark.asyncio
    async def test_close(self) -> None:
        pool = _fake_pool()
        store = await _ready_store(pool)
        await store.close()
        pool.close.assert_awaited_once()
        assert not store.is_ready()

    @pytest.mark.asyncio
    async def test_malformed_row_is_corruption_error(self) -> None:
        pool = _fake_pool()
        store = await _ready_store(pool)
        row = _row(make_chunk())
        row["metadata"] = '{"document_id": "a.md"}'
        pool.fetchrow = AsyncMock(return_value=row)

        with pytest.raises(CorruptionError) as exc_info:
            await store.get(row["id"])
        assert exc_info.value.provider_name == "server"

    @pytest.mark.asyncio
    async def test_missing_embedding_is_corruption_error(self) -> None:
        pool = _fake_pool()
        store = await _ready_store(pool)
        row = _row(make_chunk())
        row["embedding"] = None
        pool.fetch = AsyncMock(return_value=[row])

        with pytest.raises(CorruptionError):
            [b async for b in store.iter_batches()]


class TestQueryOptions:
    @pytest.mark.asyncio
    async def test_filters_and_min_score_become_sql_predicates(self) -> None:
        pool = _fake_pool()
        store = await _ready_store(pool)
        chunk = make_chunk()
        pool.fetch = AsyncMock(return_value=[_row(chunk, score=0.9)])

        filters = MetadataFilter(document_ids=["docs/a.md"], content_types=["markdown"], keywords=["alpha", "zeta"])
        results = await store.query(chunk.embedding, k=5, min_score=0.5, filters=filters)

        assert [r.chunk.id for r in results] == [chunk.id]
        sql, vector, k, *params = pool.fetch.await_args.args
        assert k == 5
        assert vector.dtype == np.float32
        assert "1 - (embedding <=> $1) >= $3" in sql
        assert "document_id = ANY($4::text[])" in sql
        assert "content_type = ANY($5::text[])" in sql
        assert "metadata->'keywords' ?| $6::text[]" in sql
        assert "section" not in sql
        assert params == [0.5, ["docs/a.md"], ["markdown"], ["alpha", "zeta"]]
        assert sql.index("WHERE") < sql.index("ORDER BY")

    @pytest.mark.asyncio
    async def test_empty_filter_adds_no_where_clause(self) -> None:
        pool = _fake_pool()
        store = await _ready_store(pool)
        pool.fetch = AsyncMock(return_value=[])

        await store.query(make_chunk().embedding, k=2, filters=MetadataFilter())

        sql, _vector, k = pool.fetch.await_args.args
        assert "WHERE" not in sql
        assert k == 2

    @pytest.mark.asyncio
    async def test_section_filter(self) -> None:
        pool = _fake_pool()
        store = await _ready_store(pool)
        pool.fetch = AsyncMock(return_value=[])

        await store.query(make_chunk().embedding, k=2, filters=MetadataFilter(sections=["chunk-0", "chunk-1"]))

        sql, _vector, _k, sections = pool.fetch.await_args.args
        assert "section = ANY($3::text[])" in sql
        assert sections == ["chunk-0", "chunk-1"]
