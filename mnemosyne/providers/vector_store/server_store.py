"""PostgreSQL + pgvector vector store.

Uses an ``asyncpg`` connection pool with the ``pgvector`` codec registered on
every connection, a ``vector(dimension)`` column, and an HNSW index built
with ``vector_cosine_ops``.  Queries rank by the ``<=>`` cosine distance and
report ``1 - distance`` as the similarity score, matching the in-process
backends.

Network failures and timeouts surface as :class:`StoreConnectionError`;
statement failures as :class:`VectorStoreError`.  The table name is
validated by :class:`ServerStoreConfig` before it is interpolated into SQL.

pgvector stores single-precision floats, so embeddings read back from this
backend are float32-rounded.  A ``vector`` column holds at most 16000
dimensions and an HNSW index at most 2000; wider embeddings are stored
without the index and searched by exact scan.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

import asyncpg
import numpy as np
import structlog
from pgvector.asyncpg import register_vector
from pydantic import ValidationError

from mnemosyne.interfaces.vector_store import IVectorStore
from mnemosyne.models.chunk import (
    Chunk,
    ChunkMetadata,
    MetadataFilter,
    ScoredChunk,
    StoreStats,
    VerificationReport,
)
from mnemosyne.models.store_config import ServerStoreConfig
from mnemosyne.providers.vector_store._common import build_chunk, require_ready
from mnemosyne.utils.errors import (
    ConfigurationError,
    CorruptionError,
    StoreConnectionError,
    VectorStoreError,
)
from mnemosyne.utils.vector_math import check_dimension

logger = structlog.get_logger(logger_name=__name__)

_BACKEND = "server"

# pgvector limits for vector columns and HNSW indexes on them.
_VECTOR_MAX_DIMENSION = 16000
_HNSW_MAX_DIMENSION = 2000

T = TypeVar("T")

_CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
)


class ServerVectorStore(IVectorStore):
    """asyncpg/pgvector implementation of :class:`IVectorStore`."""

    def __init__(self, config: ServerStoreConfig, dimension: int, embedding_model: str = "") -> None:
        if dimension <= 0:
            raise ConfigurationError(
                message=f"Dimension must be positive, got {dimension}",
                provider_name=_BACKEND,
            )
        if dimension > _VECTOR_MAX_DIMENSION:
            raise ConfigurationError(
                message=f"pgvector columns hold at most {_VECTOR_MAX_DIMENSION} dimensions, got {dimension}",
                provider_name=_BACKEND,
            )
        self._config = config
        self._dimension = dimension
        self._embedding_model = embedding_model
        self._table = config.table_name
        self._meta_table = f"{config.table_name}_meta"
        self._pool: asyncpg.Pool | None = None
        self._created_at: datetime | None = None
        self._updated_at: datetime | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _connect_kwargs(self) -> dict[str, Any]:
        cfg = self._config
        return {
            "host": cfg.host,
            "port": cfg.port,
            "database": cfg.database,
            "user": cfg.user,
            "password": cfg.password.get_secret_value() or None,
            "ssl": "require" if cfg.ssl else None,
        }

    async def initialize(self) -> None:
        if self._pool is not None:
            return

        cfg = self._config
        try:
            # The extension must exist before register_vector runs on pool connections.
            conn = await asyncpg.connect(**self._connect_kwargs(), timeout=cfg.connect_timeout)
            try:
                await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
            finally:
                await conn.close()

            pool = await asyncpg.create_pool(
                **self._connect_kwargs(),
                min_size=1,
                max_size=cfg.pool_size,
                timeout=cfg.connect_timeout,
                command_timeout=cfg.command_timeout,
                init=register_vector,
            )
        except _CONNECTION_ERRORS as exc:
            raise StoreConnectionError(
                message=f"Cannot reach PostgreSQL at {cfg.host}:{cfg.port}: {exc}",
                provider_name=_BACKEND,
            ) from exc
        except asyncpg.PostgresError as exc:
            raise VectorStoreError(
                message=f"Failed to prepare pgvector: {exc}",
                provider_name=_BACKEND,
            ) from exc

        try:
            await self._create_schema(pool)
            await self._check_meta(pool)
        except _CONNECTION_ERRORS as exc:
            await pool.close()
            raise StoreConnectionError(message=f"Lost connection during setup: {exc}", provider_name=_BACKEND) from exc
        except asyncpg.PostgresError as exc:
            await pool.close()
            raise VectorStoreError(message=f"Schema setup failed: {exc}", provider_name=_BACKEND) from exc
        except (ConfigurationError, CorruptionError):
            await pool.close()
            raise

        self._pool = pool
        logger.info(
            "server_store_initialized",
            host=cfg.host,
            database=cfg.database,
            table=self._table,
            dimension=self._dimension,
        )

    async def _create_schema(self, pool: asyncpg.Pool) -> None:
        cfg = self._config
        await pool.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self._table} (
                id            TEXT PRIMARY KEY,
                content       TEXT NOT NULL,
                embedding     vector({self._dimension}) NOT NULL,
                document_id   TEXT NOT NULL,
                section       TEXT NOT NULL,
                content_type  TEXT NOT NULL,
                metadata      JSONB NOT NULL,
                created_at    TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )
        if self._dimension <= _HNSW_MAX_DIMENSION:
            await pool.execute(
                f"CREATE INDEX IF NOT EXISTS {self._table}_embedding_idx ON {self._table} "
                f"USING hnsw (embedding vector_cosine_ops) "
                f"WITH (m = {int(cfg.hnsw_m)}, ef_construction = {int(cfg.hnsw_ef_construction)})"
            )
        else:
            logger.warning(
                "server_store_hnsw_skipped",
                table=self._table,
                dimension=self._dimension,
                max_dimension=_HNSW_MAX_DIMENSION,
            )
        await pool.execute(
            f"CREATE INDEX IF NOT EXISTS {self._table}_document_idx ON {self._table} (document_id)"
        )
        await pool.execute(
            f"CREATE TABLE IF NOT EXISTS {self._meta_table} (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        )

    async def _check_meta(self, pool: asyncpg.Pool) -> None:
        rows = await pool.fetch(f"SELECT key, value FROM {self._meta_table}")
        meta = {row["key"]: row["value"] for row in rows}
        if not meta:
            now = datetime.now(tz=timezone.utc).isoformat()
            await pool.executemany(
                f"INSERT INTO {self._meta_table} (key, value) VALUES ($1, $2) ON CONFLICT (key) DO NOTHING",
                [
                    ("backend", _BACKEND),
                    ("dimension", str(self._dimension)),
                    ("embedding_model", self._embedding_model),
                    ("created_at", now),
                ],
            )
            meta = {"created_at": now}
        else:
            try:
                stored_dimension = int(meta.get("dimension", ""))
            except ValueError as exc:
                raise CorruptionError(message="Meta table has no valid dimension", provider_name=_BACKEND) from exc
            if stored_dimension != self._dimension:
                raise ConfigurationError(
                    message=f"Table dimension {stored_dimension} does not match configured {self._dimension}",
                    provider_name=_BACKEND,
                )
            self._embedding_model = meta.get("embedding_model") or self._embedding_model
        self._created_at = _parse_iso(meta.get("created_at"))
        self._updated_at = _parse_iso(meta.get("updated_at"))

    async def flush(self) -> None:
        # Every statement commits on its own; nothing is buffered client-side.
        return None

    async def close(self) -> None:
        if self._pool is None:
            return
        await self._pool.close()
        self._pool = None
        logger.info("server_store_closed", table=self._table)

    def is_ready(self) -> bool:
        return self._pool is not None

    def get_backend_name(self) -> str:
        return _BACKEND

    def get_dimension(self) -> int:
        return self._dimension

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _upsert_sql(self) -> str:
        return (
            f"INSERT INTO {self._table} "
            f"(id, content, embedding, document_id, section, content_type, metadata) "
            f"VALUES ($1, $2, $3, $4, $5, $6, $7) "
            f"ON CONFLICT (id) DO UPDATE SET "
            f"content = EXCLUDED.content, embedding = EXCLUDED.embedding, "
            f"document_id = EXCLUDED.document_id, section = EXCLUDED.section, "
            f"content_type = EXCLUDED.content_type, metadata = EXCLUDED.metadata"
        )

    async def insert(
        self,
        chunk_id: str,
        content: str,
        embedding: list[float],
        metadata: ChunkMetadata,
    ) -> None:
        pool = self._require_pool()
        chunk = build_chunk(chunk_id, content, embedding, metadata, self._dimension, _BACKEND)
        await self._call("insert", pool.execute, self._upsert_sql(), *_to_params(chunk))
        await self._stamp_updated()

    async def insert_batch(self, chunks: list[Chunk]) -> int:
        pool = self._require_pool()
        if not chunks:
            return 0
        for chunk in chunks:
            check_dimension(chunk.embedding, self._dimension, provider_name=_BACKEND)

        async def _write() -> None:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.executemany(self._upsert_sql(), [_to_params(c) for c in chunks])

        await self._call("insert_batch", _write)
        await self._stamp_updated()
        return len(chunks)

    async def delete(self, chunk_id: str) -> bool:
        pool = self._require_pool()
        status = await self._call("delete", pool.execute, f"DELETE FROM {self._table} WHERE id = $1", chunk_id)
        deleted = _affected(status) > 0
        if deleted:
            await self._stamp_updated()
        return deleted

    async def delete_document(self, document_id: str) -> int:
        pool = self._require_pool()
        status = await self._call(
            "delete_document",
            pool.execute,
            f"DELETE FROM {self._table} WHERE document_id = $1",
            document_id,
        )
        deleted = _affected(status)
        if deleted:
            await self._stamp_updated()
        logger.info("server_store_document_deleted", document_id=document_id, deleted=deleted)
        return deleted

    async def clear(self) -> None:
        pool = self._require_pool()
        await self._call("clear", pool.execute, f"TRUNCATE {self._table}")
        await self._stamp_updated()
        logger.info("server_store_cleared", table=self._table)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, chunk_id: str) -> Chunk | None:
        pool = self._require_pool()
        row = await self._call(
            "get",
            pool.fetchrow,
            f"SELECT id, content, embedding, metadata FROM {self._table} WHERE id = $1",
            chunk_id,
        )
        return _from_row(row) if row else None

    async def query(
        self,
        embedding: list[float],
        k: int = 10,
        min_score: float | None = None,
        filters: MetadataFilter | None = None,
    ) -> list[ScoredChunk]:
        pool = self._require_pool()
        check_dimension(embedding, self._dimension, provider_name=_BACKEND)
        if k <= 0:
            return []
        params: list[Any] = [np.asarray(embedding, dtype=np.float32), k]
        where = _where_clauses(params, min_score, filters)
        where_sql = f"WHERE {' AND '.join(where)} " if where else ""
        rows = await self._call(
            "query",
            pool.fetch,
            f"SELECT id, content, embedding, metadata, 1 - (embedding <=> $1) AS score "
            f"FROM {self._table} {where_sql}ORDER BY embedding <=> $1 LIMIT $2",
            *params,
        )
        return [ScoredChunk(chunk=_from_row(row), score=float(row["score"])) for row in rows]

    async def get_stats(self) -> StoreStats:
        pool = self._require_pool()
        doc_rows = await self._call(
            "get_stats",
            pool.fetch,
            f"SELECT document_id AS key, COUNT(*) AS n FROM {self._table} GROUP BY document_id",
        )
        type_rows = await self._call(
            "get_stats",
            pool.fetch,
            f"SELECT content_type AS key, COUNT(*) AS n FROM {self._table} GROUP BY content_type",
        )
        documents = {row["key"]: int(row["n"]) for row in doc_rows}
        return StoreStats(
            total_chunks=sum(documents.values()),
            backend=_BACKEND,
            embedding_model=self._embedding_model,
            dimension=self._dimension,
            document_counts=documents,
            content_type_counts={row["key"]: int(row["n"]) for row in type_rows},
            created_at=self._created_at,
            updated_at=self._updated_at,
        )

    async def iter_batches(self, batch_size: int = 100) -> AsyncIterator[list[Chunk]]:
        pool = self._require_pool()
        if batch_size <= 0:
            raise ConfigurationError(message="batch_size must be positive", provider_name=_BACKEND)
        last_id = ""
        while True:
            rows = await self._call(
                "iter_batches",
                pool.fetch,
                f"SELECT id, content, embedding, metadata FROM {self._table} "
                f"WHERE id > $1 ORDER BY id LIMIT $2",
                last_id,
                batch_size,
            )
            if not rows:
                return
            batch = [_from_row(row) for row in rows]
            last_id = batch[-1].id
            yield batch

    async def count(self) -> int:
        pool = self._require_pool()
        value = await self._call("count", pool.fetchval, f"SELECT COUNT(*) FROM {self._table}")
        return int(value or 0)

    async def verify(self) -> VerificationReport:
        pool = self._require_pool()
        differences: list[str] = []
        bad_dims = await self._call(
            "verify",
            pool.fetchval,
            f"SELECT COUNT(*) FROM {self._table} WHERE vector_dims(embedding) != $1",
            self._dimension,
        )
        if bad_dims:
            differences.append(f"{bad_dims} chunks do not have {self._dimension} dimensions")
        empty = await self._call(
            "verify",
            pool.fetchval,
            f"SELECT COUNT(*) FROM {self._table} WHERE length(trim(content)) = 0",
        )
        if empty:
            differences.append(f"{empty} chunks have empty content")
        return VerificationReport(valid=not differences, differences=differences)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_pool(self) -> asyncpg.Pool:
        require_ready(self._pool is not None, _BACKEND)
        return self._pool

    async def _call(self, operation: str, fn: Callable[..., Awaitable[T]], *args: Any) -> T:
        """Run *fn* and translate asyncpg failures into the store error taxonomy."""
        try:
            return await fn(*args)
        except _CONNECTION_ERRORS as exc:
            logger.error("server_store_connection_lost", operation=operation, error=str(exc))
            raise StoreConnectionError(
                message=f"{operation} failed: {exc}",
                provider_name=_BACKEND,
            ) from exc
        except (asyncpg.PostgresError, asyncpg.exceptions.InterfaceError) as exc:
            raise VectorStoreError(
                message=f"{operation} failed: {exc}",
                provider_name=_BACKEND,
            ) from exc

    async def _stamp_updated(self) -> None:
        now = datetime.now(tz=timezone.utc)
        await self._call(
            "stamp_updated",
            self._pool.execute,
            f"INSERT INTO {self._meta_table} (key, value) VALUES ('updated_at', $1) "
            f"ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value",
            now.isoformat(),
        )
        self._updated_at = now


def _to_params(chunk: Chunk) -> tuple:
    meta = chunk.metadata
    return (
        chunk.id,
        chunk.content,
        np.asarray(chunk.embedding, dtype=np.float32),
        meta.document_id,
        meta.section,
        meta.content_type,
        meta.model_dump_json(),
    )


def _where_clauses(params: list[Any], min_score: float | None, filters: MetadataFilter | None) -> list[str]:
    """Append bind values for the score floor and *filters* to *params*.

    Returns the matching SQL predicates; placeholders are numbered after
    whatever *params* already holds.
    """
    where: list[str] = []
    if min_score is not None:
        params.append(float(min_score))
        where.append(f"1 - (embedding <=> $1) >= ${len(params)}")
    if filters is None:
        return where
    for column, values in (
        ("document_id", filters.document_ids),
        ("section", filters.sections),
        ("content_type", filters.content_types),
    ):
        if values:
            params.append(list(values))
            where.append(f"{column} = ANY(${len(params)}::text[])")
    if filters.keywords:
        params.append(list(filters.keywords))
        where.append(f"metadata->'keywords' ?| ${len(params)}::text[]")
    return where


def _from_row(row: Any) -> Chunk:
    metadata = row["metadata"]
    try:
        if isinstance(metadata, str):
            parsed = ChunkMetadata.model_validate_json(metadata)
        else:
            parsed = ChunkMetadata.model_validate(metadata)
        return Chunk(
            id=row["id"],
            content=row["content"],
            embedding=[float(x) for x in row["embedding"]],
            metadata=parsed,
        )
    except (ValidationError, TypeError) as exc:
        raise CorruptionError(message=f"Row {row['id']!r} is malformed: {exc}", provider_name=_BACKEND) from exc


def _affected(status: str) -> int:
    """Parse the row count out of a command tag such as ``"DELETE 3"``."""
    try:
        return int(str(status).rsplit(" ", 1)[-1])
    except ValueError:
        return 0


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None
