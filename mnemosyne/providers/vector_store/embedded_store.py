"""Embedded SQLite vector store with an in-memory similarity index.

Chunks live in one SQLite file accessed through ``aiosqlite``; embeddings are
stored as raw float64 blobs so a vector read back is bit-identical to the
one written.  A ``store_meta`` table records the dimension, embedding model
and backend tag, and is checked on every ``initialize()``.

Similarity search is a linear scan: every query scores all rows of a
normalized numpy matrix built from the table at ``initialize()``.  Metadata
filters are resolved in SQL first and mask the scan.  Every insert and
delete updates the in-memory vectors, so the index never disagrees with the
table.

Every ``sqlite3`` failure surfaces as :class:`VectorStoreError`; failed
writes are rolled back first.

With ``durable=True`` the database uses ``journal_mode=WAL`` and
``synchronous=FULL``: a committed batch survives a crash.
"""

from __future__ import annotations

import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite
import numpy as np
import structlog
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
from mnemosyne.providers.vector_store._common import build_chunk, require_ready
from mnemosyne.utils.errors import ConfigurationError, CorruptionError, VectorStoreError
from mnemosyne.utils.vector_math import check_dimension, cosine_scores, normalize_rows, select_top

logger = structlog.get_logger(logger_name=__name__)

_BACKEND = "embedded"
_EMBEDDING_DTYPE = np.float64

_CREATE_CHUNKS_SQL = """\
CREATE TABLE IF NOT EXISTS chunks (
    id            TEXT PRIMARY KEY,
    content       TEXT NOT NULL,
    embedding     BLOB NOT NULL,
    document_id   TEXT NOT NULL,
    section       TEXT NOT NULL,
    content_type  TEXT NOT NULL,
    metadata      TEXT NOT NULL,
    created_at    TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""

_CREATE_META_SQL = """\
CREATE TABLE IF NOT EXISTS store_meta (
    key    TEXT PRIMARY KEY,
    value  TEXT NOT NULL
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_content_type ON chunks(content_type);",
]

_UPSERT_SQL = """\
INSERT INTO chunks (id, content, embedding, document_id, section, content_type, metadata)
VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id)
DO UPDATE SET content      = excluded.content,
              embedding    = excluded.embedding,
              document_id  = excluded.document_id,
              section      = excluded.section,
              content_type = excluded.content_type,
              metadata     = excluded.metadata;
"""

_SELECT_COLUMNS = "id, content, embedding, metadata"

_SET_META_SQL = "INSERT OR REPLACE INTO store_meta (key, value) VALUES (?, ?);"


class EmbeddedVectorStore(IVectorStore):
    """SQLite + numpy implementation of :class:`IVectorStore`."""

    def __init__(
        self,
        db_path: str | Path,
        dimension: int,
        embedding_model: str = "",
        durable: bool = True,
        cache_size: int = 10000,
    ) -> None:
        if dimension <= 0:
            raise ConfigurationError(
                message=f"Dimension must be positive, got {dimension}",
                provider_name=_BACKEND,
            )
        self._db_path = Path(db_path)
        self._dimension = dimension
        self._embedding_model = embedding_model
        self._durable = durable
        self._cache_size = cache_size
        self._db: aiosqlite.Connection | None = None
        self._created_at: datetime | None = None
        self._updated_at: datetime | None = None
        # Unit-length vectors keyed by chunk id, plus a lazily stacked matrix.
        self._vectors: dict[str, np.ndarray] = {}
        self._matrix: np.ndarray | None = None
        self._matrix_ids: list[str] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        if self._db is not None:
            return

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            db = await aiosqlite.connect(str(self._db_path))
        except sqlite3.Error as exc:
            raise VectorStoreError(message=f"Cannot open {self._db_path}: {exc}", provider_name=_BACKEND) from exc

        try:
            if self._durable:
                await db.execute("PRAGMA journal_mode=WAL;")
                await db.execute("PRAGMA synchronous=FULL;")
            await db.execute(f"PRAGMA cache_size={int(self._cache_size)};")
            await db.execute(_CREATE_CHUNKS_SQL)
            await db.execute(_CREATE_META_SQL)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
            await self._check_meta(db)
            await self._load_index(db)
        except sqlite3.OperationalError as exc:
            await db.close()
            raise VectorStoreError(message=f"Cannot prepare {self._db_path}: {exc}", provider_name=_BACKEND) from exc
        except sqlite3.DatabaseError as exc:
            await db.close()
            raise CorruptionError(
                message=f"{self._db_path} is not a readable vector store: {exc}",
                provider_name=_BACKEND,
            ) from exc
        except BaseException:
            # The aiosqlite worker thread keeps the process alive until closed.
            await db.close()
            raise

        self._db = db
        logger.info(
            "embedded_store_initialized",
            path=str(self._db_path),
            total_chunks=len(self._vectors),
            dimension=self._dimension,
            durable=self._durable,
        )

    async def _check_meta(self, db: aiosqlite.Connection) -> None:
        cursor = await db.execute("SELECT key, value FROM store_meta")
        meta = {key: value for key, value in await cursor.fetchall()}

        if not meta:
            now = _now_iso()
            await db.executemany(
                _SET_META_SQL,
                [
                    ("backend", _BACKEND),
                    ("dimension", str(self._dimension)),
                    ("embedding_model", self._embedding_model),
                    ("created_at", now),
                    ("updated_at", now),
                ],
            )
            await db.commit()
            meta = {"created_at": now, "updated_at": now}
        else:
            if meta.get("backend", _BACKEND) != _BACKEND:
                raise CorruptionError(
                    message=f"Database was written by the {meta.get('backend')!r} backend",
                    provider_name=_BACKEND,
                )
            try:
                stored_dimension = int(meta.get("dimension", ""))
            except ValueError as exc:
                raise CorruptionError(message="store_meta has no valid dimension", provider_name=_BACKEND) from exc
            if stored_dimension != self._dimension:
                raise ConfigurationError(
                    message=f"Database dimension {stored_dimension} does not match configured {self._dimension}",
                    provider_name=_BACKEND,
                )
            stored_model = meta.get("embedding_model", "")
            if stored_model and self._embedding_model and stored_model != self._embedding_model:
                logger.warning("embedded_store_model_mismatch", stored=stored_model, configured=self._embedding_model)
            self._embedding_model = stored_model or self._embedding_model

        self._created_at = _parse_iso(meta.get("created_at"))
        self._updated_at = _parse_iso(meta.get("updated_at"))

    async def _load_index(self, db: aiosqlite.Connection) -> None:
        vectors: dict[str, np.ndarray] = {}
        cursor = await db.execute("SELECT id, embedding FROM chunks ORDER BY id")
        async for chunk_id, blob in cursor:
            vec = _decode_embedding(chunk_id, blob)
            if vec.shape[0] != self._dimension:
                raise CorruptionError(
                    message=f"Chunk {chunk_id!r} has {vec.shape[0]} dimensions, expected {self._dimension}",
                    provider_name=_BACKEND,
                )
            vectors[chunk_id] = _unit(vec)
        self._vectors = vectors
        self._invalidate_index()

    async def flush(self) -> None:
        if self._db is None:
            return
        async with self._sqlite("flush", write=True) as db:
            await db.commit()

    async def close(self) -> None:
        if self._db is None:
            return
        db = self._db
        self._db = None
        self._vectors = {}
        self._invalidate_index()
        try:
            await db.commit()
        except sqlite3.Error as exc:
            raise VectorStoreError(message=f"Final commit failed: {exc}", provider_name=_BACKEND) from exc
        finally:
            await db.close()
        logger.info("embedded_store_closed", path=str(self._db_path))

    def is_ready(self) -> bool:
        return self._db is not None

    def get_backend_name(self) -> str:
        return _BACKEND

    def get_dimension(self) -> int:
        return self._dimension

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(
        self,
        chunk_id: str,
        content: str,
        embedding: list[float],
        metadata: ChunkMetadata,
    ) -> None:
        chunk = build_chunk(chunk_id, content, embedding, metadata, self._dimension, _BACKEND)
        await self.insert_batch([chunk])

    async def insert_batch(self, chunks: list[Chunk]) -> int:
        self._conn()
        if not chunks:
            return 0
        for chunk in chunks:
            check_dimension(chunk.embedding, self._dimension, provider_name=_BACKEND)
        rows = [_to_row(chunk) for chunk in chunks]
        async with self._sqlite("insert", write=True) as db:
            await db.executemany(_UPSERT_SQL, rows)
            await self._stamp_updated(db)
            await db.commit()

        for chunk in chunks:
            self._vectors[chunk.id] = _unit(np.asarray(chunk.embedding, dtype=_EMBEDDING_DTYPE))
        self._invalidate_index()
        return len(chunks)

    async def delete(self, chunk_id: str) -> bool:
        async with self._sqlite("delete", write=True) as db:
            cursor = await db.execute("DELETE FROM chunks WHERE id = ?", (chunk_id,))
            deleted = cursor.rowcount > 0
            if deleted:
                await self._stamp_updated(db)
            await db.commit()
        if self._vectors.pop(chunk_id, None) is not None:
            self._invalidate_index()
        return deleted

    async def delete_document(self, document_id: str) -> int:
        async with self._sqlite("delete_document", write=True) as db:
            cursor = await db.execute("SELECT id FROM chunks WHERE document_id = ?", (document_id,))
            doomed = [row[0] for row in await cursor.fetchall()]
            if doomed:
                await db.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
                await self._stamp_updated(db)
                await db.commit()
        if doomed:
            for chunk_id in doomed:
                self._vectors.pop(chunk_id, None)
            self._invalidate_index()
        logger.info("embedded_store_document_deleted", document_id=document_id, deleted=len(doomed))
        return len(doomed)

    async def clear(self) -> None:
        async with self._sqlite("clear", write=True) as db:
            await db.execute("DELETE FROM chunks")
            await self._stamp_updated(db)
            await db.commit()
        self._vectors = {}
        self._invalidate_index()
        logger.info("embedded_store_cleared", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, chunk_id: str) -> Chunk | None:
        async with self._sqlite("get") as db:
            cursor = await db.execute(f"SELECT {_SELECT_COLUMNS} FROM chunks WHERE id = ?", (chunk_id,))
            row = await cursor.fetchone()
        return _from_row(row) if row else None

    async def query(
        self,
        embedding: list[float],
        k: int = 10,
        min_score: float | None = None,
        filters: MetadataFilter | None = None,
    ) -> list[ScoredChunk]:
        self._conn()
        check_dimension(embedding, self._dimension, provider_name=_BACKEND)
        if k <= 0 or not self._vectors:
            return []

        matrix, ids = self._index()
        mask = None
        if filters is not None and not filters.is_empty():
            allowed = await self._matching_ids(filters)
            mask = np.fromiter((cid in allowed for cid in ids), dtype=bool, count=len(ids))
        scores = cosine_scores(matrix, embedding)
        best = select_top(scores, k, min_score=min_score, mask=mask)
        if not best:
            return []
        best_ids = [ids[i] for i in best]

        placeholders = ",".join("?" for _ in best_ids)
        async with self._sqlite("query") as db:
            cursor = await db.execute(
                f"SELECT {_SELECT_COLUMNS} FROM chunks WHERE id IN ({placeholders})",
                best_ids,
            )
            rows = await cursor.fetchall()
        by_id = {row[0]: _from_row(row) for row in rows}
        return [
            ScoredChunk(chunk=by_id[ids[i]], score=float(scores[i]))
            for i in best
            if ids[i] in by_id
        ]

    async def get_stats(self) -> StoreStats:
        async with self._sqlite("get_stats") as db:
            cursor = await db.execute("SELECT document_id, COUNT(*) FROM chunks GROUP BY document_id")
            documents = {doc: n for doc, n in await cursor.fetchall()}
            cursor = await db.execute("SELECT content_type, COUNT(*) FROM chunks GROUP BY content_type")
            content_types = {ctype: n for ctype, n in await cursor.fetchall()}
        return StoreStats(
            total_chunks=sum(documents.values()),
            backend=_BACKEND,
            embedding_model=self._embedding_model,
            dimension=self._dimension,
            document_counts=documents,
            content_type_counts=content_types,
            created_at=self._created_at,
            updated_at=self._updated_at,
        )

    async def iter_batches(self, batch_size: int = 100) -> AsyncIterator[list[Chunk]]:
        self._conn()
        if batch_size <= 0:
            raise ConfigurationError(message="batch_size must be positive", provider_name=_BACKEND)
        # Keyset pagination: stable under concurrent inserts, no OFFSET scans.
        last_id = ""
        while True:
            async with self._sqlite("iter_batches") as db:
                cursor = await db.execute(
                    f"SELECT {_SELECT_COLUMNS} FROM chunks WHERE id > ? ORDER BY id LIMIT ?",
                    (last_id, batch_size),
                )
                rows = await cursor.fetchall()
            if not rows:
                return
            batch = [_from_row(row) for row in rows]
            last_id = batch[-1].id
            yield batch

    async def count(self) -> int:
        async with self._sqlite("count") as db:
            cursor = await db.execute("SELECT COUNT(*) FROM chunks")
            row = await cursor.fetchone()
        return int(row[0])

    async def verify(self) -> VerificationReport:
        differences: list[str] = []
        expected_bytes = self._dimension * np.dtype(_EMBEDDING_DTYPE).itemsize

        async with self._sqlite("verify") as db:
            cursor = await db.execute("PRAGMA integrity_check")
            integrity = [row[0] for row in await cursor.fetchall()]
            if integrity != ["ok"]:
                differences.extend(f"integrity_check: {msg}" for msg in integrity)

            cursor = await db.execute(
                "SELECT id FROM chunks WHERE length(embedding) != ?",
                (expected_bytes,),
            )
            for (chunk_id,) in await cursor.fetchall():
                differences.append(f"Chunk {chunk_id!r} has the wrong embedding length")

        total = await self.count()
        if total != len(self._vectors):
            differences.append(f"Table holds {total} chunks but the search index holds {len(self._vectors)}")

        return VerificationReport(valid=not differences, differences=differences)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _conn(self) -> aiosqlite.Connection:
        require_ready(self._db is not None, _BACKEND)
        return self._db

    @asynccontextmanager
    async def _sqlite(self, operation: str, write: bool = False) -> AsyncIterator[aiosqlite.Connection]:
        """Yield the connection, turning ``sqlite3`` failures into VectorStoreError.

        Writes are rolled back before the error is raised so a failed batch
        leaves no partial rows behind.
        """
        db = self._conn()
        try:
            yield db
        except sqlite3.Error as exc:
            if write:
                try:
                    await db.rollback()
                except sqlite3.Error as rollback_exc:
                    logger.error("embedded_store_rollback_failed", operation=operation, error=str(rollback_exc))
            logger.error("embedded_store_operation_failed", operation=operation, error=str(exc))
            raise VectorStoreError(message=f"{operation} failed: {exc}", provider_name=_BACKEND) from exc

    async def _matching_ids(self, filters: MetadataFilter) -> set[str]:
        clauses: list[str] = []
        params: list[str] = []
        for column, values in (
            ("document_id", filters.document_ids),
            ("section", filters.sections),
            ("content_type", filters.content_types),
        ):
            if values:
                clauses.append(f"{column} IN ({','.join('?' for _ in values)})")
                params.extend(values)
        if filters.keywords:
            placeholders = ",".join("?" for _ in filters.keywords)
            clauses.append(
                "EXISTS (SELECT 1 FROM json_each(chunks.metadata, '$.keywords') "
                f"WHERE json_each.value IN ({placeholders}))"
            )
            params.extend(filters.keywords)

        async with self._sqlite("query") as db:
            cursor = await db.execute(f"SELECT id FROM chunks WHERE {' AND '.join(clauses)}", params)
            return {row[0] for row in await cursor.fetchall()}

    async def _stamp_updated(self, db: aiosqlite.Connection) -> None:
        now = _now_iso()
        await db.execute(_SET_META_SQL, ("updated_at", now))
        self._updated_at = _parse_iso(now)

    def _invalidate_index(self) -> None:
        self._matrix = None
        self._matrix_ids = []

    def _index(self) -> tuple[np.ndarray, list[str]]:
        if self._matrix is None:
            ids = sorted(self._vectors)
            if ids:
                self._matrix = np.vstack([self._vectors[cid] for cid in ids])
            else:
                self._matrix = np.zeros((0, self._dimension), dtype=_EMBEDDING_DTYPE)
            self._matrix_ids = ids
        return self._matrix, self._matrix_ids


def _to_row(chunk: Chunk) -> tuple:
    meta = chunk.metadata
    return (
        chunk.id,
        chunk.content,
        np.asarray(chunk.embedding, dtype=_EMBEDDING_DTYPE).tobytes(),
        meta.document_id,
        meta.section,
        meta.content_type,
        meta.model_dump_json(),
    )


def _from_row(row: tuple) -> Chunk:
    chunk_id, content, blob, metadata_json = row
    try:
        return Chunk(
            id=chunk_id,
            content=content,
            embedding=_decode_embedding(chunk_id, blob).tolist(),
            metadata=ChunkMetadata.model_validate_json(metadata_json),
        )
    except ValidationError as exc:
        raise CorruptionError(message=f"Row {chunk_id!r} is malformed: {exc}", provider_name=_BACKEND) from exc


def _decode_embedding(chunk_id: str, blob: bytes) -> np.ndarray:
    itemsize = np.dtype(_EMBEDDING_DTYPE).itemsize
    if not isinstance(blob, (bytes, bytearray, memoryview)) or len(blob) % itemsize:
        raise CorruptionError(
            message=f"Chunk {chunk_id!r} has an embedding blob that is not a whole number of float64 values",
            provider_name=_BACKEND,
        )
    return np.frombuffer(blob, dtype=_EMBEDDING_DTYPE)


def _unit(vec: np.ndarray) -> np.ndarray:
    return normalize_rows(vec.reshape(1, -1))[0]


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None
