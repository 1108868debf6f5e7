"""Single-file JSON vector store.

Holds every chunk in memory and persists the whole index as one JSON
document::

    {
      "version": "1.0",
      "backend": "file",
      "embedding_model": "...",
      "dimension": 384,
      "total_chunks": 2,
      "created_at": "...",
      "updated_at": "...",
      "entries": [{"id": ..., "content": ..., "embedding": [...], "metadata": {...}}]
    }

Suited to small corpora: the file is loaded whole on ``initialize()`` and
queries are a brute-force numpy cosine scan.  Writes are buffered until
``flush()``/``close()``, which replace the file atomically (temp file +
``os.replace``) so a crash mid-write never leaves a truncated index.
"""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

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
from mnemosyne.providers.vector_store._common import build_chunk, count_breakdowns, require_ready
from mnemosyne.utils.errors import ConfigurationError, CorruptionError, VectorStoreError
from mnemosyne.utils.vector_math import check_dimension, cosine_scores, normalize_rows, select_top

logger = structlog.get_logger(logger_name=__name__)

_FORMAT_VERSION = "1.0"
_BACKEND = "file"


class FileVectorStore(IVectorStore):
    """JSON-file implementation of :class:`IVectorStore`."""

    def __init__(self, path: str | Path, dimension: int, embedding_model: str = "") -> None:
        if dimension <= 0:
            raise ConfigurationError(
                message=f"Dimension must be positive, got {dimension}",
                provider_name=_BACKEND,
            )
        self._path = Path(path)
        self._dimension = dimension
        self._embedding_model = embedding_model
        self._entries: dict[str, Chunk] = {}
        self._created_at: datetime | None = None
        self._updated_at: datetime | None = None
        self._dirty = False
        self._ready = False
        # Normalized matrix cache, rebuilt on the first query after a write.
        self._matrix: np.ndarray | None = None
        self._matrix_ids: list[str] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        if self._ready:
            return

        if self._path.exists():
            try:
                raw = await asyncio.to_thread(self._path.read_bytes)
            except OSError as exc:
                raise VectorStoreError(message=f"Cannot read {self._path}: {exc}", provider_name=_BACKEND) from exc
            self._load(raw)
        else:
            self._entries = {}
            self._created_at = datetime.now(tz=timezone.utc)
            self._updated_at = self._created_at
            await asyncio.to_thread(self._write_atomic, self._serialize())

        self._dirty = False
        self._invalidate_index()
        self._ready = True
        logger.info(
            "file_store_initialized",
            path=str(self._path),
            total_chunks=len(self._entries),
            dimension=self._dimension,
        )

    def _load(self, raw: bytes) -> None:
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CorruptionError(
                message=f"{self._path} is not valid UTF-8 JSON: {exc}",
                provider_name=_BACKEND,
            ) from exc

        # Validate the metadata block before trusting any entry.
        if not isinstance(data, dict):
            raise CorruptionError(message=f"{self._path} does not hold an index object", provider_name=_BACKEND)
        if data.get("version") != _FORMAT_VERSION:
            raise CorruptionError(
                message=f"Unsupported index version {data.get('version')!r}",
                provider_name=_BACKEND,
            )
        if data.get("backend", _BACKEND) != _BACKEND:
            raise CorruptionError(
                message=f"Index was written by the {data.get('backend')!r} backend",
                provider_name=_BACKEND,
            )
        entries = data.get("entries")
        stored_dimension = data.get("dimension")
        if not isinstance(entries, list) or not isinstance(stored_dimension, int):
            raise CorruptionError(message="Index is missing entries or dimension", provider_name=_BACKEND)
        if data.get("total_chunks", len(entries)) != len(entries):
            raise CorruptionError(
                message=f"Index declares {data.get('total_chunks')} chunks but holds {len(entries)}",
                provider_name=_BACKEND,
            )
        if stored_dimension != self._dimension:
            raise ConfigurationError(
                message=f"Index dimension {stored_dimension} does not match configured {self._dimension}",
                provider_name=_BACKEND,
            )

        loaded: dict[str, Chunk] = {}
        try:
            for entry in entries:
                chunk = Chunk.model_validate(entry)
                if chunk.id in loaded:
                    raise CorruptionError(message=f"Duplicate chunk id {chunk.id!r}", provider_name=_BACKEND)
                if len(chunk.embedding) != self._dimension:
                    raise CorruptionError(
                        message=f"Chunk {chunk.id!r} has {len(chunk.embedding)} dimensions",
                        provider_name=_BACKEND,
                    )
                loaded[chunk.id] = chunk
        except ValidationError as exc:
            raise CorruptionError(message=f"Malformed index entry: {exc}", provider_name=_BACKEND) from exc

        stored_model = data.get("embedding_model") or ""
        if stored_model and self._embedding_model and stored_model != self._embedding_model:
            logger.warning(
                "file_store_model_mismatch",
                stored=stored_model,
                configured=self._embedding_model,
            )
        self._embedding_model = stored_model or self._embedding_model
        self._entries = loaded
        self._created_at = _parse_timestamp(data.get("created_at"))
        self._updated_at = _parse_timestamp(data.get("updated_at"))

    async def flush(self) -> None:
        if not self._ready or not self._dirty:
            return
        payload = self._serialize()
        await asyncio.to_thread(self._write_atomic, payload)
        self._dirty = False
        logger.debug("file_store_flushed", path=str(self._path), total_chunks=len(self._entries))

    async def close(self) -> None:
        if not self._ready:
            return
        await self.flush()
        self._ready = False
        self._entries = {}
        self._invalidate_index()
        logger.info("file_store_closed", path=str(self._path))

    def is_ready(self) -> bool:
        return self._ready

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
        require_ready(self._ready, _BACKEND)
        chunk = build_chunk(chunk_id, content, embedding, metadata, self._dimension, _BACKEND)
        self._entries[chunk.id] = chunk
        self._touch()

    async def insert_batch(self, chunks: list[Chunk]) -> int:
        require_ready(self._ready, _BACKEND)
        for chunk in chunks:
            check_dimension(chunk.embedding, self._dimension, provider_name=_BACKEND)
        for chunk in chunks:
            self._entries[chunk.id] = chunk
        if chunks:
            self._touch()
        return len(chunks)

    async def delete(self, chunk_id: str) -> bool:
        require_ready(self._ready, _BACKEND)
        if self._entries.pop(chunk_id, None) is None:
            return False
        self._touch()
        return True

    async def delete_document(self, document_id: str) -> int:
        require_ready(self._ready, _BACKEND)
        doomed = [cid for cid, c in self._entries.items() if c.metadata.document_id == document_id]
        for cid in doomed:
            del self._entries[cid]
        if doomed:
            self._touch()
        logger.info("file_store_document_deleted", document_id=document_id, deleted=len(doomed))
        return len(doomed)

    async def clear(self) -> None:
        require_ready(self._ready, _BACKEND)
        self._entries = {}
        self._touch()
        logger.info("file_store_cleared", path=str(self._path))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, chunk_id: str) -> Chunk | None:
        require_ready(self._ready, _BACKEND)
        return self._entries.get(chunk_id)

    async def query(
        self,
        embedding: list[float],
        k: int = 10,
        min_score: float | None = None,
        filters: MetadataFilter | None = None,
    ) -> list[ScoredChunk]:
        require_ready(self._ready, _BACKEND)
        check_dimension(embedding, self._dimension, provider_name=_BACKEND)
        if k <= 0 or not self._entries:
            return []
        matrix, ids = self._index()
        mask = None
        if filters is not None and not filters.is_empty():
            mask = np.fromiter(
                (filters.matches(self._entries[cid].metadata) for cid in ids),
                dtype=bool,
                count=len(ids),
            )
        scores = cosine_scores(matrix, embedding)
        return [
            ScoredChunk(chunk=self._entries[ids[i]], score=float(scores[i]))
            for i in select_top(scores, k, min_score=min_score, mask=mask)
        ]

    async def get_stats(self) -> StoreStats:
        require_ready(self._ready, _BACKEND)
        documents, content_types = count_breakdowns(c.metadata for c in self._entries.values())
        return StoreStats(
            total_chunks=len(self._entries),
            backend=_BACKEND,
            embedding_model=self._embedding_model,
            dimension=self._dimension,
            document_counts=documents,
            content_type_counts=content_types,
            created_at=self._created_at,
            updated_at=self._updated_at,
        )

    async def iter_batches(self, batch_size: int = 100) -> AsyncIterator[list[Chunk]]:
        require_ready(self._ready, _BACKEND)
        if batch_size <= 0:
            raise ConfigurationError(message="batch_size must be positive", provider_name=_BACKEND)
        ids = sorted(self._entries)
        for start in range(0, len(ids), batch_size):
            batch = [self._entries[cid] for cid in ids[start : start + batch_size] if cid in self._entries]
            if batch:
                yield batch

    async def count(self) -> int:
        require_ready(self._ready, _BACKEND)
        return len(self._entries)

    async def verify(self) -> VerificationReport:
        require_ready(self._ready, _BACKEND)
        differences: list[str] = []
        for cid, chunk in self._entries.items():
            if cid != chunk.id:
                differences.append(f"Entry key {cid!r} does not match chunk id {chunk.id!r}")
            if len(chunk.embedding) != self._dimension:
                differences.append(
                    f"Chunk {cid!r} has {len(chunk.embedding)} dimensions, expected {self._dimension}"
                )
        if self._matrix is not None and len(self._matrix_ids) != len(self._entries):
            differences.append(
                f"Search index holds {len(self._matrix_ids)} vectors for {len(self._entries)} chunks"
            )
        return VerificationReport(valid=not differences, differences=differences)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _touch(self) -> None:
        self._dirty = True
        self._updated_at = datetime.now(tz=timezone.utc)
        self._invalidate_index()

    def _invalidate_index(self) -> None:
        self._matrix = None
        self._matrix_ids = []

    def _index(self) -> tuple[np.ndarray, list[str]]:
        if self._matrix is None:
            ids = sorted(self._entries)
            raw = np.asarray([self._entries[cid].embedding for cid in ids], dtype=np.float64)
            self._matrix = normalize_rows(raw)
            self._matrix_ids = ids
        return self._matrix, self._matrix_ids

    def _serialize(self) -> dict[str, Any]:
        entries = [self._entries[cid].model_dump(mode="json") for cid in sorted(self._entries)]
        return {
            "version": _FORMAT_VERSION,
            "backend": _BACKEND,
            "embedding_model": self._embedding_model,
            "dimension": self._dimension,
            "total_chunks": len(entries),
            "created_at": self._created_at.isoformat() if self._created_at else None,
            "updated_at": self._updated_at.isoformat() if self._updated_at else None,
            "entries": entries,
        }

    def _write_atomic(self, payload: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as fh:
                json.dump(payload, fh)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise VectorStoreError(
                message=f"Failed to write {self._path}: {exc}",
                provider_name=_BACKEND,
            ) from exc


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
