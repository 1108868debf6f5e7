"""Helpers shared by the vector store backends."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable

from pydantic import ValidationError

from mnemosyne.models.chunk import Chunk, ChunkMetadata
from mnemosyne.utils.errors import VectorStoreError
from mnemosyne.utils.vector_math import check_dimension


def build_chunk(
    chunk_id: str,
    content: str,
    embedding: list[float],
    metadata: ChunkMetadata,
    dimension: int,
    provider_name: str,
) -> Chunk:
    """Validate the parts of a chunk and assemble it.

    Raises :class:`ConfigurationError` for a wrong embedding length and
    :class:`VectorStoreError` for any other invalid field (empty id or content).
    """
    check_dimension(embedding, dimension, provider_name=provider_name)
    try:
        return Chunk(id=chunk_id, content=content, embedding=list(embedding), metadata=metadata)
    except ValidationError as exc:
        raise VectorStoreError(
            message=f"Invalid chunk {chunk_id!r}: {exc.errors()[0]['msg']}",
            provider_name=provider_name,
        ) from exc


def count_breakdowns(metadata: Iterable[ChunkMetadata]) -> tuple[dict[str, int], dict[str, int]]:
    """Return ``(document_counts, content_type_counts)`` for *metadata*."""
    documents: Counter[str] = Counter()
    content_types: Counter[str] = Counter()
    for meta in metadata:
        documents[meta.document_id] += 1
        content_types[meta.content_type] += 1
    return dict(documents), dict(content_types)


def require_ready(ready: bool, provider_name: str) -> None:
    if not ready:
        raise VectorStoreError(
            message="Store is not initialized; call initialize() first",
            provider_name=provider_name,
        )
