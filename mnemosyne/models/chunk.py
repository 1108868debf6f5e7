"""Chunk data models for the mnemosyne vector store.

Defines Pydantic v2 models for stored chunks, their metadata, similarity
search results, and store-level statistics.  All models are frozen: a chunk
is written once and replaced wholesale on upsert.

Identity rules:
    A chunk id is ``{document_id}#chunk-{index}`` (see :func:`make_chunk_id`),
    so re-ingesting the same document produces the same ids and the
    skip-existing check in the ingestion service can recognise them.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator


def make_chunk_id(document_id: str, index: int) -> str:
    """Build the deterministic id for chunk *index* of *document_id*."""
    return f"{document_id}#chunk-{index}"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


# ---------------------------------------------------------------------------
# ChunkMetadata -- provenance and descriptive fields stored with each vector.
# ---------------------------------------------------------------------------
class ChunkMetadata(BaseModel):
    """Descriptive metadata attached to every stored chunk.

    Every backend persists all of these fields and returns them unchanged
    from ``get()`` and ``query()``.
    """

    model_config = ConfigDict(frozen=True)

    document_id: str = Field(description="Identifier of the parent document (its path).")
    document_title: str = Field(description="Human-readable title of the parent document.")
    section: str = Field(description='Section label, "chunk-{index}" by default.')
    section_title: str | None = Field(
        default=None,
        description="First markdown heading found in the chunk, if any.",
    )
    content_type: str = Field(default="text", description='"markdown", "text", or another type tag.')
    keywords: list[str] = Field(
        default_factory=list,
        description="Most frequent words of the chunk; may be empty.",
    )
    page_reference: str = Field(description='Locator of the form "{path}#chunk-{index}".')
    chunk_index: int = Field(ge=0, description="0-based position of the chunk in its document.")
    source_path: str = Field(description="Path of the document the chunk was read from.")
    created_at: datetime = Field(default_factory=_utcnow, description="Creation time (UTC).")
    word_count: int = Field(default=0, ge=0)
    char_count: int = Field(default=0, ge=0)

    @field_validator("created_at")
    @classmethod
    def _ensure_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Chunk(BaseModel):
    """A contiguous piece of document text, its embedding, and its metadata."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Unique id within a store.")
    content: str = Field(min_length=1, description="Trimmed, non-empty chunk text.")
    embedding: list[float] = Field(description="Fixed-length float vector.")
    metadata: ChunkMetadata


class ScoredChunk(BaseModel):
    """A chunk returned by ``query()`` with its cosine similarity score.

    Scores lie in [-1, 1]; results are ordered highest first.
    """

    model_config = ConfigDict(frozen=True)

    chunk: Chunk
    score: float = Field(description="Cosine similarity between query and chunk embedding.")


class MetadataFilter(BaseModel):
    """Restricts ``query()`` to chunks whose metadata matches.

    Each non-empty field lists accepted values and a chunk must satisfy all
    of them.  ``keywords`` matches when any listed keyword is among the
    chunk's keywords.  An empty filter matches everything.
    """

    model_config = ConfigDict(frozen=True)

    document_ids: list[str] = Field(default_factory=list)
    sections: list[str] = Field(default_factory=list)
    content_types: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.document_ids or self.sections or self.content_types or self.keywords)

    def matches(self, metadata: ChunkMetadata) -> bool:
        if self.document_ids and metadata.document_id not in self.document_ids:
            return False
        if self.sections and metadata.section not in self.sections:
            return False
        if self.content_types and metadata.content_type not in self.content_types:
            return False
        if self.keywords and not set(self.keywords) & set(metadata.keywords):
            return False
        return True


class StoreStats(BaseModel):
    """Aggregate statistics about a vector store."""

    model_config = ConfigDict(frozen=True)

    total_chunks: int = Field(default=0, ge=0)
    backend: str = Field(description='"file", "embedded", or "server".')
    embedding_model: str = Field(default="")
    dimension: int = Field(ge=0)
    document_counts: dict[str, int] = Field(
        default_factory=dict,
        description="Number of chunks per document id.",
    )
    content_type_counts: dict[str, int] = Field(
        default_factory=dict,
        description="Number of chunks per content type.",
    )
    created_at: datetime | None = None
    updated_at: datetime | None = None


class VerificationReport(BaseModel):
    """Outcome of a store self-check or a source/target comparison."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    differences: list[str] = Field(default_factory=list)


class ChunkDraft(BaseModel):
    """A chunk produced by the chunking phase, waiting for its embedding."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    content: str = Field(min_length=1)
    metadata: ChunkMetadata
