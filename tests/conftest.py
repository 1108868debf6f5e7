"""Shared pytest fixtures for the mnemosyne test suite."""

from __future__ import annotations

import hashlib
import logging
import struct
from datetime import datetime, timezone
from pathlib import Path

import pytest
import structlog

from mnemosyne.interfaces.embedding_provider import IEmbeddingProvider
from mnemosyne.models.chunk import Chunk, ChunkMetadata, make_chunk_id
from mnemosyne.providers.vector_store.embedded_store import EmbeddedVectorStore
from mnemosyne.providers.vector_store.file_store import FileVectorStore

MOCK_DIMENSION = 8
MOCK_MODEL = "mock-embed"


# ---------------------------------------------------------------------------
# Mock embedding provider
# ---------------------------------------------------------------------------


class MockEmbeddingProvider(IEmbeddingProvider):
    """Deterministic embedder: SHA-256 of the text mapped into [-1, 1].

    The same text always gets the same vector, so re-ingestion and
    cross-backend comparisons are reproducible.
    """

    def __init__(self, dimension: int = MOCK_DIMENSION, model: str = MOCK_MODEL) -> None:
        self._dimension = dimension
        self._model = model
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [fake_embedding(t, self._dimension) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        return fake_embedding(text, self._dimension)

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return "mock-embedding"

    def is_available(self) -> bool:
        return True


def fake_embedding(text: str, dimension: int = MOCK_DIMENSION) -> list[float]:
    """Derive a reproducible vector from *text*."""
    digest = b""
    counter = 0
    while len(digest) < dimension * 2:
        digest += hashlib.sha256(f"{counter}:{text}".encode()).digest()
        counter += 1
    values = struct.unpack(f"<{dimension}H", digest[: dimension * 2])
    return [v / 32767.5 - 1.0 for v in values]


def make_metadata(
    document_id: str = "docs/a.md",
    index: int = 0,
    content_type: str = "markdown",
    keywords: list[str] | None = None,
) -> ChunkMetadata:
    return ChunkMetadata(
        document_id=document_id,
        document_title=Path(document_id).stem,
        section=f"chunk-{index}",
        content_type=content_type,
        keywords=["alpha", "beta"] if keywords is None else keywords,
        page_reference=f"{document_id}#chunk-{index}",
        chunk_index=index,
        source_path=document_id,
        created_at=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        word_count=3,
        char_count=17,
    )


def make_chunk(
    document_id: str = "docs/a.md",
    index: int = 0,
    content: str | None = None,
    content_type: str = "markdown",
    keywords: list[str] | None = None,
) -> Chunk:
    text = content or f"chunk {index} of {document_id}"
    return Chunk(
        id=make_chunk_id(document_id, index),
        content=text,
        embedding=fake_embedding(text),
        metadata=make_metadata(document_id, index, content_type=content_type, keywords=keywords),
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def embedder() -> MockEmbeddingProvider:
    return MockEmbeddingProvider()


@pytest.fixture
def file_store(tmp_path: Path) -> FileVectorStore:
    """An uninitialized JSON-file store under the test's tmp dir."""
    return FileVectorStore(path=tmp_path / "vectors.json", dimension=MOCK_DIMENSION, embedding_model=MOCK_MODEL)


@pytest.fixture
def embedded_store(tmp_path: Path) -> EmbeddedVectorStore:
    """An uninitialized SQLite store under the test's tmp dir."""
    return EmbeddedVectorStore(db_path=tmp_path / "vectors.db", dimension=MOCK_DIMENSION, embedding_model=MOCK_MODEL)


@pytest.fixture
def sample_markdown() -> str:
    return (
        "# Release Notes\n\n"
        "The ingestion pipeline now keeps paragraphs intact when chunking.\n\n"
        "## Storage\n\n"
        "Three storage backends are available: file, embedded and server."
    )


@pytest.fixture(autouse=True)
def _reset_logging():
    """Drop handlers bound to pytest's capture streams once a test finishes."""
    yield
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()
