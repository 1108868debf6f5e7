"""Unit tests for chunk draft annotation: ids, metadata, keywords, headings."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from mnemosyne.providers.documents import InMemoryDocument
from mnemosyne.services.ingestion.chunk_builder import (
    build_chunk_drafts,
    content_type_for,
    extract_first_heading,
    extract_keywords,
)


class TestContentType:
    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("notes/a.md", "markdown"),
            ("notes/A.MD", "markdown"),
            ("notes/b.markdown", "markdown"),
            ("notes/c.txt", "text"),
            ("notes/d.rst", "unknown"),
            ("README", "unknown"),
        ],
    )
    def test_extension_mapping(self, path: str, expected: str) -> None:
        assert content_type_for(path) == expected


class TestKeywords:
    def test_most_frequent_words_first(self) -> None:
        text = "vector vector vector store store chunk"
        assert extract_keywords(text) == ["vector", "store", "chunk"]

    def test_short_words_and_punctuation_ignored(self) -> None:
        assert extract_keywords("a an the, of! cat dog.") == []

    def test_limit_respected(self) -> None:
        text = " ".join(f"word{i}" for i in range(30))
        assert len(extract_keywords(text)) == 10
        assert len(extract_keywords(text, limit=3)) == 3

    def test_lowercased(self) -> None:
        assert extract_keywords("Vector VECTOR vector") == ["vector"]


class TestHeading:
    def test_first_heading_found(self) -> None:
        assert extract_first_heading("intro\n## Setup ##\ntext\n# Later") == "Setup"

    def test_no_heading(self) -> None:
        assert extract_first_heading("plain text only") is None


class TestBuildDrafts:
    def test_ids_and_metadata(self) -> None:
        doc = InMemoryDocument(path="guides/setup.md", content="")
        created = datetime(2024, 5, 1, tzinfo=timezone.utc)
        drafts = build_chunk_drafts(doc, ["# Install\n\nRun the installer.", "Second piece here"], created_at=created)

        assert [d.id for d in drafts] == ["guides/setup.md#chunk-0", "guides/setup.md#chunk-1"]
        first = drafts[0].metadata
        assert first.document_id == "guides/setup.md"
        assert first.document_title == "setup"
        assert first.section == "chunk-0"
        assert first.section_title == "Install"
        assert first.content_type == "markdown"
        assert first.page_reference == "guides/setup.md#chunk-0"
        assert first.chunk_index == 0
        assert first.source_path == "guides/setup.md"
        assert first.created_at == created
        assert first.word_count == 5
        assert first.char_count == len("# Install\n\nRun the installer.")
        assert drafts[1].metadata.section_title is None
        assert drafts[1].metadata.chunk_index == 1

    def test_same_input_same_ids(self) -> None:
        doc = InMemoryDocument(path="a.txt", content="")
        ids_1 = [d.id for d in build_chunk_drafts(doc, ["x", "y"])]
        ids_2 = [d.id for d in build_chunk_drafts(doc, ["x", "y"])]
        assert ids_1 == ids_2
