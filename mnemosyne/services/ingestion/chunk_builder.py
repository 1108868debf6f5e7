"""Turns chunker output into identified, annotated chunk drafts.

Each piece of text from :class:`TextChunker` becomes a
:class:`~mnemosyne.models.chunk.ChunkDraft` with a deterministic id
(``{path}#chunk-{index}``) and metadata: section label, first markdown
heading, content type from the file extension, top keywords, and counts.
"""

from __future__ import annotations

import re
from collections import Counter
from datetime import datetime, timezone
from pathlib import PurePosixPath

from mnemosyne.interfaces.document_source import IDocument
from mnemosyne.models.chunk import ChunkDraft, ChunkMetadata, make_chunk_id

_MAX_KEYWORDS = 10
_MIN_KEYWORD_LENGTH = 4

_NON_WORD = re.compile(r"[^\w\s]")
_HEADING = re.compile(r"^\s{0,3}#{1,6}\s+(.+?)\s*#*\s*$", re.MULTILINE)

_CONTENT_TYPES: dict[str, str] = {
    ".md": "markdown",
    ".markdown": "markdown",
    ".txt": "text",
}


def content_type_for(path: str) -> str:
    """Map a file extension to a content type tag (``"unknown"`` if unmapped)."""
    return _CONTENT_TYPES.get(PurePosixPath(path).suffix.lower(), "unknown")


def extract_keywords(text: str, limit: int = _MAX_KEYWORDS) -> list[str]:
    """Return up to *limit* most frequent lowercase words longer than three characters.

    Ties keep first-occurrence order.
    """
    words = _NON_WORD.sub(" ", text.lower()).split()
    counts = Counter(w for w in words if len(w) >= _MIN_KEYWORD_LENGTH)
    return [word for word, _ in counts.most_common(limit)]


def extract_first_heading(text: str) -> str | None:
    match = _HEADING.search(text)
    return match.group(1).strip() if match else None


def build_chunk_drafts(
    document: IDocument,
    pieces: list[str],
    created_at: datetime | None = None,
) -> list[ChunkDraft]:
    """Annotate the chunker's *pieces* for *document*.

    Indices are contiguous from 0 in the order given.  All drafts of one
    call share the same ``created_at``.
    """
    created_at = created_at or datetime.now(tz=timezone.utc)
    content_type = content_type_for(document.path)
    drafts: list[ChunkDraft] = []
    for index, piece in enumerate(pieces):
        content = piece.strip()
        metadata = ChunkMetadata(
            document_id=document.path,
            document_title=document.title,
            section=f"chunk-{index}",
            section_title=extract_first_heading(content),
            content_type=content_type,
            keywords=extract_keywords(content),
            page_reference=f"{document.path}#chunk-{index}",
            chunk_index=index,
            source_path=document.path,
            created_at=created_at,
            word_count=len(content.split()),
            char_count=len(content),
        )
        drafts.append(ChunkDraft(id=make_chunk_id(document.path, index), content=content, metadata=metadata))
    return drafts
