"""Paragraph-preserving text chunker with overlapping windows.

Splits document text into pieces of at most ``chunk_size`` characters.

1. **Paragraph packing** -- the text is split on blank lines and whole
   paragraphs are packed greedily into a buffer, joined by ``"\\n\\n"``,
   while the joined length stays within ``chunk_size``.

2. **Sliding window for long paragraphs** -- a paragraph longer than
   ``chunk_size`` is cut into windows of ``chunk_size`` characters advanced
   by ``chunk_size - overlap``.  A cut moves back to the last space when that
   space falls in the final 20% of the window, so words are not split.

The chunker is a pure function of its input: the same text and parameters
always give the same boundaries.
"""

from __future__ import annotations

import re

import structlog

from mnemosyne.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_WORD_BREAK_ZONE = 0.2


class TextChunker:
    """Splits text into bounded chunks preserving paragraph boundaries.

    Parameters
    ----------
    chunk_size:
        Maximum characters per chunk (default 1000).
    overlap:
        Characters shared by consecutive windows of an over-long paragraph
        (default 200).  Must satisfy ``0 <= overlap < chunk_size``.

    Raises
    ------
    ConfigurationError
        If the parameters would make the window stall or go backwards.
    """

    def __init__(self, chunk_size: int = 1000, overlap: int = 200) -> None:
        if chunk_size <= 0:
            raise ConfigurationError(message=f"chunk_size must be positive, got {chunk_size}")
        if overlap < 0:
            raise ConfigurationError(message=f"overlap must not be negative, got {overlap}")
        if overlap >= chunk_size:
            raise ConfigurationError(
                message=f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})"
            )
        self._chunk_size = chunk_size
        self._overlap = overlap

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def overlap(self) -> int:
        return self._overlap

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str) -> list[str]:
        """Split *text* into ordered, trimmed, non-empty chunks.

        Empty or whitespace-only input returns an empty list.
        """
        if not text or not text.strip():
            return []

        chunks: list[str] = []
        buffer = ""
        for para in self._split_paragraphs(text):
            if len(para) > self._chunk_size:
                if buffer:
                    chunks.append(buffer)
                    buffer = ""
                chunks.extend(self._split_long_paragraph(para))
                continue

            candidate = f"{buffer}\n\n{para}" if buffer else para
            if len(candidate) <= self._chunk_size:
                buffer = candidate
            else:
                chunks.append(buffer)
                buffer = para

        if buffer:
            chunks.append(buffer)

        logger.debug("chunking_complete", num_chunks=len(chunks), chars=len(text))
        return chunks

    # ------------------------------------------------------------------
    # Splitting
    # ------------------------------------------------------------------

    @staticmethod
    def _split_paragraphs(text: str) -> list[str]:
        """Split *text* on blank lines, discarding empty paragraphs."""
        parts = _PARAGRAPH_BREAK.split(text)
        return [p.strip() for p in parts if p.strip()]

    def _split_long_paragraph(self, paragraph: str) -> list[str]:
        step = self._chunk_size - self._overlap
        min_cut = int(self._chunk_size * (1 - _WORD_BREAK_ZONE))
        length = len(paragraph)

        pieces: list[str] = []
        start = 0
        while start < length:
            end = min(start + self._chunk_size, length)
            if end < length:
                space = paragraph.rfind(" ", start, end)
                if space - start >= min_cut:
                    end = space
            piece = paragraph[start:end].strip()
            if piece:
                pieces.append(piece)
            if end >= length:
                break
            # Resume `overlap` chars before the cut; fall back to a full step
            # when a word-boundary cut would leave the window in place.
            next_start = end - self._overlap
            start = next_start if next_start > start else start + step
        return pieces
