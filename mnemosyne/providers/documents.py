"""Document sources handed to the ingestion pipeline."""

from __future__ import annotations

import asyncio
from pathlib import Path

from mnemosyne.interfaces.document_source import IDocument


class TextFileDocument(IDocument):
    """A UTF-8 text or markdown file on disk.

    The title defaults to the file stem (``notes/ideas.md`` -> ``ideas``).
    The file is read on a worker thread so large files do not block the loop.
    """

    def __init__(self, file_path: str | Path, title: str | None = None, doc_path: str | None = None) -> None:
        self._file = Path(file_path)
        self._path = doc_path or self._file.as_posix()
        self._title = title or self._file.stem

    @property
    def path(self) -> str:
        return self._path

    @property
    def title(self) -> str:
        return self._title

    async def read_content(self) -> str:
        return await asyncio.to_thread(self._file.read_text, encoding="utf-8", errors="replace")

    def __repr__(self) -> str:
        return f"TextFileDocument({self._path!r})"


class InMemoryDocument(IDocument):
    """A document whose text is already in memory."""

    def __init__(self, path: str, content: str, title: str | None = None) -> None:
        self._path = path
        self._content = content
        self._title = title or Path(path).stem

    @property
    def path(self) -> str:
        return self._path

    @property
    def title(self) -> str:
        return self._title

    async def read_content(self) -> str:
        return self._content

    def __repr__(self) -> str:
        return f"InMemoryDocument({self._path!r})"
