"""Abstract document handed to the ingestion pipeline.

Enumerating documents (walking a folder, filtering by extension) belongs to
the host; the pipeline only needs a path, a title and the text.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class IDocument(ABC):
    """A readable document identified by its path."""

    @property
    @abstractmethod
    def path(self) -> str:
        """Stable identifier of the document; also its ``document_id``."""

    @property
    @abstractmethod
    def title(self) -> str:
        """Human-readable title stored in chunk metadata."""

    @abstractmethod
    async def read_content(self) -> str:
        """Return the full text of the document.

        Raises
        ------
        OSError
            If the underlying file cannot be read.
        """
