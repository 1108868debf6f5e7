"""Document ingestion: chunking, annotation, embedding and storage."""

from mnemosyne.services.ingestion.chunk_builder import (
    build_chunk_drafts,
    content_type_for,
    extract_first_heading,
    extract_keywords,
)
from mnemosyne.services.ingestion.chunker import TextChunker
from mnemosyne.services.ingestion.ingestion_service import IngestionService

__all__ = [
    "IngestionService",
    "TextChunker",
    "build_chunk_drafts",
    "content_type_for",
    "extract_first_heading",
    "extract_keywords",
]
