"""Abstract contracts between the pipelines and their providers."""

from mnemosyne.interfaces.document_source import IDocument
from mnemosyne.interfaces.embedding_provider import IEmbeddingProvider
from mnemosyne.interfaces.vector_store import IVectorStore

__all__ = ["IDocument", "IEmbeddingProvider", "IVectorStore"]
