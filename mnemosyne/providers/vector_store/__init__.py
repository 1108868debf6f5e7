"""Vector store backends implementing IVectorStore."""

from mnemosyne.providers.vector_store.embedded_store import EmbeddedVectorStore
from mnemosyne.providers.vector_store.factory import (
    create_vector_store,
    large_corpus_config,
    medium_corpus_config,
    small_corpus_config,
)
from mnemosyne.providers.vector_store.file_store import FileVectorStore
from mnemosyne.providers.vector_store.server_store import ServerVectorStore

__all__ = [
    "EmbeddedVectorStore",
    "FileVectorStore",
    "ServerVectorStore",
    "create_vector_store",
    "large_corpus_config",
    "medium_corpus_config",
    "small_corpus_config",
]
