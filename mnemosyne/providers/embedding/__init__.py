"""Embedding clients implementing IEmbeddingProvider."""

from mnemosyne.providers.embedding.fastembed_embedding_provider import FastEmbedEmbeddingProvider
from mnemosyne.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from mnemosyne.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["FastEmbedEmbeddingProvider", "NomicEmbeddingProvider", "OpenAIEmbeddingProvider"]
