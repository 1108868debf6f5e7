"""Abstract base class for text-embedding clients.

The ingestion service depends only on this contract; the embedding model
itself lives behind it (a cloud API, a local ONNX model, or an Ollama
server).
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations (mnemosyne/providers/embedding/):
#   OpenAIEmbeddingProvider     -- text-embedding-3-small (requires API key)
#   FastEmbedEmbeddingProvider  -- local ONNX model, no network
#   NomicEmbeddingProvider      -- nomic-embed-text via Ollama
class IEmbeddingProvider(ABC):
    """Contract for embedding clients used by the ingestion pipeline."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.  Implementations split the
            batch internally when the backend has a per-call limit.

        Returns
        -------
        list[list[float]]
            One vector per input, in input order.  Each vector has length
            :meth:`get_dimension`.

        Raises
        ------
        mnemosyne.utils.errors.EmbeddingProviderError
            If the call fails, is rate limited, or times out.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Embed one text, typically a search query."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the embedding length.

        Constant for the lifetime of the instance; must equal the dimension
        of any store the vectors are written to.
        """

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the model identifier recorded in store statistics."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier such as ``"openai"`` or ``"fastembed"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured and reachable.

        Must not generate an embedding.
        """
