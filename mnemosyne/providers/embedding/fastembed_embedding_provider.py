"""CPU embeddings through fastembed's ONNX models.

Nothing leaves the machine once the weights are cached.  fastembed is an
optional dependency (``pip install mnemosyne[local]``), so it is imported on
first use rather than at module import time.
"""

from __future__ import annotations

import asyncio
import importlib.util
from typing import Any

import structlog

from mnemosyne.interfaces.embedding_provider import IEmbeddingProvider
from mnemosyne.utils.errors import EmbeddingProviderError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_MODEL = "BAAI/bge-small-en-v1.5"
_INFERENCE_BATCH = 64

_KNOWN_DIMENSIONS: dict[str, int] = {
    "BAAI/bge-small-en-v1.5": 384,
    "BAAI/bge-base-en-v1.5": 768,
    "sentence-transformers/all-MiniLM-L6-v2": 384,
    "intfloat/multilingual-e5-large": 1024,
}


class FastEmbedEmbeddingProvider(IEmbeddingProvider):
    """Local embedding provider; the first call downloads and loads the model."""

    def __init__(self, model_name: str | None = None) -> None:
        self._model_name = model_name or _DEFAULT_MODEL
        self._dimension = _KNOWN_DIMENSIONS.get(self._model_name, 384)
        self._model: Any = None

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            # ONNX inference blocks; keep it off the event loop.
            return await asyncio.to_thread(self._run_inference, list(texts))
        except EmbeddingProviderError:
            raise
        except Exception as exc:
            raise EmbeddingProviderError(
                message=f"fastembed inference failed for {len(texts)} texts: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def embed_single(self, text: str) -> list[float]:
        (vector,) = await self.embed([text])
        return vector

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model_name

    def get_provider_name(self) -> str:
        return "fastembed"

    def is_available(self) -> bool:
        """Return ``True`` when the ``fastembed`` package can be imported."""
        return importlib.util.find_spec("fastembed") is not None

    # -- internals -----------------------------------------------------

    def _run_inference(self, texts: list[str]) -> list[list[float]]:
        model = self._model if self._model is not None else self._load()
        vectors: list[list[float]] = []
        for offset in range(0, len(texts), _INFERENCE_BATCH):
            vectors.extend(array.tolist() for array in model.embed(texts[offset : offset + _INFERENCE_BATCH]))
        return vectors

    def _load(self) -> Any:
        logger.info("fastembed_model_loading", model=self._model_name)
        try:
            from fastembed import TextEmbedding

            self._model = TextEmbedding(model_name=self._model_name)
        except Exception as exc:
            raise EmbeddingProviderError(
                message=f"Could not load fastembed model {self._model_name!r}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("fastembed_model_ready", model=self._model_name, dimension=self._dimension)
        return self._model
