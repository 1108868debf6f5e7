"""Request loop shared by embedding servers that speak the OpenAI API.

Both the hosted OpenAI provider and the Ollama-backed Nomic provider send
``embeddings.create`` calls through an ``openai.AsyncOpenAI`` client; only
the client construction, per-call limit, and reported dimension differ.
"""

from __future__ import annotations

import openai
import structlog

from mnemosyne.interfaces.embedding_provider import IEmbeddingProvider
from mnemosyne.utils.errors import EmbeddingProviderError, RateLimitError

logger = structlog.get_logger(logger_name=__name__)


class OpenAICompatibleProvider(IEmbeddingProvider):
    """Base class for providers backed by an OpenAI-style embeddings endpoint.

    Subclasses assign ``_client`` and ``_model`` in ``__init__`` and may
    lower ``_request_limit`` when the server accepts fewer inputs per call.
    """

    _client: openai.AsyncOpenAI
    _model: str
    _request_limit: int = 2048

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        vectors: list[list[float]] = []
        for offset in range(0, len(texts), self._request_limit):
            vectors.extend(await self._request(texts[offset : offset + self._request_limit]))
        return vectors

    async def embed_single(self, text: str) -> list[float]:
        (vector,) = await self.embed([text])
        return vector

    def get_model_name(self) -> str:
        return self._model

    async def _request(self, batch: list[str]) -> list[list[float]]:
        provider = self.get_provider_name()
        try:
            response = await self._client.embeddings.create(input=batch, model=self._model)
        except openai.RateLimitError as exc:
            raise RateLimitError(
                message=f"{provider} rate limited the embeddings request: {exc}",
                provider_name=provider,
            ) from exc
        except openai.APIError as exc:
            raise EmbeddingProviderError(
                message=f"{provider} embeddings request failed: {exc}",
                provider_name=provider,
            ) from exc

        if len(response.data) != len(batch):
            raise EmbeddingProviderError(
                message=f"{provider} returned {len(response.data)} vectors for {len(batch)} inputs",
                provider_name=provider,
            )

        usage = getattr(response, "usage", None)
        logger.info(
            "embedding_request_complete",
            provider=provider,
            model=self._model,
            inputs=len(batch),
            tokens=usage.total_tokens if usage else None,
        )
        # Servers may answer out of order; ``index`` ties each item to its input.
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]
