"""``nomic-embed-text`` served by a local Ollama instance.

Ollama exposes an OpenAI-compatible API under ``/v1``; it ignores the API
key, but the client requires one.
"""

from __future__ import annotations

import httpx
import openai
import structlog

from mnemosyne.config.settings import Settings
from mnemosyne.providers.embedding._openai_compat import OpenAICompatibleProvider

logger = structlog.get_logger(logger_name=__name__)

_NOMIC_DIMENSION = 768
_TAGS_TIMEOUT = 3.0


class NomicEmbeddingProvider(OpenAICompatibleProvider):
    """Local 768-dimensional embeddings through Ollama."""

    _request_limit = 512

    def __init__(self, settings: Settings, client: openai.AsyncOpenAI | None = None) -> None:
        self._server = settings.ollama_base_url.rstrip("/")
        self._model = settings.ollama_embedding_model
        self._client = client or openai.AsyncOpenAI(
            base_url=f"{self._server}/v1",
            api_key="ollama",
            timeout=settings.embedding_timeout,
        )

    def get_dimension(self) -> int:
        return _NOMIC_DIMENSION

    def get_provider_name(self) -> str:
        return "nomic"

    def is_available(self) -> bool:
        """Ask ``/api/tags``; any connection failure means unavailable."""
        if not self._server:
            return False
        try:
            reply = httpx.get(f"{self._server}/api/tags", timeout=_TAGS_TIMEOUT)
        except httpx.HTTPError as exc:
            logger.debug("ollama_unreachable", server=self._server, error=str(exc))
            return False
        return reply.status_code == 200
