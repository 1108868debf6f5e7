"""Hosted OpenAI embeddings (or any endpoint set via ``openai_base_url``)."""

from __future__ import annotations

import openai

from mnemosyne.config.settings import Settings
from mnemosyne.providers.embedding._openai_compat import OpenAICompatibleProvider

_DEFAULT_MODEL = "text-embedding-3-small"

# Output lengths of the models this project has been run against.
_KNOWN_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIEmbeddingProvider(OpenAICompatibleProvider):
    """Embeds through the OpenAI API.

    Unknown model names are assumed to produce 1536-dimensional vectors,
    matching the default model.  Pass *client* to reuse an existing
    ``AsyncOpenAI`` instance.
    """

    def __init__(self, settings: Settings, client: openai.AsyncOpenAI | None = None) -> None:
        api_key = settings.openai_api_key.get_secret_value()
        self._configured = bool(api_key)
        self._model = settings.openai_embedding_model or _DEFAULT_MODEL
        self._dimension = _KNOWN_DIMENSIONS.get(self._model, 1536)

        if client is None:
            client = openai.AsyncOpenAI(
                api_key=api_key,
                base_url=settings.openai_base_url or None,
                timeout=settings.embedding_timeout,
            )
        self._client = client

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "openai"

    def is_available(self) -> bool:
        """Return ``True`` when an API key is configured; no request is made."""
        return self._configured
