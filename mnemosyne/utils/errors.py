"""Custom exception hierarchy for mnemosyne.

All application exceptions inherit from :class:`MnemosyneError`, which
carries an optional ``provider_name`` so handlers can tell which backend or
external service (e.g. "openai", "embedded", "server") failed.

    MnemosyneError  (base -- catch-all for any mnemosyne error)
    +-- ConfigurationError       (invalid sizes/overlap, mismatched dimension)
    +-- EmbeddingProviderError   (rate limit, invalid key, malformed response)
    |   +-- RateLimitError       (provider rate-limit exceeded)
    +-- VectorStoreError         (any storage backend failure)
    |   +-- StoreConnectionError (backend unreachable / timed out)
    |   +-- CorruptionError      (persisted store is unreadable)
    |   +-- PartialRecordError   (one chunk failed during migration)
    +-- PipelineError            (orchestration / access serialization)
        +-- StoreBusyError       (store already held by another run)

Connection and embedding failures abort a run and are reported through its
result object.  ``PartialRecordError`` is caught by the migration loop and
recorded in the result's ``errors`` list.
"""


class MnemosyneError(Exception):
    """Base exception for all mnemosyne errors.

    Subclasses only override :attr:`default_message`.  ``__str__`` prefixes
    the provider in brackets, e.g. ``[server] connection refused``.
    """

    default_message = "An unexpected error occurred"

    def __init__(self, message: str | None = None, provider_name: str | None = None) -> None:
        self._message = message or self.default_message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


class ConfigurationError(MnemosyneError):
    """Chunk sizes, overlap, batch sizes or dimensions are invalid."""

    default_message = "Invalid or missing configuration"


# -- embedding ---------------------------------------------------------------


class EmbeddingProviderError(MnemosyneError):
    """The embedding client failed or returned a malformed response."""

    default_message = "Embedding provider call failed"


class RateLimitError(EmbeddingProviderError):
    default_message = "Rate limit exceeded"


# -- storage -----------------------------------------------------------------


class VectorStoreError(MnemosyneError):
    """A vector store operation failed."""

    default_message = "Vector store operation failed"


class StoreConnectionError(VectorStoreError):
    """A backend is unreachable or a network call timed out.

    Aborts the current operation.  Nothing is written when the connection
    cannot be established.
    """

    default_message = "Vector store is unreachable"


class CorruptionError(VectorStoreError):
    """Raised by ``initialize()`` when existing persisted data is unreadable."""

    default_message = "Persisted vector store is unreadable"


class PartialRecordError(VectorStoreError):
    """One chunk could not be copied; the migration continues without it."""

    default_message = "Chunk could not be migrated"

    def __init__(
        self,
        message: str | None = None,
        provider_name: str | None = None,
        chunk_id: str = "",
    ) -> None:
        self._chunk_id = chunk_id
        super().__init__(message=message, provider_name=provider_name)

    @property
    def chunk_id(self) -> str:
        return self._chunk_id


# -- orchestration -----------------------------------------------------------


class PipelineError(MnemosyneError):
    """Pipeline orchestration failed."""

    default_message = "Pipeline orchestration failed"


class StoreBusyError(PipelineError):
    """A run tried to use a store that another run is writing to."""

    default_message = "Vector store is busy"
