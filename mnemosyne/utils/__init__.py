"""Utility modules for mnemosyne.

- **errors** -- exception hierarchy rooted at MnemosyneError; storage,
  embedding and pipeline failures each raise their own subclass.
- **logging** -- structlog setup with console output in development and
  JSON in production, plus a context manager for per-run log bindings.
- **vector_math** -- numpy cosine scoring and top-k selection used by the
  file and embedded stores.
"""

# -- Domain exception hierarchy --------------------------------------------
from mnemosyne.utils.errors import (
    ConfigurationError,
    CorruptionError,
    EmbeddingProviderError,
    MnemosyneError,
    PartialRecordError,
    PipelineError,
    RateLimitError,
    StoreBusyError,
    StoreConnectionError,
    VectorStoreError,
)

# -- Structured logging setup ----------------------------------------------
from mnemosyne.utils.logging import bound_run_context, configure_logging, get_logger

__all__ = [
    "ConfigurationError",
    "CorruptionError",
    "EmbeddingProviderError",
    "MnemosyneError",
    "PartialRecordError",
    "PipelineError",
    "RateLimitError",
    "StoreBusyError",
    "StoreConnectionError",
    "VectorStoreError",
    "bound_run_context",
    "configure_logging",
    "get_logger",
]
