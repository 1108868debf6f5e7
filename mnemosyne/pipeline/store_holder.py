"""Explicit "current backend" state and per-store access serialization.

:class:`CurrentStoreHolder` replaces a process-wide global: whoever owns the
holder decides which :class:`IVectorStore` is current, and swapping it is a
single logged transition.

:class:`StoreAccessGuard` enforces one writer per store.  A migration that
reads a store must not run while an ingestion is writing to it, and two
writers must never share a store.  Attempts that would violate this fail
fast with :class:`StoreBusyError` instead of waiting.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

from mnemosyne.interfaces.vector_store import IVectorStore
from mnemosyne.utils.errors import PipelineError, StoreBusyError

logger = structlog.get_logger(logger_name=__name__)


class CurrentStoreHolder:
    """Holds the store the application currently reads from and writes to."""

    def __init__(self, store: IVectorStore | None = None) -> None:
        self._store = store
        self._lock = asyncio.Lock()

    def current(self) -> IVectorStore:
        if self._store is None:
            raise PipelineError(message="No vector store is configured")
        return self._store

    def has_store(self) -> bool:
        return self._store is not None

    async def replace(self, store: IVectorStore, close_previous: bool = False) -> IVectorStore | None:
        """Make *store* current and return the previous one.

        The new store is initialized first, so a store that cannot be opened
        never becomes current.  The previous store is closed only when
        *close_previous* is set; its data is left untouched either way.
        """
        async with self._lock:
            if not store.is_ready():
                await store.initialize()
            previous = self._store
            self._store = store
            logger.info(
                "current_store_replaced",
                previous=previous.get_backend_name() if previous else None,
                current=store.get_backend_name(),
            )
            if close_previous and previous is not None and previous is not store:
                await previous.close()
            return previous


class StoreAccessGuard:
    """Serializes writers (and writer/reader overlap) per store instance.

    Readers may overlap each other.  State lives in plain dicts keyed by
    ``id(store)`` and is only touched from the event loop thread.
    """

    def __init__(self) -> None:
        self._writers: dict[int, str] = {}
        self._readers: dict[int, int] = {}

    def is_busy(self, store: IVectorStore) -> bool:
        key = id(store)
        return key in self._writers or self._readers.get(key, 0) > 0

    @asynccontextmanager
    async def writer(self, store: IVectorStore, operation: str) -> AsyncIterator[IVectorStore]:
        key = id(store)
        if key in self._writers:
            raise StoreBusyError(
                message=f"{store.get_backend_name()} store is already being written by {self._writers[key]}",
                provider_name=store.get_backend_name(),
            )
        if self._readers.get(key, 0) > 0:
            raise StoreBusyError(
                message=f"{store.get_backend_name()} store is being read; {operation} must wait",
                provider_name=store.get_backend_name(),
            )
        self._writers[key] = operation
        try:
            yield store
        finally:
            del self._writers[key]

    @asynccontextmanager
    async def reader(self, store: IVectorStore) -> AsyncIterator[IVectorStore]:
        key = id(store)
        if key in self._writers:
            raise StoreBusyError(
                message=f"{store.get_backend_name()} store is being written by {self._writers[key]}",
                provider_name=store.get_backend_name(),
            )
        self._readers[key] = self._readers.get(key, 0) + 1
        try:
            yield store
        finally:
            self._readers[key] -= 1
            if self._readers[key] == 0:
                del self._readers[key]
