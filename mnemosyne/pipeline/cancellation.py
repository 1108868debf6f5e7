"""Cooperative cancellation for long-running pipeline operations."""

from __future__ import annotations

import asyncio

import structlog

logger = structlog.get_logger(logger_name=__name__)


class CancellationToken:
    """A flag the host sets and the pipeline polls at batch boundaries.

    Cancellation is cooperative: work already in flight (the current
    embedding call or insert) finishes, and the run stops at the next
    check.  Nothing already written is rolled back.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = ""

    def cancel(self, reason: str = "cancelled by user") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()
            logger.info("cancellation_requested", reason=reason)

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    async def wait(self) -> None:
        """Block until :meth:`cancel` is called."""
        await self._event.wait()
