"""Progress reporting with callback-based listener notification.

A :class:`ProgressReporter` belongs to a single ingestion or migration run.
The run calls :meth:`ProgressReporter.report` with a frozen progress record;
the reporter keeps the latest snapshot and hands the record to every
registered listener.

Listeners may be plain functions or coroutine functions.  A listener that
raises is logged and skipped, so a broken progress bar can never abort the
run that feeds it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Generic, TypeVar

import structlog
from pydantic import BaseModel

from mnemosyne.utils.logging import get_logger

P = TypeVar("P", bound=BaseModel)

ProgressCallback = Callable[[Any], Any]


class ProgressReporter(Generic[P]):
    """Fans progress records for one run out to its listeners."""

    def __init__(self, callback: ProgressCallback | None = None, run_id: str = "") -> None:
        self._run_id = run_id
        self._listeners: list[ProgressCallback] = []
        self._last: P | None = None
        self._reports = 0
        self._logger: structlog.BoundLogger = get_logger(__name__)
        if callback is not None:
            self.add_listener(callback)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def last(self) -> P | None:
        """The most recently reported record, or ``None`` before the first report."""
        return self._last

    @property
    def report_count(self) -> int:
        return self._reports

    def add_listener(self, callback: ProgressCallback) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: ProgressCallback) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    async def report(self, record: P) -> None:
        """Store *record* as the latest snapshot and notify every listener."""
        self._last = record
        self._reports += 1
        self._logger.debug("progress_update", run_id=self._run_id, **record.model_dump(mode="json"))

        for callback in list(self._listeners):
            try:
                result = callback(record)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "listener_callback_error",
                    run_id=self._run_id,
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )
