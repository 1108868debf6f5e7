"""Copies every chunk from one vector store to another.

State machine::

    idle -> preparing -> migrating -> verifying -> complete
                 \\            \\            \\
                  +------------+------------+--> failed

The source is streamed with ``iter_batches`` so memory stays bounded, and
each chunk is inserted into the target individually: a chunk that fails is
recorded as a :class:`RecordError` and the run moves on.  A connection
failure on the target, or any failure reading the source, ends the run in
``failed``.  The source is only ever read.

Deciding whether to make the target the current store is left to the caller
(see :class:`~mnemosyne.pipeline.store_holder.CurrentStoreHolder`).
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import TYPE_CHECKING

import structlog

from mnemosyne.models.chunk import Chunk, StoreStats, VerificationReport
from mnemosyne.models.pipeline import MigrationPhase, MigrationProgress, MigrationResult, RecordError
from mnemosyne.pipeline.progress import ProgressCallback, ProgressReporter
from mnemosyne.utils.errors import (
    ConfigurationError,
    MnemosyneError,
    PartialRecordError,
    PipelineError,
    StoreConnectionError,
    VectorStoreError,
)
from mnemosyne.utils.logging import bound_run_context

if TYPE_CHECKING:
    from mnemosyne.interfaces.vector_store import IVectorStore

logger = structlog.get_logger(logger_name=__name__)

_MIGRATING_SHARE = 90
_VERIFYING_PERCENT = 95

_TRANSITIONS: dict[MigrationPhase, frozenset[MigrationPhase]] = {
    MigrationPhase.IDLE: frozenset({MigrationPhase.PREPARING}),
    MigrationPhase.PREPARING: frozenset(
        {MigrationPhase.MIGRATING, MigrationPhase.COMPLETE, MigrationPhase.FAILED}
    ),
    MigrationPhase.MIGRATING: frozenset({MigrationPhase.VERIFYING, MigrationPhase.FAILED}),
    MigrationPhase.VERIFYING: frozenset({MigrationPhase.COMPLETE, MigrationPhase.FAILED}),
    MigrationPhase.COMPLETE: frozenset(),
    MigrationPhase.FAILED: frozenset(),
}


class MigrationService:
    """Moves all chunks between two :class:`IVectorStore` instances.

    Parameters
    ----------
    batch_size:
        Chunks read from the source per batch.
    progress_every:
        Emit a ``migrating`` progress record every N chunks (and on the last).
    batch_yield_seconds:
        Pause between batches so a busy target is not flooded.
    """

    def __init__(
        self,
        batch_size: int = 100,
        progress_every: int = 10,
        batch_yield_seconds: float = 0.05,
    ) -> None:
        if batch_size <= 0 or progress_every <= 0:
            raise ConfigurationError(message="batch_size and progress_every must be positive")
        self._batch_size = batch_size
        self._progress_every = progress_every
        self._batch_yield_seconds = batch_yield_seconds

    async def migrate(
        self,
        source: IVectorStore,
        target: IVectorStore,
        dry_run: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> MigrationResult:
        """Copy every chunk of *source* into *target*.

        With ``dry_run=True`` the source is read and every chunk validated,
        but nothing is written to the target; ``migrated_chunks`` then counts
        the chunks that would have been copied.

        Never raises for store failures: the outcome is in the result.
        """
        if source is target:
            raise ConfigurationError(message="Source and target must be different stores")

        run_id = uuid.uuid4().hex[:12]
        with bound_run_context(run_id=run_id, operation="migrate", dry_run=dry_run):
            run = _MigrationRun(
                source=source,
                target=target,
                dry_run=dry_run,
                reporter=ProgressReporter[MigrationProgress](on_progress, run_id=run_id),
                batch_size=self._batch_size,
                progress_every=self._progress_every,
                batch_yield_seconds=self._batch_yield_seconds,
            )
            return await run.execute()

    async def verify(self, source: IVectorStore, target: IVectorStore) -> VerificationReport:
        """Compare chunk count, dimension and embedding model of two stores."""
        try:
            source_stats = await source.get_stats()
            target_stats = await target.get_stats()
        except MnemosyneError as exc:
            return VerificationReport(valid=False, differences=[f"Verification failed: {exc}"])
        return compare_stats(source_stats, target_stats)


def compare_stats(source: StoreStats, target: StoreStats) -> VerificationReport:
    differences: list[str] = []
    if source.total_chunks != target.total_chunks:
        differences.append(
            f"Chunk count mismatch: source={source.total_chunks}, target={target.total_chunks}"
        )
    if source.dimension != target.dimension:
        differences.append(
            f"Embedding dimension mismatch: source={source.dimension}, target={target.dimension}"
        )
    if source.embedding_model != target.embedding_model:
        differences.append(
            f"Embedding model mismatch: source={source.embedding_model!r}, "
            f"target={target.embedding_model!r}"
        )
    return VerificationReport(valid=not differences, differences=differences)


class _MigrationRun:
    """State of a single ``migrate()`` call."""

    def __init__(
        self,
        source: IVectorStore,
        target: IVectorStore,
        dry_run: bool,
        reporter: ProgressReporter[MigrationProgress],
        batch_size: int,
        progress_every: int,
        batch_yield_seconds: float,
    ) -> None:
        self._source = source
        self._target = target
        self._dry_run = dry_run
        self._reporter = reporter
        self._batch_size = batch_size
        self._progress_every = progress_every
        self._batch_yield_seconds = batch_yield_seconds

        self._phase = MigrationPhase.IDLE
        self._total = 0
        self._migrated = 0
        self._percentage = 0
        self._errors: list[RecordError] = []
        self._source_stats: StoreStats | None = None
        self._target_stats: StoreStats | None = None
        self._verification: VerificationReport | None = None

    async def execute(self) -> MigrationResult:
        start = time.monotonic()
        try:
            await self._prepare()
            if self._total == 0:
                await self._transition(MigrationPhase.COMPLETE, 100)
                logger.info("migration_skipped_empty_source")
                return self._result(success=True, duration=time.monotonic() - start)

            await self._copy_all()
            await self._verify()
            await self._transition(MigrationPhase.COMPLETE, 100)
        except MnemosyneError as exc:
            duration = time.monotonic() - start
            logger.error(
                "migration_failed",
                phase=self._phase.value,
                error=str(exc),
                error_type=type(exc).__name__,
                migrated=self._migrated,
            )
            if self._phase not in (MigrationPhase.COMPLETE, MigrationPhase.FAILED):
                await self._transition(MigrationPhase.FAILED, self._percentage, error=str(exc))
            return self._result(success=False, duration=duration, error=str(exc))

        duration = time.monotonic() - start
        logger.info(
            "migration_complete",
            source=self._source.get_backend_name(),
            target=self._target.get_backend_name(),
            total=self._total,
            migrated=self._migrated,
            record_errors=len(self._errors),
            duration_s=round(duration, 2),
        )
        return self._result(success=not self._errors, duration=duration)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _prepare(self) -> None:
        await self._transition(MigrationPhase.PREPARING, 0)

        if not self._source.is_ready():
            await self._source.initialize()
        self._source_stats = await self._source.get_stats()
        self._total = self._source_stats.total_chunks
        if self._total == 0:
            return

        if self._source.get_dimension() != self._target.get_dimension():
            raise ConfigurationError(
                message=(
                    f"Source dimension {self._source.get_dimension()} does not match "
                    f"target dimension {self._target.get_dimension()}"
                ),
            )
        if not self._target.is_ready():
            await self._target.initialize()
        logger.info(
            "migration_prepared",
            source=self._source.get_backend_name(),
            target=self._target.get_backend_name(),
            total=self._total,
        )

    async def _copy_all(self) -> None:
        await self._transition(MigrationPhase.MIGRATING, 0)
        dimension = self._source.get_dimension()

        async for batch in self._source.iter_batches(self._batch_size):
            for chunk in batch:
                try:
                    self._validate(chunk, dimension)
                    if not self._dry_run:
                        await self._insert(chunk)
                except PartialRecordError as exc:
                    logger.warning("migration_record_failed", chunk_id=exc.chunk_id, error=exc.message)
                    self._errors.append(RecordError(chunk_id=exc.chunk_id, error=exc.message))
                    continue

                self._migrated += 1
                if self._migrated % self._progress_every == 0 or self._migrated == self._total:
                    await self._report(
                        round(self._migrated / self._total * _MIGRATING_SHARE),
                        current_chunk=chunk.id,
                    )

            await asyncio.sleep(self._batch_yield_seconds)

    async def _insert(self, chunk: Chunk) -> None:
        try:
            await self._target.insert(chunk.id, chunk.content, chunk.embedding, chunk.metadata)
        except StoreConnectionError:
            raise
        except (VectorStoreError, ConfigurationError) as exc:
            raise PartialRecordError(
                message=exc.message,
                provider_name=self._target.get_backend_name(),
                chunk_id=chunk.id,
            ) from exc

    @staticmethod
    def _validate(chunk: Chunk, dimension: int) -> None:
        if len(chunk.embedding) != dimension:
            raise PartialRecordError(
                message=f"Embedding has {len(chunk.embedding)} dimensions, expected {dimension}",
                chunk_id=chunk.id,
            )
        if not chunk.content.strip():
            raise PartialRecordError(message="Chunk content is empty", chunk_id=chunk.id)

    async def _verify(self) -> None:
        await self._transition(MigrationPhase.VERIFYING, _VERIFYING_PERCENT)
        if self._dry_run:
            return
        await self._target.flush()
        self._target_stats = await self._target.get_stats()
        self._verification = compare_stats(self._source_stats, self._target_stats)
        if not self._verification.valid:
            logger.warning("migration_verification_differences", differences=self._verification.differences)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _transition(self, phase: MigrationPhase, percentage: int, error: str | None = None) -> None:
        if phase not in _TRANSITIONS[self._phase]:
            raise PipelineError(message=f"Invalid migration transition {self._phase.value} -> {phase.value}")
        self._phase = phase
        await self._report(percentage, error=error)

    async def _report(self, percentage: int, current_chunk: str | None = None, error: str | None = None) -> None:
        self._percentage = percentage
        await self._reporter.report(
            MigrationProgress(
                phase=self._phase,
                total_chunks=self._total,
                migrated_chunks=self._migrated,
                percentage=percentage,
                current_chunk=current_chunk,
                error=error,
            )
        )

    def _result(self, success: bool, duration: float, error: str | None = None) -> MigrationResult:
        return MigrationResult(
            success=success,
            dry_run=self._dry_run,
            total_chunks=self._total,
            migrated_chunks=self._migrated,
            errors=list(self._errors),
            error=error,
            duration=duration,
            source_stats=self._source_stats,
            target_stats=self._target_stats,
            verification=self._verification,
        )
