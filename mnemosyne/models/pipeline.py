"""Progress, option, and result models for ingestion and migration runs.

Progress records are frozen snapshots: the services build a fresh record for
every report rather than mutating a shared one, so a callback that keeps a
reference never sees it change.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from mnemosyne.models.chunk import StoreStats, VerificationReport


class IngestionPhase(str, Enum):  # noqa: UP042
    """Phases of an ingestion run, reported strictly in this order.

    ``ERROR`` replaces the remaining phases when a fatal error aborts the run.
    """

    SCANNING = "scanning"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    INDEXING = "indexing"
    COMPLETE = "complete"
    ERROR = "error"


class MigrationPhase(str, Enum):  # noqa: UP042
    """Migration state machine: idle -> preparing -> migrating -> verifying -> complete | failed."""

    IDLE = "idle"
    PREPARING = "preparing"
    MIGRATING = "migrating"
    VERIFYING = "verifying"
    COMPLETE = "complete"
    FAILED = "failed"


class IngestionProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: IngestionPhase
    total_files: int = 0
    processed_files: int = 0
    total_chunks: int = 0
    processed_chunks: int = 0
    percentage: int = Field(default=0, ge=0, le=100)
    message: str = ""
    current_file: str | None = None
    current_chunk: str | None = None
    error: str | None = None


class MigrationProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: MigrationPhase
    total_chunks: int = 0
    migrated_chunks: int = 0
    percentage: int = Field(default=0, ge=0, le=100)
    current_chunk: str | None = None
    error: str | None = None


class IngestionOptions(BaseModel):
    """Tunable parameters of a single ingestion run."""

    model_config = ConfigDict(frozen=True)

    chunk_size: int = Field(default=1000, description="Maximum characters per chunk.")
    overlap: int = Field(default=200, description="Characters shared by consecutive windows of a long paragraph.")
    batch_size: int = Field(default=5, gt=0, description="Chunks embedded and stored per batch.")
    skip_existing: bool = Field(default=True, description="Leave chunks whose id is already stored untouched.")
    batch_yield_seconds: float = Field(default=0.01, ge=0.0)


# ---------------------------------------------------------------------------
# Run results
# ---------------------------------------------------------------------------
class RecordError(BaseModel):
    """A per-chunk failure that did not abort the run."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    error: str


class IngestionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    cancelled: bool = False
    total_files: int = 0
    total_chunks: int = 0
    indexed_chunks: int = 0
    skipped_chunks: int = 0
    errors: list[RecordError] = Field(default_factory=list)
    error: str | None = None
    duration: float = Field(default=0.0, description="Wall-clock seconds.")


class MigrationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    dry_run: bool = False
    total_chunks: int = 0
    migrated_chunks: int = 0
    errors: list[RecordError] = Field(default_factory=list)
    error: str | None = None
    duration: float = Field(default=0.0, description="Wall-clock seconds.")
    source_stats: StoreStats | None = None
    target_stats: StoreStats | None = None
    verification: VerificationReport | None = None
