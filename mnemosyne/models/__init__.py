"""mnemosyne data models -- re-exports all public model classes.

    - chunk.py        -- stored chunks, metadata, scored results, store stats
    - pipeline.py     -- ingestion/migration phases, progress, options, results
    - store_config.py -- backend selection and per-backend parameters
"""

from __future__ import annotations

from mnemosyne.models.chunk import (
    Chunk,
    ChunkDraft,
    ChunkMetadata,
    MetadataFilter,
    ScoredChunk,
    StoreStats,
    VerificationReport,
    make_chunk_id,
)
from mnemosyne.models.pipeline import (
    IngestionOptions,
    IngestionPhase,
    IngestionProgress,
    IngestionResult,
    MigrationPhase,
    MigrationProgress,
    MigrationResult,
    RecordError,
)
from mnemosyne.models.store_config import (
    BackendType,
    EmbeddedStoreConfig,
    FileStoreConfig,
    ServerStoreConfig,
    VectorStoreConfig,
)

__all__ = [
    "BackendType",
    "Chunk",
    "ChunkDraft",
    "ChunkMetadata",
    "EmbeddedStoreConfig",
    "FileStoreConfig",
    "IngestionOptions",
    "IngestionPhase",
    "IngestionProgress",
    "IngestionResult",
    "MetadataFilter",
    "MigrationPhase",
    "MigrationProgress",
    "MigrationResult",
    "RecordError",
    "ScoredChunk",
    "ServerStoreConfig",
    "StoreStats",
    "VectorStoreConfig",
    "VerificationReport",
    "make_chunk_id",
]
