"""Backend selection and connection parameters for vector stores.

A :class:`VectorStoreConfig` names the active backend and carries the
parameters of all three, so switching backends is a matter of changing
``backend`` and never touches another backend's data.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class BackendType(str, Enum):  # noqa: UP042
    FILE = "file"
    EMBEDDED = "embedded"
    SERVER = "server"


class FileStoreConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str = Field(default="data/vectors.json", description="JSON file holding the whole index.")


class EmbeddedStoreConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str = Field(default="data/vectors.db", description="SQLite database file.")
    durable: bool = Field(default=True, description="Enable WAL journaling with synchronous=FULL.")
    cache_size: int = Field(default=10000, description="SQLite page cache size (pages).")


class ServerStoreConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int = 5432
    database: str = "mnemosyne"
    user: str = "postgres"
    password: SecretStr = SecretStr("")
    table_name: str = Field(default="mnemosyne_chunks", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    ssl: bool = False
    pool_size: int = Field(default=10, gt=0)
    connect_timeout: float = Field(default=10.0, gt=0.0, description="Seconds to wait for a connection.")
    command_timeout: float = Field(default=60.0, gt=0.0, description="Seconds to wait for a statement.")
    hnsw_m: int = 16
    hnsw_ef_construction: int = 64


class VectorStoreConfig(BaseModel):
    """Which backend to build, plus the parameters every backend needs."""

    model_config = ConfigDict(frozen=True)

    backend: BackendType = BackendType.FILE
    dimension: int = Field(gt=0, description="Embedding length fixed for the store.")
    embedding_model: str = ""
    file: FileStoreConfig = Field(default_factory=FileStoreConfig)
    embedded: EmbeddedStoreConfig = Field(default_factory=EmbeddedStoreConfig)
    server: ServerStoreConfig = Field(default_factory=ServerStoreConfig)
