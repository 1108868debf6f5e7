"""YAML configuration loader with environment variable overrides.

Configuration is layered (later layers win):

    1. config/config.yaml  -- static defaults checked into the repo
    2. .env file           -- local overrides, not committed
    3. Environment vars    -- set at deploy time

``load_config()`` reads the YAML file, then deep-merges the values that
:class:`Settings` resolved from the environment on top of it.
"""

from pathlib import Path

import yaml

from mnemosyne.config.settings import Settings


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file. A missing file yields
              an empty base layer.
        settings: Pre-built settings; a fresh ``Settings()`` when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides = {
        "app": {
            "env": settings.app_env,
        },
        "vector_store": {
            "backend": settings.vector_backend.value,
            "file": {"path": settings.file_store_path},
            "embedded": {
                "path": settings.embedded_store_path,
                "durable": settings.embedded_durable,
                "cache_size": settings.embedded_cache_size,
            },
            "server": {
                "host": settings.server_host,
                "port": settings.server_port,
                "database": settings.server_database,
                "user": settings.server_user,
                "table_name": settings.server_table,
                "ssl": settings.server_ssl,
                "pool_size": settings.server_pool_size,
                "connect_timeout": settings.server_connect_timeout,
                "command_timeout": settings.server_command_timeout,
            },
        },
        "embedding": {
            "openai_model": settings.openai_embedding_model,
            "fastembed_model": settings.fastembed_model,
            "ollama_base_url": settings.ollama_base_url,
            "ollama_model": settings.ollama_embedding_model,
            "available_providers": settings.get_available_embedding_providers(),
        },
        "ingestion": {
            "chunk_size": settings.chunk_size,
            "overlap": settings.chunk_overlap,
            "batch_size": settings.ingest_batch_size,
            "skip_existing": settings.skip_existing,
            "batch_yield_seconds": settings.batch_yield_seconds,
        },
        "migration": {
            "batch_size": settings.migration_batch_size,
            "progress_every": settings.migration_progress_every,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
