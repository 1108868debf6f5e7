# =============================================================================
# mnemosyne/cli/main.py -- operator CLI for the vector store
# =============================================================================
#
# Subcommands:
#
#   ingest   -- chunk, embed and store every .md/.txt file under a directory
#   migrate  -- copy the current store into another backend
#   stats    -- print totals and per-document / per-type breakdowns
#   verify   -- run the store's own consistency checks
#   search   -- embed a query and print the closest chunks
#
# Defaults come from config/config.yaml (--config), overridden by MNEMOSYNE_*
# environment variables.
#
# Provider selection:
#   - Embedding: OpenAI (if key set) -> FastEmbed (local ONNX) -> Nomic/Ollama
#   - Vector store: MNEMOSYNE_VECTOR_BACKEND (file | embedded | server)
#
# Usage examples:
#   python -m mnemosyne.cli ingest --path ./notes
#   python -m mnemosyne.cli migrate --to embedded --dry-run
#   python -m mnemosyne.cli migrate --to server --switch
#   python -m mnemosyne.cli stats
#   python -m mnemosyne.cli search "retry policy" --type markdown --min-score 0.3
# =============================================================================

"""Command-line entry point for ingestion, migration and store maintenance."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import signal
import sys
from pathlib import Path

from mnemosyne.config.settings import Settings
from mnemosyne.models.store_config import BackendType

_DEFAULT_EXTENSIONS = (".md", ".txt")


def _build_embedding_provider(app_settings: Settings):  # noqa: ANN202
    """Select the first available embedding provider.

    Priority: OpenAI (if an API key is set) -> FastEmbed (local ONNX) ->
    Nomic via Ollama.  Imports are deferred so ``stats`` does not pay for
    SDKs it never uses.

    Returns
    -------
    IEmbeddingProvider or None
        ``None`` when no provider is usable.
    """
    if app_settings.openai_api_key.get_secret_value():
        from mnemosyne.providers.embedding.openai_embedding_provider import (
            OpenAIEmbeddingProvider,
        )

        provider = OpenAIEmbeddingProvider(settings=app_settings)
        if provider.is_available():
            return provider

    from mnemosyne.providers.embedding.fastembed_embedding_provider import (
        FastEmbedEmbeddingProvider,
    )

    fe_provider = FastEmbedEmbeddingProvider(model_name=app_settings.fastembed_model)
    if fe_provider.is_available():
        return fe_provider

    from mnemosyne.providers.embedding.nomic_embedding_provider import (
        NomicEmbeddingProvider,
    )

    nomic_provider = NomicEmbeddingProvider(settings=app_settings)
    if nomic_provider.is_available():
        return nomic_provider

    return None


def _build_store(app_settings: Settings, dimension: int, embedding_model: str, backend: str | None = None):  # noqa: ANN202
    from mnemosyne.providers.vector_store.factory import create_vector_store

    config = app_settings.to_vector_store_config(
        dimension=dimension,
        embedding_model=embedding_model,
        backend=backend,
    )
    return create_vector_store(config)


def _discover_documents(root: Path, extensions: tuple[str, ...]) -> list:
    """Enumerate readable documents under *root*, sorted by relative path."""
    from mnemosyne.providers.documents import TextFileDocument

    files = sorted(
        p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in extensions
    )
    return [
        TextFileDocument(file_path=p, doc_path=p.relative_to(root).as_posix())
        for p in files
    ]


def _persist_backend_choice(env_path: Path, backend: str) -> None:
    """Set ``MNEMOSYNE_VECTOR_BACKEND`` in *env_path*, keeping other lines."""
    key = "MNEMOSYNE_VECTOR_BACKEND"
    lines = env_path.read_text(encoding="utf-8").splitlines() if env_path.exists() else []
    lines = [line for line in lines if not line.startswith(f"{key}=")]
    lines.append(f"{key}={backend}")
    env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _print_progress(record) -> None:  # noqa: ANN001
    label = getattr(record, "message", "") or ""
    print(f"  [{record.percentage:3d}%] {record.phase.value:<10} {label}")


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _handle_ingest(args: argparse.Namespace, app_settings: Settings, config: dict) -> int:
    from mnemosyne.models.pipeline import IngestionOptions
    from mnemosyne.pipeline.cancellation import CancellationToken
    from mnemosyne.pipeline.store_holder import StoreAccessGuard
    from mnemosyne.services.ingestion.ingestion_service import IngestionService

    root = Path(args.path)
    if not root.is_dir():
        print(f"Error: {root} is not a directory.", file=sys.stderr)
        return 1

    embedding_provider = _build_embedding_provider(app_settings)
    if embedding_provider is None:
        print(
            "No embedding provider available.\n"
            "Set MNEMOSYNE_OPENAI_API_KEY, install fastembed, or run Ollama "
            "at MNEMOSYNE_OLLAMA_BASE_URL.",
            file=sys.stderr,
        )
        return 1

    store = _build_store(
        app_settings,
        dimension=embedding_provider.get_dimension(),
        embedding_model=embedding_provider.get_model_name(),
    )
    ingestion_cfg = config.get("ingestion", {})
    extensions = args.extensions or ingestion_cfg.get("extensions") or _DEFAULT_EXTENSIONS
    documents = _discover_documents(root, tuple(ext.lower() for ext in extensions))
    print(f"Ingesting {len(documents)} documents from {root}")
    print(f"  Embedding: {embedding_provider.get_provider_name()} | Store: {store.get_backend_name()}")

    options = IngestionOptions(
        chunk_size=args.chunk_size or ingestion_cfg.get("chunk_size", app_settings.chunk_size),
        overlap=args.overlap if args.overlap is not None else ingestion_cfg.get("overlap", app_settings.chunk_overlap),
        batch_size=args.batch_size or ingestion_cfg.get("batch_size", app_settings.ingest_batch_size),
        skip_existing=not args.no_skip_existing and ingestion_cfg.get("skip_existing", app_settings.skip_existing),
        batch_yield_seconds=ingestion_cfg.get("batch_yield_seconds", app_settings.batch_yield_seconds),
    )

    token = CancellationToken()
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, token.cancel)

    guard = StoreAccessGuard()
    service = IngestionService(embedding_provider=embedding_provider, vector_store=store)
    try:
        async with guard.writer(store, "ingest"):
            result = await service.ingest(
                documents,
                options=options,
                on_progress=_print_progress,
                cancellation=token,
            )
    finally:
        await store.close()

    print("\nIngestion finished:")
    print(f"  Files:     {result.total_files}")
    print(f"  Chunks:    {result.total_chunks}")
    print(f"  Indexed:   {result.indexed_chunks}")
    print(f"  Skipped:   {result.skipped_chunks}")
    print(f"  Errors:    {len(result.errors)}")
    print(f"  Time:      {result.duration:.2f}s")
    if result.cancelled:
        print("  Run was cancelled; chunks indexed so far were kept.")
        return 130
    if not result.success:
        print(f"  Failed: {result.error}", file=sys.stderr)
        return 1
    return 0


async def _handle_migrate(args: argparse.Namespace, app_settings: Settings, config: dict) -> int:
    from mnemosyne.pipeline.store_holder import CurrentStoreHolder, StoreAccessGuard
    from mnemosyne.services.migration.migration_service import MigrationService
    from mnemosyne.utils.errors import MnemosyneError

    source_backend = args.source or app_settings.vector_backend.value
    if source_backend == args.to:
        print("Error: source and target backends are the same.", file=sys.stderr)
        return 1

    dimension, model = _resolve_dimension(args, app_settings)
    if dimension is None:
        print("Error: pass --dimension or configure an embedding provider.", file=sys.stderr)
        return 1

    source = _build_store(app_settings, dimension, model, backend=source_backend)
    try:
        await source.initialize()
        # The target records whatever model produced the source's vectors.
        source_model = (await source.get_stats()).embedding_model or model
    except MnemosyneError:
        await source.close()
        raise
    target = _build_store(app_settings, dimension, source_model, backend=args.to)
    holder = CurrentStoreHolder(source)
    guard = StoreAccessGuard()
    migration_cfg = config.get("migration", {})
    service = MigrationService(
        batch_size=migration_cfg.get("batch_size", app_settings.migration_batch_size),
        progress_every=migration_cfg.get("progress_every", app_settings.migration_progress_every),
    )

    mode = " (dry run)" if args.dry_run else ""
    print(f"Migrating {source_backend} -> {args.to}{mode}")
    try:
        async with guard.reader(source), guard.writer(target, "migrate"):
            result = await service.migrate(
                source,
                target,
                dry_run=args.dry_run,
                on_progress=_print_progress,
            )

        print("\nMigration finished:")
        print(f"  Total:     {result.total_chunks}")
        print(f"  Migrated:  {result.migrated_chunks}")
        print(f"  Errors:    {len(result.errors)}")
        print(f"  Time:      {result.duration:.2f}s")
        for record in result.errors[:20]:
            print(f"    {record.chunk_id}: {record.error}")
        if result.verification and not result.verification.valid:
            print("  Verification differences:")
            for diff in result.verification.differences:
                print(f"    {diff}")

        if not result.success:
            if result.error:
                print(f"  Failed: {result.error}", file=sys.stderr)
            return 1

        if args.switch and not args.dry_run:
            if result.verification is None or not result.verification.valid:
                print("  Not switching: target does not match the source.", file=sys.stderr)
                return 1
            await holder.replace(target)
            _persist_backend_choice(Path(args.env_file), args.to)
            print(f"  Current backend is now {args.to} (saved to {args.env_file}).")
        return 0
    finally:
        await source.close()
        await target.close()


async def _handle_stats(args: argparse.Namespace, app_settings: Settings, config: dict) -> int:
    dimension, model = _resolve_dimension(args, app_settings)
    if dimension is None:
        print("Error: pass --dimension or configure an embedding provider.", file=sys.stderr)
        return 1

    store = _build_store(app_settings, dimension, model, backend=args.backend)
    try:
        await store.initialize()
        stats = await store.get_stats()
    finally:
        await store.close()

    print("Vector Store Statistics")
    print("=" * 40)
    print(f"  Backend:          {stats.backend}")
    print(f"  Total chunks:     {stats.total_chunks}")
    print(f"  Dimension:        {stats.dimension}")
    print(f"  Embedding model:  {stats.embedding_model or '-'}")
    print(f"  Documents:        {len(stats.document_counts)}")
    if stats.content_type_counts:
        print("\n  Chunks by content type:")
        for ctype, count in sorted(stats.content_type_counts.items()):
            print(f"    {ctype:<15} {count}")
    return 0


async def _handle_verify(args: argparse.Namespace, app_settings: Settings, config: dict) -> int:
    dimension, model = _resolve_dimension(args, app_settings)
    if dimension is None:
        print("Error: pass --dimension or configure an embedding provider.", file=sys.stderr)
        return 1

    store = _build_store(app_settings, dimension, model, backend=args.backend)
    try:
        await store.initialize()
        report = await store.verify()
    finally:
        await store.close()

    if report.valid:
        print(f"{store.get_backend_name()} store is consistent.")
        return 0
    print(f"{store.get_backend_name()} store has problems:")
    for diff in report.differences:
        print(f"  {diff}")
    return 1


async def _handle_search(args: argparse.Namespace, app_settings: Settings, config: dict) -> int:
    from mnemosyne.models.chunk import MetadataFilter

    embedding_provider = _build_embedding_provider(app_settings)
    if embedding_provider is None:
        print("No embedding provider available to embed the query.", file=sys.stderr)
        return 1

    filters = MetadataFilter(
        document_ids=args.documents or [],
        sections=args.sections or [],
        content_types=args.content_types or [],
        keywords=args.keywords or [],
    )
    store = _build_store(
        app_settings,
        dimension=embedding_provider.get_dimension(),
        embedding_model=embedding_provider.get_model_name(),
        backend=args.backend,
    )
    try:
        await store.initialize()
        query_vector = await embedding_provider.embed_single(args.text)
        results = await store.query(query_vector, k=args.k, min_score=args.min_score, filters=filters)
    finally:
        await store.close()

    if not results:
        print("No matching chunks.")
        return 0
    for rank, hit in enumerate(results, start=1):
        meta = hit.chunk.metadata
        snippet = " ".join(hit.chunk.content.split())[:120]
        print(f"{rank:>2}. {hit.score:.4f}  {meta.page_reference}")
        print(f"    {snippet}")
    return 0


def _resolve_dimension(args: argparse.Namespace, app_settings: Settings) -> tuple[int | None, str]:
    """Dimension and model from ``--dimension`` or the selected embedding provider."""
    if getattr(args, "dimension", None):
        return args.dimension, ""
    provider = _build_embedding_provider(app_settings)
    if provider is None:
        return None, ""
    return provider.get_dimension(), provider.get_model_name()


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    backends = [b.value for b in BackendType]
    parser = argparse.ArgumentParser(
        prog="python -m mnemosyne.cli",
        description="Ingest documents into, and manage, the mnemosyne vector store.",
    )
    parser.add_argument(
        "--config",
        default="config/config.yaml",
        help="YAML defaults; MNEMOSYNE_* environment variables override them",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # -- ingest --
    ingest_parser = subparsers.add_parser("ingest", help="Ingest a directory of .md/.txt files")
    ingest_parser.add_argument("--path", required=True, help="Directory to scan recursively")
    ingest_parser.add_argument("--chunk-size", type=int, dest="chunk_size", help="Max characters per chunk")
    ingest_parser.add_argument("--overlap", type=int, help="Overlap between long-paragraph windows")
    ingest_parser.add_argument("--batch-size", type=int, dest="batch_size", help="Chunks per embedding batch")
    ingest_parser.add_argument(
        "--ext",
        action="append",
        dest="extensions",
        help="File extension to include (repeatable, default .md and .txt)",
    )
    ingest_parser.add_argument(
        "--no-skip-existing",
        action="store_true",
        dest="no_skip_existing",
        help="Re-insert chunks whose id is already stored",
    )

    # -- migrate --
    migrate_parser = subparsers.add_parser("migrate", help="Copy the store into another backend")
    migrate_parser.add_argument("--to", required=True, choices=backends, help="Target backend")
    migrate_parser.add_argument("--from", dest="source", choices=backends, help="Source backend (default: current)")
    migrate_parser.add_argument("--dry-run", action="store_true", dest="dry_run", help="Validate without writing")
    migrate_parser.add_argument("--switch", action="store_true", help="Make the target current after success")
    migrate_parser.add_argument("--env-file", default=".env", dest="env_file", help="Where --switch saves the choice")
    migrate_parser.add_argument("--dimension", type=int, help="Embedding dimension of the stores")

    # -- stats / verify --
    for name, help_text in (("stats", "Show store statistics"), ("verify", "Check store consistency")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--backend", choices=backends, help="Backend to inspect (default: current)")
        sub.add_argument("--dimension", type=int, help="Embedding dimension of the store")

    # -- search --
    search_parser = subparsers.add_parser("search", help="Find the chunks most similar to a text")
    search_parser.add_argument("text", help="Query text to embed")
    search_parser.add_argument("--k", type=int, default=5, help="Number of results (default 5)")
    search_parser.add_argument("--min-score", type=float, dest="min_score", help="Drop results scoring below this")
    search_parser.add_argument("--document", action="append", dest="documents", help="Restrict to a document id")
    search_parser.add_argument("--section", action="append", dest="sections", help="Restrict to a section label")
    search_parser.add_argument("--type", action="append", dest="content_types", help="Restrict to a content type")
    search_parser.add_argument("--keyword", action="append", dest="keywords", help="Require any of these keywords")
    search_parser.add_argument("--backend", choices=backends, help="Backend to search (default: current)")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, load settings and dispatch to a handler."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    from mnemosyne.config.loader import load_config
    from mnemosyne.utils.errors import MnemosyneError
    from mnemosyne.utils.logging import configure_logging

    app_settings = Settings()
    config = load_config(args.config, settings=app_settings)
    configure_logging(log_level=config.get("logging", {}).get("level", app_settings.log_level))

    handlers = {
        "ingest": _handle_ingest,
        "migrate": _handle_migrate,
        "stats": _handle_stats,
        "verify": _handle_verify,
        "search": _handle_search,
    }
    try:
        return asyncio.run(handlers[args.command](args, app_settings, config))
    except MnemosyneError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
