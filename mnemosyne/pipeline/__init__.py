"""Run-scoped plumbing shared by the ingestion and migration services."""

from mnemosyne.pipeline.cancellation import CancellationToken
from mnemosyne.pipeline.progress import ProgressReporter
from mnemosyne.pipeline.store_holder import CurrentStoreHolder, StoreAccessGuard

__all__ = ["CancellationToken", "CurrentStoreHolder", "ProgressReporter", "StoreAccessGuard"]
