"""Backend-to-backend migration."""

from mnemosyne.services.migration.migration_service import MigrationService, compare_stats

__all__ = ["MigrationService", "compare_stats"]
