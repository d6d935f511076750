"""strata.migrations — versioned schema changes.

Modules
-------
migration   Migration base class and MigrationLoader (file discovery)
repository  MigrationRepository ledger table
runner      Migrator (run / rollback / reset / refresh / fresh / status)
"""

from strata.migrations.migration import Migration, MigrationLoader
from strata.migrations.repository import MigrationRecord, MigrationRepository
from strata.migrations.runner import MigrationResult, MigrationStatus, Migrator

__all__ = [
    "Migration",
    "MigrationLoader",
    "MigrationRecord",
    "MigrationRepository",
    "MigrationResult",
    "MigrationStatus",
    "Migrator",
]
