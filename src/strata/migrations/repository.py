"""Migration ledger: which units have been applied, in which batch.

The ledger table (default ``migrations``, table prefix applied) has one
row per applied unit::

    id          auto-increment, application order
    migration   identifier (unique)
    batch       run number; rollback_batch() undoes the highest
    applied_at  timestamp
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from strata.core.database import Database


@dataclass
class MigrationRecord:
    """One ledger row."""

    id: int
    migration: str
    batch: int
    applied_at: Any = None


class MigrationRepository:
    """Reads and writes the migration ledger."""

    def __init__(self, db: Database, table: str = "migrations"):
        self.db = db
        self.table = table

    def _query(self):
        return self.db.table(self.table)

    def create_repository(self) -> None:
        self.db.schema().create_if_not_exists(self.table, _ledger_blueprint)

    def repository_exists(self) -> bool:
        return self.db.schema().has_table(self.table)

    def get_records(self) -> list[MigrationRecord]:
        """Every ledger row in application order."""
        rows = self._query().order_by("id").get()
        return [MigrationRecord(**row) for row in rows]

    def get_ran(self) -> list[str]:
        """Applied identifiers, in application order."""
        return [record.migration for record in self.get_records()]

    def get_last(self, steps: int = 1) -> list[MigrationRecord]:
        """The last *steps* applied units, most recent first."""
        rows = self._query().order_by("id", "desc").limit(steps).get()
        return [MigrationRecord(**row) for row in rows]

    def get_last_batch(self) -> list[MigrationRecord]:
        """Units of the highest batch, most recent first."""
        batch = self.get_last_batch_number()
        if not batch:
            return []
        rows = self._query().where("batch", batch).order_by("id", "desc").get()
        return [MigrationRecord(**row) for row in rows]

    def get_last_batch_number(self) -> int:
        return int(self._query().max("batch") or 0)

    def get_next_batch_number(self) -> int:
        return self.get_last_batch_number() + 1

    def log(self, identifier: str, batch: int) -> None:
        self._query().insert(
            {
                "migration": identifier,
                "batch": batch,
                "applied_at": datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0),
            }
        )

    def delete(self, identifier: str) -> None:
        self._query().where("migration", identifier).delete()


def _ledger_blueprint(table: Any) -> None:
    table.increments("id")
    table.string("migration").unique()
    table.integer("batch")
    table.timestamp("applied_at").nullable()


__all__ = [
    "MigrationRecord",
    "MigrationRepository",
]
