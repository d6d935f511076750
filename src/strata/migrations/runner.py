"""
Migration runner: apply and revert migration units against the ledger.

Manifesto:
    A unit moves between two states, Pending and Applied, and the ledger
    is the only record of which state it is in.  The ledger row is
    written immediately after each successful ``up()`` (inside that
    unit's transaction when ``within_transaction`` is set), so a batch
    that fails halfway leaves a consistent ledger: the next ``run()``
    resumes at the failed unit.

Architecture:
    ::

        run()          pending = known − ledger, ascending identifier
                       │ for each: token check → up() → ledger.log(batch)
                       ▼
        rollback(n)    last n ledger rows by id (application order, reversed)
                       │ for each: down() → ledger.delete()
        rollback_batch last batch, reversed
        reset()        every ledger row, reversed
        refresh()      reset() + run()
        fresh()        drop_all_tables() + run()
        status()       known ∪ ledger, with batch / applied_at

Examples:
    >>> migrator = db.migrator("migrations")
    >>> result = migrator.run()
    >>> result.applied
    ['2024_01_15_120000_create_authors_table', '2024_01_15_120100_create_books_table']
    >>> migrator.rollback(steps=1).rolled_back
    ['2024_01_15_120100_create_books_table']

Tags:
    migrations, schema, ledger, batches, strata
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from strata.core.cancellation import CancellationToken
from strata.core.errors import MigrationCancelledError, MigrationError, SchemaError
from strata.core.logging import LogContext, get_logger

from .migration import IDENTIFIER_RE, Migration, MigrationLoader
from .repository import MigrationRecord, MigrationRepository

if TYPE_CHECKING:
    from strata.core.database import Database

logger = get_logger(__name__)


@dataclass
class MigrationResult:
    """Outcome of one runner operation."""

    applied: list[str] = field(default_factory=list)
    rolled_back: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    batch: int | None = None
    pretended: list[str] = field(default_factory=list)

    @property
    def nothing_to_do(self) -> bool:
        return not (self.applied or self.rolled_back or self.pretended)


@dataclass
class MigrationStatus:
    """One row of ``Migrator.status()``."""

    identifier: str
    applied: bool
    batch: int | None = None
    applied_at: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "migration": self.identifier,
            "applied": self.applied,
            "batch": self.batch,
            "applied_at": str(self.applied_at) if self.applied_at is not None else None,
        }


class Migrator:
    """Applies pending migrations and reverts applied ones.

    Parameters
    ----------
    db
        Target database.
    paths
        Directory (or directories) of migration files.
    migrations
        Explicit ``{identifier: Migration}`` registrations, merged with
        discovered files.
    table
        Ledger table name.
    """

    def __init__(
        self,
        db: Database,
        paths: str | Path | Iterable[str | Path] | None = None,
        *,
        migrations: dict[str, Migration | type[Migration]] | None = None,
        table: str = "migrations",
    ) -> None:
        self.db = db
        self.loader = MigrationLoader(paths)
        self.repository = MigrationRepository(db, table)
        self._registered: dict[str, Migration] = {}
        for identifier, migration in (migrations or {}).items():
            self.register(identifier, migration)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def register(self, identifier: str, migration: Migration | type[Migration]) -> None:
        """Register an in-memory migration under *identifier*."""
        if isinstance(migration, type) and issubclass(migration, Migration):
            migration = migration()
        if not isinstance(migration, Migration):
            raise MigrationError(f"{identifier}: expected a Migration, got {type(migration).__name__}")
        self._registered[_check_identifier(identifier)] = migration

    def get_migrations(self) -> dict[str, Migration]:
        """Every known migration, keyed and sorted by identifier."""
        found = {_check_identifier(i): m for i, m in self.loader.load().items()}
        for identifier, migration in self._registered.items():
            if identifier in found:
                raise MigrationError(f"Migration {identifier} is both registered and present on disk")
            found[identifier] = migration
        return dict(sorted(found.items()))

    def pending(self) -> list[str]:
        ran = set(self.repository.get_ran()) if self.repository.repository_exists() else set()
        return [identifier for identifier in self.get_migrations() if identifier not in ran]

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def run(self, *, token: CancellationToken | None = None, pretend: bool = False) -> MigrationResult:
        """Apply every pending migration in one new batch."""
        self.repository.create_repository()
        migrations = self.get_migrations()
        ran = set(self.repository.get_ran())

        result = MigrationResult(skipped=[i for i in migrations if i in ran])
        pending = [i for i in migrations if i not in ran]
        if not pending:
            logger.info("migration.nothing_to_migrate", ran=len(ran))
            return result

        batch = self.repository.get_next_batch_number()
        result.batch = batch

        for identifier in pending:
            self._check_cancelled(token, result.applied)
            if pretend:
                result.pretended.extend(self._pretend(migrations[identifier].up))
                continue
            self._run_unit(identifier, migrations[identifier], "up", batch)
            result.applied.append(identifier)

        return result

    # ------------------------------------------------------------------
    # Revert
    # ------------------------------------------------------------------

    def rollback(
        self,
        steps: int = 1,
        *,
        token: CancellationToken | None = None,
        pretend: bool = False,
    ) -> MigrationResult:
        """Revert the last *steps* applied units, most recent first."""
        if steps < 1:
            raise MigrationError(f"steps must be at least 1, got {steps}")
        if not self.repository.repository_exists():
            return MigrationResult()
        return self._rollback_records(self.repository.get_last(steps), token, pretend)

    def rollback_batch(
        self,
        *,
        token: CancellationToken | None = None,
        pretend: bool = False,
    ) -> MigrationResult:
        """Revert every unit of the latest batch."""
        if not self.repository.repository_exists():
            return MigrationResult()
        return self._rollback_records(self.repository.get_last_batch(), token, pretend)

    def reset(self, *, token: CancellationToken | None = None, pretend: bool = False) -> MigrationResult:
        """Revert every applied unit."""
        if not self.repository.repository_exists():
            return MigrationResult()
        records = list(reversed(self.repository.get_records()))
        return self._rollback_records(records, token, pretend)

    def refresh(self, *, token: CancellationToken | None = None) -> MigrationResult:
        """``reset()`` followed by ``run()``."""
        reverted = self.reset(token=token)
        applied = self.run(token=token)
        applied.rolled_back = reverted.rolled_back
        return applied

    def fresh(self, *, token: CancellationToken | None = None) -> MigrationResult:
        """Drop every table, then run all migrations."""
        self.db.schema().drop_all_tables()
        logger.info("migration.dropped_all_tables")
        return self.run(token=token)

    def _rollback_records(
        self,
        records: list[MigrationRecord],
        token: CancellationToken | None,
        pretend: bool,
    ) -> MigrationResult:
        result = MigrationResult()
        if not records:
            logger.info("migration.nothing_to_rollback")
            return result

        migrations = self.get_migrations()
        for record in records:
            self._check_cancelled(token, result.rolled_back)
            migration = migrations.get(record.migration)
            if migration is None:
                raise MigrationError(f"Migration not found: {record.migration}").with_context(
                    migration=record.migration
                )
            if pretend:
                result.pretended.extend(self._pretend(migration.down))
                continue
            self._run_unit(record.migration, migration, "down", record.batch)
            result.rolled_back.append(record.migration)
        return result

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> list[MigrationStatus]:
        records = (
            {r.migration: r for r in self.repository.get_records()}
            if self.repository.repository_exists()
            else {}
        )
        identifiers = sorted(set(self.get_migrations()) | set(records))
        return [
            MigrationStatus(
                identifier=identifier,
                applied=identifier in records,
                batch=records[identifier].batch if identifier in records else None,
                applied_at=records[identifier].applied_at if identifier in records else None,
            )
            for identifier in identifiers
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _run_unit(self, identifier: str, migration: Migration, direction: str, batch: int) -> None:
        schema = self.db.schema()

        def apply(_db: Any = None) -> None:
            if direction == "up":
                migration.up(schema)
                self.repository.log(identifier, batch)
            else:
                migration.down(schema)
                self.repository.delete(identifier)

        with LogContext(migration=identifier):
            try:
                if migration.within_transaction:
                    self.db.transaction(apply)
                else:
                    apply()
            except Exception as exc:
                logger.error("migration.failed", migration=identifier, direction=direction, error=str(exc))
                if isinstance(exc, SchemaError):
                    raise exc.with_context(migration=identifier)
                raise SchemaError(
                    f"Migration {identifier} failed during {direction}(): {exc}",
                    cause=exc,
                ).with_context(migration=identifier) from exc

        event = "migration.applied" if direction == "up" else "migration.rolled_back"
        logger.info(event, migration=identifier, batch=batch)

    def _pretend(self, operation: Any) -> list[str]:
        with self.db.pretend() as collected:
            operation(self.db.schema())
        return [event.sql for event in collected]

    @staticmethod
    def _check_cancelled(token: CancellationToken | None, done: list[str]) -> None:
        if token is not None and token.cancelled:
            logger.warning("migration.cancelled", completed=len(done), reason=token.reason)
            raise MigrationCancelledError(
                f"Migration cancelled after {len(done)} unit(s): {token.reason}",
                applied=list(done),
            )


def _check_identifier(identifier: str) -> str:
    if not IDENTIFIER_RE.match(identifier):
        raise MigrationError(
            f"Invalid migration identifier {identifier!r}; expected YYYY_MM_DD_HHMMSS_name"
        ).with_context(migration=identifier)
    return identifier


__all__ = [
    "MigrationResult",
    "MigrationStatus",
    "Migrator",
]
