"""
Structured error types for the strata data layer.

Every failure the data layer surfaces is a :class:`StrataError` subclass
carrying a category, a retry hint and structured context (table, SQL,
bindings, model, migration).  Driver exceptions are translated exactly
once, inside the adapter that owns the driver, and chained as ``cause``
so the original traceback is never lost.

Manifesto:
    - **Typed taxonomy:** NotFound is not a query error, a constraint
      violation is not a connection error, and request validation is
      not a data-layer concern at all.
    - **Never swallow:** the core raises; callers (HTTP layer, CLI)
      decide on user-facing translation.
    - **Retry only reads:** connection errors are flagged retryable, but
      the core itself never retries a write.

Architecture:
    ::

        StrataError
        ├── NotFoundError ─── ModelNotFoundError
        ├── ValidationError              (reserved for request validation)
        ├── MassAssignmentError
        ├── ConfigError
        ├── DatabaseError
        │   ├── QueryError
        │   ├── QueryBuildError
        │   ├── ConstraintViolationError
        │   ├── TransactionError
        │   └── RelationNotFoundError
        ├── SchemaError
        ├── MigrationError ─── MigrationCancelledError
        ├── OperationCancelledError
        └── DatabaseConnectionError      (retryable)

Examples:
    >>> err = ConstraintViolationError(
    ...     "UNIQUE constraint failed: books.isbn",
    ...     constraint_type="unique",
    ...     columns=["isbn"],
    ... )
    >>> err.is_duplicate_key
    True
    >>> err.to_dict()["category"]
    'DATABASE'

Tags:
    error-handling, exception-hierarchy, constraint-violation, strata
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    NOT_FOUND = "NOT_FOUND"
    VALIDATION = "VALIDATION"
    DATABASE = "DATABASE"
    SCHEMA = "SCHEMA"
    MIGRATION = "MIGRATION"
    CONNECTION = "CONNECTION"
    CONFIG = "CONFIG"
    CANCELLED = "CANCELLED"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only non-None fields are emitted by :meth:`to_dict`, so a context can
    be passed straight to a structured logger.
    """

    table: str | None = None
    model: str | None = None
    sql: str | None = None
    bindings: tuple[Any, ...] | None = None
    migration: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ("table", "model", "sql", "migration"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.bindings is not None:
            result["bindings"] = [repr(b) for b in self.bindings]
        if self.metadata:
            result.update(self.metadata)
        return result


class StrataError(Exception):
    """Base exception for all strata errors.

    Subclasses set ``default_category`` and ``default_retryable``; both
    can be overridden per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> StrataError:
        """Add context to this error (fluent API).

        Usage:
            raise QueryError("bad column").with_context(table="books")
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# LOOKUP ERRORS
# =============================================================================


class NotFoundError(StrataError):
    """A ``*_or_fail`` lookup matched zero rows.

    Distinct from a successful query that returns an empty collection.
    """

    default_category = ErrorCategory.NOT_FOUND


class ModelNotFoundError(NotFoundError):
    """No row for the given model / primary key(s)."""

    def __init__(self, model: str, ids: Any = None, **kwargs: Any):
        self.model = model
        self.ids = list(ids) if isinstance(ids, (list, tuple, set)) else ([] if ids is None else [ids])
        if self.ids:
            joined = ", ".join(str(i) for i in self.ids)
            message = f"No query results for model [{model}] {joined}"
        else:
            message = f"No query results for model [{model}]"
        super().__init__(message, **kwargs)
        self.context.model = model


# =============================================================================
# VALIDATION / CONFIG ERRORS
# =============================================================================


class ValidationError(StrataError):
    """Reserved for the request-validation collaborator.

    The data layer never raises this; it exists so callers can keep
    validation failures apart from :class:`DatabaseError`.
    """

    default_category = ErrorCategory.VALIDATION


class MassAssignmentError(StrataError):
    """Mass-assignment policy violation.

    Raised when a model declares both ``fillable`` and ``guarded``, or
    when strict mode is on and a fully guarded model is mass-assigned.
    """

    default_category = ErrorCategory.VALIDATION


class ConfigError(StrataError):
    """Configuration error. Never retryable."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# DATABASE ERRORS
# =============================================================================


class DatabaseError(StrataError):
    """Database query or transaction error."""

    default_category = ErrorCategory.DATABASE


class QueryError(DatabaseError):
    """Execution failure reported by the driver."""


class QueryBuildError(DatabaseError):
    """Query could not be constructed (bad identifier, operator, limit).

    Raised at call time, before anything reaches the database.
    """


class TransactionError(DatabaseError):
    """Commit, rollback or savepoint misuse."""


class RelationNotFoundError(DatabaseError):
    """A relation name is not declared on the model."""

    def __init__(self, model: str, relation: str):
        self.model = model
        self.relation = relation
        super().__init__(f"Call to undefined relationship [{relation}] on model [{model}]")


class ConstraintViolationError(DatabaseError):
    """Unique, foreign-key, not-null or check violation.

    ``constraint_type`` is one of ``unique``, ``foreign_key``,
    ``not_null``, ``check`` or ``unknown``; ``constraint`` and
    ``columns`` are filled when the driver reports them.
    """

    def __init__(
        self,
        message: str,
        *,
        constraint_type: str = "unknown",
        constraint: str | None = None,
        columns: list[str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.constraint_type = constraint_type
        self.constraint = constraint
        self.columns = columns or []

    @property
    def is_duplicate_key(self) -> bool:
        return self.constraint_type == "unique"

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["constraint_type"] = self.constraint_type
        if self.constraint:
            result["constraint"] = self.constraint
        if self.columns:
            result["columns"] = self.columns
        return result


class DatabaseConnectionError(StrataError):
    """Transport-level failure or pool exhaustion.

    Retryable for idempotent reads only; the core never retries writes.
    """

    default_category = ErrorCategory.CONNECTION
    default_retryable = True


# =============================================================================
# SCHEMA / MIGRATION ERRORS
# =============================================================================


class SchemaError(StrataError):
    """DDL failure; aborts the current migration unit."""

    default_category = ErrorCategory.SCHEMA


class MigrationError(StrataError):
    """Migration discovery or bookkeeping failure."""

    default_category = ErrorCategory.MIGRATION


class OperationCancelledError(StrataError):
    """A cancellation token fired before the next statement."""

    default_category = ErrorCategory.CANCELLED


class MigrationCancelledError(MigrationError):
    """The migration batch was cancelled between units."""

    default_category = ErrorCategory.CANCELLED

    def __init__(self, message: str, *, applied: list[str] | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.applied = applied or []


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, StrataError):
        return error.retryable
    return False


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "StrataError",
    "NotFoundError",
    "ModelNotFoundError",
    "ValidationError",
    "MassAssignmentError",
    "ConfigError",
    "DatabaseError",
    "QueryError",
    "QueryBuildError",
    "TransactionError",
    "RelationNotFoundError",
    "ConstraintViolationError",
    "DatabaseConnectionError",
    "SchemaError",
    "MigrationError",
    "OperationCancelledError",
    "MigrationCancelledError",
    "is_retryable",
]
