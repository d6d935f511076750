"""Driver error translation for the PostgreSQL adapter (no server needed)."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from strata.core.adapters import PostgreSQLAdapter
from strata.core.errors import ConstraintViolationError, DatabaseConnectionError, QueryError


class FakeDriverError(Exception):
    def __init__(self, message: str, pgcode: str | None = None, diag: object | None = None):
        super().__init__(message)
        self.pgcode = pgcode
        self.diag = diag


class FakeOperationalError(FakeDriverError):
    pass


class FakeInterfaceError(FakeDriverError):
    pass


class FakeProgrammingError(FakeDriverError):
    pass


@pytest.fixture
def adapter(monkeypatch):
    adapter = PostgreSQLAdapter(database="library")
    driver = SimpleNamespace(OperationalError=FakeOperationalError, InterfaceError=FakeInterfaceError)
    monkeypatch.setattr(adapter, "_driver", lambda: driver)
    return adapter


class TestPostgresErrorTranslation:
    @pytest.mark.parametrize("code", ["08006", "08001", "08003"])
    def test_connection_exception_class_is_retryable(self, adapter, code):
        error = adapter.translate_error(FakeOperationalError("connection failure", code))
        assert isinstance(error, DatabaseConnectionError)
        assert error.retryable

    def test_operational_error_without_sqlstate_is_a_lost_connection(self, adapter):
        error = adapter.translate_error(FakeOperationalError("server closed the connection unexpectedly"))
        assert isinstance(error, DatabaseConnectionError)

    def test_interface_error_is_a_connection_error(self, adapter):
        error = adapter.translate_error(FakeInterfaceError("connection already closed"))
        assert isinstance(error, DatabaseConnectionError)

    @pytest.mark.parametrize(
        "code",
        [
            "57014",  # query_canceled
            "40P01",  # deadlock_detected
            "40001",  # serialization_failure
        ],
    )
    def test_statement_failures_on_a_live_connection_are_query_errors(self, adapter, code):
        error = adapter.translate_error(FakeOperationalError("statement failed", code), "UPDATE books SET year = 1")
        assert type(error) is QueryError
        assert not error.retryable
        assert error.__cause__ is not None

    def test_unique_violation_names_the_columns(self, adapter):
        diag = SimpleNamespace(
            constraint_name="books_isbn_unique",
            column_name=None,
            message_detail="Key (isbn)=(9780441013593) already exists.",
        )
        error = adapter.translate_error(FakeProgrammingError("duplicate key", "23505", diag))
        assert isinstance(error, ConstraintViolationError)
        assert error.constraint_type == "unique"
        assert error.constraint == "books_isbn_unique"
        assert error.columns == ["isbn"]

    def test_other_driver_errors_are_query_errors(self, adapter):
        error = adapter.translate_error(FakeProgrammingError('relation "shelves" does not exist', "42P01"))
        assert type(error) is QueryError
