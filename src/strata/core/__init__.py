"""strata.core — connection, execution and the ambient stack.

Modules
-------
errors        StrataError taxonomy
protocols     Connection / Cursor / QueryListener contracts
dialect       SQLite and PostgreSQL SQL dialects
cancellation  CancellationToken
settings      StrataSettings (pydantic-settings)
logging       structlog configuration
adapters      driver adapters and connection pool
database      Database executor (transactions, query log, factories)
connection    create_database() URL factory
"""

from strata.core.cancellation import CancellationToken
from strata.core.connection import ConnectionInfo, create_database
from strata.core.database import Database
from strata.core.dialect import ColumnInfo, Dialect, IndexInfo, get_dialect
from strata.core.protocols import QueryEvent

__all__ = [
    "CancellationToken",
    "ColumnInfo",
    "ConnectionInfo",
    "Database",
    "Dialect",
    "IndexInfo",
    "QueryEvent",
    "create_database",
    "get_dialect",
]
