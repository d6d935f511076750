"""Database adapters — driver ownership, error translation, pooling.

Modules
-------
types       DatabaseType enum and DatabaseConfig dataclass
base        DatabaseAdapter abstract base
sqlite      SQLiteAdapter (stdlib sqlite3)
postgresql  PostgreSQLAdapter (psycopg2, lazy import)
pool        ConnectionPool over sqlalchemy QueuePool
registry    URL scheme → adapter class (AdapterRegistry, get_adapter)
"""

from .base import DatabaseAdapter
from .pool import ConnectionPool
from .postgresql import PostgreSQLAdapter
from .registry import AdapterRegistry, adapter_registry, get_adapter
from .sqlite import SQLiteAdapter
from .types import DatabaseConfig, DatabaseType

__all__ = [
    "AdapterRegistry",
    "ConnectionPool",
    "DatabaseAdapter",
    "DatabaseConfig",
    "DatabaseType",
    "PostgreSQLAdapter",
    "SQLiteAdapter",
    "adapter_registry",
    "get_adapter",
]
