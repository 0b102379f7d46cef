"""
Exception Hierarchy for the EOTY schema engine
Provides standardized error handling with consistent exception types.
"""

from .base import ConfigurationError, EotyDbError
from .database import (
    DatabaseConnectionError,
    DatabaseError,
    NestedTransactionError,
    SqlError,
)
from .migration import (
    DuplicateMigrationIdError,
    IdempotenceViolationError,
    InvalidMigrationError,
    IrreversibleMigrationError,
    LedgerDriftError,
    LockUnavailableError,
    MigrationCancelledError,
    MigrationError,
    MigrationFailedError,
    UnknownMigrationError,
)
from .seeding import SeedError, SeedFailedError, SeedRefusedError

__all__ = [
    "ConfigurationError",
    "DatabaseConnectionError",
    "DatabaseError",
    "DuplicateMigrationIdError",
    "EotyDbError",
    "IdempotenceViolationError",
    "InvalidMigrationError",
    "IrreversibleMigrationError",
    "LedgerDriftError",
    "LockUnavailableError",
    "MigrationCancelledError",
    "MigrationError",
    "MigrationFailedError",
    "NestedTransactionError",
    "SeedError",
    "SeedFailedError",
    "SeedRefusedError",
    "SqlError",
    "UnknownMigrationError",
]
