"""
Database Module
This package provides the database adapter, catalog introspection, guarded
schema operations and the migration engine for the EOTY platform.
"""

from .connection import DatabaseConnection, ExecResult, TransactionalConnection

__all__ = [
    "DatabaseConnection",
    "ExecResult",
    "TransactionalConnection",
]
