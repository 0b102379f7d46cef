"""
Database Exception Classes
Handles errors raised by the database adapter: transport failures,
statement failures and transaction misuse.
"""

from typing import Any

from .base import EotyDbError


class DatabaseError(EotyDbError):
    """Base class for database adapter errors."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        **kwargs: Any,
    ):
        context = kwargs.pop("context", {})
        if operation:
            context["operation"] = operation

        self.operation = operation
        super().__init__(message, context=context, **kwargs)

    def _get_default_user_message(self) -> str:
        return "A database operation failed."


class DatabaseConnectionError(DatabaseError):
    """Raised when the database cannot be reached or the connection drops."""

    def _get_default_user_message(self) -> str:
        return "Could not reach the database. Check connection settings and try again."


class SqlError(DatabaseError):
    """
    Raised when a DDL or DML statement is rejected by the database.

    Attributes:
        statement: The failing statement (truncated)
        retryable: True for integrity violations and busy/locked stores
        transaction_refused: True when the engine refused to run the
            statement inside a transaction block
    """

    def __init__(
        self,
        message: str,
        statement: str | None = None,
        retryable: bool = False,
        transaction_refused: bool = False,
        **kwargs: Any,
    ):
        context = kwargs.pop("context", {})
        if statement:
            context["statement"] = statement[:200]

        self.statement = statement
        self.retryable = retryable
        self.transaction_refused = transaction_refused
        super().__init__(message, context=context, **kwargs)

    def _get_default_user_message(self) -> str:
        return "A SQL statement failed. See the log for the statement and cause."


class NestedTransactionError(DatabaseError):
    """Raised when a transaction is opened inside another transaction."""

    def _get_default_user_message(self) -> str:
        return "Nested transactions are not supported."
