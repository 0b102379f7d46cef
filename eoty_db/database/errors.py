"""
DBAPI Error Translation
Maps driver errors raised through SQLAlchemy onto the adapter's error
taxonomy: lost connections, retryable conflicts and statements the
database refuses to run inside a transaction.
"""

import logging

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError

from eoty_db.exceptions import DatabaseConnectionError, SqlError

DISCONNECT_MARKERS = (
    "server closed the connection",
    "could not connect",
    "connection refused",
    "connection reset",
    "terminating connection",
    "unable to open database file",
    "connection already closed",
)
BUSY_MARKERS = (
    "database is locked",
    "database is busy",
    "deadlock detected",
    "could not obtain lock",
)
TRANSACTION_REFUSED_MARKERS = (
    "cannot run inside a transaction block",
    "cannot be executed inside a transaction block",
    "cannot vacuum from within a transaction",
    "cannot change into wal mode from within a transaction",
)


def translate_error(
    error: DBAPIError, statement: str | None = None
) -> DatabaseConnectionError | SqlError:
    """Map a SQLAlchemy DBAPI error onto the adapter's error taxonomy."""
    message = str(error.orig) if error.orig is not None else str(error)
    lowered = message.lower()

    if (
        error.connection_invalidated
        or isinstance(error, InterfaceError)
        or any(marker in lowered for marker in DISCONNECT_MARKERS)
    ):
        return DatabaseConnectionError(
            f"Database connection lost: {message}", operation="execute"
        )

    pgcode = getattr(error.orig, "pgcode", None)
    retryable = isinstance(error, IntegrityError) or any(
        marker in lowered for marker in BUSY_MARKERS
    )
    refused = pgcode == "25001" or any(
        marker in lowered for marker in TRANSACTION_REFUSED_MARKERS
    )
    return SqlError(
        f"SQL execution failed: {message}",
        statement=statement,
        retryable=retryable,
        transaction_refused=refused,
        operation="execute",
        log_level=logging.WARNING if retryable else logging.ERROR,
    )

