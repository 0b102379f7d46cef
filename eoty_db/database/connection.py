"""
Database Connection Adapter
Thin SQLAlchemy-backed adapter used by every migration, seed and repair
script: statement execution, explicit transactions, identifier quoting
and catalog predicates.
"""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import ArgumentError, DBAPIError, NoSuchModuleError
from sqlalchemy.sql import ClauseElement

from eoty_db.exceptions import (
    ConfigurationError,
    DatabaseConnectionError,
    NestedTransactionError,
)

from . import introspection
from .errors import translate_error

logger = logging.getLogger(__name__)

# Execution option marking a SQLite connection as autocommit: no BEGIN is
# emitted, so each statement commits on its own.
AUTOCOMMIT_OPTION = "eoty_autocommit"


@dataclass
class ExecResult:
    """Rows (as dicts) and affected row count of one statement."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    affected: int = 0

    def first(self) -> dict[str, Any] | None:
        return self.rows[0] if self.rows else None


def _install_sqlite_transactional_ddl(engine: Engine) -> None:
    """
    Let SQLAlchemy own BEGIN on SQLite so DDL participates in transactions.

    pysqlite only opens transactions implicitly before DML; without this a
    CREATE TABLE inside a transaction commits on its own. Transactions take
    the write lock at BEGIN, so a second writer waits on the busy timeout
    rather than failing to upgrade a read lock mid-transaction.
    """

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn: Connection) -> None:
        if conn.get_execution_options().get(AUTOCOMMIT_OPTION):
            return
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class _AdapterBase:
    """Statement execution and catalog predicates shared by both adapters."""

    SLOW_QUERY_THRESHOLD_MS = 1000.0

    engine: Engine

    @contextmanager
    def sa_connection(self) -> Iterator[Connection]:
        """Yield the SQLAlchemy connection statements should run on."""
        raise NotImplementedError

    @contextmanager
    def transaction(self) -> Iterator["TransactionalConnection"]:
        raise NotImplementedError

    @property
    def in_transaction(self) -> bool:
        return False

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @property
    def is_sqlite(self) -> bool:
        return self.dialect == "sqlite"

    @property
    def is_postgres(self) -> bool:
        return self.dialect.startswith("postgres")

    def quote(self, identifier: str) -> str:
        """Quote an identifier, preserving case."""
        return self.engine.dialect.identifier_preparer.quote_identifier(identifier)

    def execute(
        self,
        statement: str | ClauseElement,
        params: dict[str, Any] | list[dict[str, Any]] | None = None,
    ) -> ExecResult:
        """
        Execute a statement and return its rows and affected count.

        Args:
            statement: SQL text with :named placeholders, or a Core construct
            params: Bind parameters (a list runs executemany)

        Returns:
            ExecResult with rows as dicts

        Raises:
            DatabaseConnectionError: Transport-level failure
            SqlError: The database rejected the statement
        """
        clause = text(statement) if isinstance(statement, str) else statement
        label = statement if isinstance(statement, str) else str(statement)
        start_time = time.time()

        with self.sa_connection() as conn:
            try:
                if params is None:
                    result = conn.execute(clause)
                else:
                    result = conn.execute(clause, params)
            except DBAPIError as e:
                raise translate_error(e, label) from e

            if result.returns_rows:
                rows = [dict(row) for row in result.mappings().all()]
                affected = len(rows)
            else:
                rows = []
                affected = max(result.rowcount or 0, 0)

        execution_time = (time.time() - start_time) * 1000
        if execution_time > self.SLOW_QUERY_THRESHOLD_MS:
            logger.warning(f"Slow statement ({execution_time:.2f}ms): {label[:100]}...")
        else:
            logger.debug(f"Executed statement ({execution_time:.2f}ms): {label[:100]}")

        return ExecResult(rows=rows, affected=affected)

    exec = execute

    def fetch_one(
        self, statement: str | ClauseElement, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        return self.execute(statement, params).first()

    def fetch_all(
        self, statement: str | ClauseElement, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return self.execute(statement, params).rows

    def scalar(
        self, statement: str | ClauseElement, params: dict[str, Any] | None = None
    ) -> Any:
        row = self.fetch_one(statement, params)
        if row is None:
            return None
        return next(iter(row.values()))

    # Catalog predicates ---------------------------------------------------
    def has_table(self, name: str) -> bool:
        return introspection.has_table(self, name)

    def has_view(self, name: str) -> bool:
        return introspection.has_view(self, name)

    def has_column(self, table: str, column: str) -> bool:
        return introspection.has_column(self, table, column)

    def has_index(self, table: str, columns_or_name: str | list[str] | tuple[str, ...]) -> bool:
        return introspection.has_index(self, table, columns_or_name)

    def has_constraint(self, table: str, name: str) -> bool:
        return introspection.has_constraint(self, table, name)


class TransactionalConnection(_AdapterBase):
    """Adapter bound to one open transaction. Cannot open another."""

    def __init__(self, engine: Engine, connection: Connection) -> None:
        self.engine = engine
        self._connection = connection

    @contextmanager
    def sa_connection(self) -> Iterator[Connection]:
        yield self._connection

    @contextmanager
    def transaction(self) -> Iterator["TransactionalConnection"]:
        raise NestedTransactionError(
            "A transaction is already open on this adapter", operation="begin"
        )
        yield self  # pragma: no cover

    @property
    def in_transaction(self) -> bool:
        return True


class DatabaseConnection(_AdapterBase):
    """
    Engine-backed database adapter.

    Statements executed directly on this object run in their own autocommit
    scope. Use `transaction()` to group statements atomically.
    """

    def __init__(
        self,
        url: str | Engine,
        *,
        echo: bool = False,
        connect_timeout: int | None = None,
        statement_timeout_ms: int | None = None,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            url: SQLAlchemy URL or an existing Engine
            echo: Echo SQL through SQLAlchemy's logger
            connect_timeout: Seconds to wait when opening connections
            statement_timeout_ms: Per-statement timeout (PostgreSQL)
        """
        if isinstance(url, Engine):
            self.engine = url
        else:
            connect_args: dict[str, Any] = {}
            if url.startswith("postgres"):
                if connect_timeout:
                    connect_args["connect_timeout"] = connect_timeout
                if statement_timeout_ms:
                    connect_args["options"] = f"-c statement_timeout={statement_timeout_ms}"
            elif url.startswith("sqlite") and connect_timeout:
                connect_args["timeout"] = connect_timeout
            try:
                self.engine = create_engine(url, echo=echo, connect_args=connect_args)
            except (ArgumentError, NoSuchModuleError) as e:
                raise ConfigurationError(
                    "Invalid database URL or unsupported driver", config_key="database.url"
                ) from e

        if self.is_sqlite:
            _install_sqlite_transactional_ddl(self.engine)

        logger.debug(f"Database adapter initialized for dialect {self.dialect}")

    @classmethod
    def from_config(cls, config: Any) -> "DatabaseConnection":
        """Create an adapter from a DatabaseConfig."""
        return cls(
            config.get_connection_string(),
            echo=config.echo,
            connect_timeout=config.connect_timeout,
            statement_timeout_ms=config.statement_timeout_ms,
        )

    def _connect(self) -> Connection:
        try:
            return self.engine.connect()
        except DBAPIError as e:
            message = str(e.orig) if e.orig is not None else str(e)
            raise DatabaseConnectionError(
                f"Could not connect to database: {message}", operation="connect"
            ) from e

    @contextmanager
    def sa_connection(self) -> Iterator[Connection]:
        """Yield a connection in autocommit scope for a single unit of work."""
        conn = self._connect()
        try:
            if self.is_sqlite:
                conn.execution_options(**{AUTOCOMMIT_OPTION: True})
                with conn.begin():
                    yield conn
            else:
                conn.execution_options(isolation_level="AUTOCOMMIT")
                yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[TransactionalConnection]:
        """
        Run a block inside a single transaction.

        Commits on normal exit and rolls back on any exception, including
        KeyboardInterrupt. The yielded adapter refuses nested transactions.

        Usage:
            with db.transaction() as tx:
                tx.execute("INSERT INTO ...", params)
        """
        conn = self._connect()
        try:
            try:
                trans = conn.begin()
            except DBAPIError as e:
                raise translate_error(e, "BEGIN") from e
            logger.debug("Started new transaction")
            try:
                yield TransactionalConnection(self.engine, conn)
            except BaseException:
                try:
                    trans.rollback()
                    logger.debug("Transaction rolled back")
                except DBAPIError as rollback_error:
                    logger.error(f"Failed to rollback transaction: {rollback_error}")
                raise
            try:
                trans.commit()
            except DBAPIError as e:
                raise translate_error(e, "COMMIT") from e
            logger.debug("Transaction committed successfully")
        finally:
            conn.close()

    def dispose(self) -> None:
        """Close pooled connections."""
        self.engine.dispose()
