"""
Tests for the database adapter: autocommit scope, explicit transactions,
error translation and SQLite transactional DDL.
"""

import pytest

from eoty_db.database import introspection
from eoty_db.database.connection import DatabaseConnection
from eoty_db.exceptions import (
    ConfigurationError,
    DatabaseConnectionError,
    NestedTransactionError,
    SqlError,
)


class TestExecute:
    """Statement execution outside a transaction."""

    def test_rows_are_returned_as_dicts(self, db):
        """Selected rows come back as plain dicts."""
        db.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT)")
        db.execute("INSERT INTO items (name) VALUES (:name)", {"name": "first"})

        result = db.execute("SELECT id, name FROM items")

        assert result.rows == [{"id": 1, "name": "first"}]
        assert result.first() == {"id": 1, "name": "first"}

    def test_affected_count_for_writes(self, db):
        db.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT)")
        db.execute("INSERT INTO items (name) VALUES (:name)", [{"name": "a"}, {"name": "b"}])

        result = db.execute("UPDATE items SET name = 'c'")

        assert result.affected == 2

    def test_each_statement_commits_on_its_own(self, db, database_url):
        """A second adapter sees writes made outside a transaction."""
        db.execute("CREATE TABLE items (id INTEGER PRIMARY KEY)")
        db.execute("INSERT INTO items (id) VALUES (1)")

        other = DatabaseConnection(database_url)
        try:
            assert other.scalar("SELECT COUNT(*) FROM items") == 1
        finally:
            other.dispose()

    def test_scalar_and_fetch_helpers(self, db):
        db.execute("CREATE TABLE items (id INTEGER PRIMARY KEY)")

        assert db.scalar("SELECT COUNT(*) FROM items") == 0
        assert db.fetch_one("SELECT id FROM items") is None
        assert db.fetch_all("SELECT id FROM items") == []

    def test_vacuum_runs_outside_a_transaction(self, db):
        """Statements that refuse transactions work on the plain adapter."""
        db.execute("CREATE TABLE items (id INTEGER PRIMARY KEY)")
        db.execute("VACUUM")


class TestErrorTranslation:
    """DBAPI errors map onto the engine's taxonomy."""

    def test_bad_statement_raises_sql_error(self, db):
        with pytest.raises(SqlError) as exc_info:
            db.execute("SELECT * FROM missing_table")

        assert "missing_table" in exc_info.value.statement
        assert exc_info.value.retryable is False

    def test_integrity_violation_is_retryable(self, db):
        db.execute("CREATE TABLE items (id INTEGER PRIMARY KEY)")
        db.execute("INSERT INTO items (id) VALUES (1)")

        with pytest.raises(SqlError) as exc_info:
            db.execute("INSERT INTO items (id) VALUES (1)")

        assert exc_info.value.retryable is True

    def test_vacuum_inside_transaction_is_refused(self, db):
        with pytest.raises(SqlError) as exc_info:
            with db.transaction() as tx:
                tx.execute("VACUUM")

        assert exc_info.value.transaction_refused is True

    def test_unreachable_database_raises_connection_error(self, tmp_path):
        missing = DatabaseConnection(f"sqlite:///{tmp_path / 'no' / 'such' / 'dir.db'}")
        try:
            with pytest.raises(DatabaseConnectionError):
                missing.execute("SELECT 1")
        finally:
            missing.dispose()

    def test_invalid_url_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            DatabaseConnection("not a url")


class TestTransactions:
    """Explicit transactions and SQLite transactional DDL."""

    def test_commit_on_normal_exit(self, db):
        with db.transaction() as tx:
            tx.execute("CREATE TABLE items (id INTEGER PRIMARY KEY)")
            tx.execute("INSERT INTO items (id) VALUES (1)")

        assert db.scalar("SELECT COUNT(*) FROM items") == 1

    def test_rollback_undoes_ddl(self, db):
        """CREATE TABLE inside a failed transaction leaves no table behind."""
        with pytest.raises(RuntimeError):
            with db.transaction() as tx:
                tx.execute("CREATE TABLE items (id INTEGER PRIMARY KEY)")
                assert introspection.has_table(tx, "items")
                raise RuntimeError("boom")

        assert not introspection.has_table(db, "items")

    def test_rollback_on_keyboard_interrupt(self, db):
        db.execute("CREATE TABLE items (id INTEGER PRIMARY KEY)")

        with pytest.raises(KeyboardInterrupt):
            with db.transaction() as tx:
                tx.execute("INSERT INTO items (id) VALUES (1)")
                raise KeyboardInterrupt

        assert db.scalar("SELECT COUNT(*) FROM items") == 0

    def test_nested_transaction_is_rejected(self, db):
        with db.transaction() as tx:
            assert tx.in_transaction
            with pytest.raises(NestedTransactionError):
                with tx.transaction():
                    pass

    def test_busy_begin_is_a_retryable_sql_error(self, db, database_url):
        """A second writer that cannot take the write lock gets a retryable error."""
        other = DatabaseConnection(database_url, connect_timeout=1)
        try:
            with db.transaction():
                with pytest.raises(SqlError) as exc_info:
                    with other.transaction():
                        pass
        finally:
            other.dispose()

        assert exc_info.value.retryable
        assert exc_info.value.statement == "BEGIN"

    def test_uncommitted_writes_are_invisible_to_other_connections(self, db, database_url):
        db.execute("CREATE TABLE items (id INTEGER PRIMARY KEY)")
        other = DatabaseConnection(database_url)
        try:
            with db.transaction() as tx:
                tx.execute("INSERT INTO items (id) VALUES (1)")
                assert tx.scalar("SELECT COUNT(*) FROM items") == 1
                assert other.scalar("SELECT COUNT(*) FROM items") == 0
        finally:
            other.dispose()


class TestDialectHelpers:
    def test_sqlite_flags(self, db):
        assert db.dialect == "sqlite"
        assert db.is_sqlite
        assert not db.is_postgres
        assert not db.in_transaction

    def test_quote_preserves_case(self, db):
        assert db.quote("userId") == '"userId"'
        assert db.quote("order") == '"order"'
