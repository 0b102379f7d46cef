"""
PostgreSQL-only paths: constraint helpers, ALTER COLUMN ... USING and
transactional DDL. Set EOTY_TEST_POSTGRES_URL to a disposable database to run.
"""

import os

import pytest
from sqlalchemy import Column, Integer, Text

from eoty_db.database import introspection
from eoty_db.database.connection import DatabaseConnection
from eoty_db.database.schema_ops import (
    add_check_constraint_if_missing,
    add_foreign_key_if_missing,
    create_table_if_not_exists,
    drop_constraint_if_exists,
    drop_table_if_exists,
    id_column,
    reconcile_column_type,
)

POSTGRES_URL = os.environ.get("EOTY_TEST_POSTGRES_URL")

pytestmark = pytest.mark.skipif(not POSTGRES_URL, reason="EOTY_TEST_POSTGRES_URL not set")

TABLES = ("pg_test_posts", "pg_test_users")


@pytest.fixture
def pg():
    conn = DatabaseConnection(POSTGRES_URL)
    for table in TABLES:
        drop_table_if_exists(conn, table, cascade=True)
    yield conn
    for table in TABLES:
        drop_table_if_exists(conn, table, cascade=True)
    conn.dispose()


@pytest.fixture
def users_and_posts(pg):
    create_table_if_not_exists(pg, "pg_test_users", id_column(), Column("email", Text))
    create_table_if_not_exists(
        pg, "pg_test_posts", id_column(), Column("user_id", Integer), Column("score", Integer)
    )
    return pg


class TestConstraints:
    def test_foreign_key_is_idempotent(self, users_and_posts):
        pg = users_and_posts

        assert add_foreign_key_if_missing(
            pg, "pg_test_posts", "fk_pg_test_posts_user", "user_id", "pg_test_users",
            ondelete="CASCADE",
        )
        assert not add_foreign_key_if_missing(
            pg, "pg_test_posts", "fk_pg_test_posts_user", "user_id", "pg_test_users"
        )
        assert introspection.has_constraint(pg, "pg_test_posts", "fk_pg_test_posts_user")

        assert drop_constraint_if_exists(pg, "pg_test_posts", "fk_pg_test_posts_user")
        assert not drop_constraint_if_exists(pg, "pg_test_posts", "fk_pg_test_posts_user")

    def test_check_constraint(self, users_and_posts):
        pg = users_and_posts

        assert add_check_constraint_if_missing(pg, "pg_test_posts", "ck_pg_test_score", "score >= 0")
        assert not add_check_constraint_if_missing(
            pg, "pg_test_posts", "ck_pg_test_score", "score >= 0"
        )


class TestColumnTypes:
    def test_integer_to_text_with_using(self, users_and_posts):
        pg = users_and_posts
        pg.execute("INSERT INTO pg_test_posts (user_id, score) VALUES (7, 1)")

        assert reconcile_column_type(
            pg, "pg_test_posts", "user_id", Text(), using="user_id::text"
        )
        assert not reconcile_column_type(pg, "pg_test_posts", "user_id", Text())

        assert pg.scalar("SELECT user_id FROM pg_test_posts") == "7"


class TestTransactionalDdl:
    def test_rollback_undoes_create_table(self, pg):
        with pytest.raises(RuntimeError):
            with pg.transaction() as tx:
                create_table_if_not_exists(tx, "pg_test_users", id_column())
                raise RuntimeError("abort")

        assert not introspection.has_table(pg, "pg_test_users")
