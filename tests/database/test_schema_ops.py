"""
Tests for guarded schema operations and the data helpers used by seeds.
"""

import pytest
from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text

from eoty_db.database import introspection
from eoty_db.database.schema_ops import (
    add_check_constraint_if_missing,
    add_column_if_not_exists,
    add_foreign_key_if_missing,
    create_index_if_not_exists,
    create_table_if_not_exists,
    create_view_if_not_exists,
    drop_column_if_exists,
    drop_constraint_if_exists,
    drop_index_if_exists,
    drop_table_if_exists,
    drop_view_if_exists,
    id_column,
    insert_if_missing,
    lookup_id,
    reconcile_column_type,
    rename_table_if_exists,
    timestamps,
    upsert,
)


def create_users(db):
    return create_table_if_not_exists(
        db,
        "users",
        id_column(),
        Column("email", String(255), nullable=False, unique=True),
        Column("name", Text),
        *timestamps(),
    )


class TestTables:
    """Guarded table creation, rename and drop."""

    def test_create_is_idempotent(self, db):
        assert create_users(db) is True
        assert create_users(db) is False
        assert introspection.has_table(db, "users")
        assert introspection.has_column(db, "users", "created_at")

    def test_create_inside_transaction(self, db):
        with db.transaction() as tx:
            assert create_users(tx) is True

        assert introspection.has_table(db, "users")

    def test_foreign_keys_resolve_against_live_tables(self, db):
        """A table may reference one created by an earlier unit."""
        create_users(db)

        create_table_if_not_exists(
            db,
            "posts",
            id_column(),
            Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE")),
            Column("title", Text),
            Index("idx_posts_user", "user_id"),
        )

        assert introspection.has_index(db, "posts", "idx_posts_user")
        referencing = introspection.foreign_keys_referencing(db, "users")
        assert [table for table, _ in referencing] == ["posts"]

    def test_view_blocks_table_of_same_name(self, db):
        create_users(db)
        db.execute("CREATE VIEW people AS SELECT id, email FROM users")

        assert create_table_if_not_exists(db, "people", id_column()) is False
        assert not introspection.has_table(db, "people")

    def test_drop_is_idempotent(self, db):
        create_users(db)

        assert drop_table_if_exists(db, "users") is True
        assert drop_table_if_exists(db, "users") is False

    def test_rename(self, db):
        create_users(db)

        assert rename_table_if_exists(db, "users", "accounts") is True
        assert rename_table_if_exists(db, "users", "accounts") is False
        assert introspection.has_table(db, "accounts")

    def test_rename_refuses_to_overwrite(self, db):
        create_users(db)
        create_table_if_not_exists(db, "accounts", id_column())

        assert rename_table_if_exists(db, "users", "accounts") is False
        assert introspection.has_table(db, "users")


class TestColumns:
    def test_add_and_drop_column(self, db):
        create_users(db)

        assert add_column_if_not_exists(db, "users", Column("bio", Text)) is True
        assert add_column_if_not_exists(db, "users", Column("bio", Text)) is False
        assert drop_column_if_exists(db, "users", "bio") is True
        assert drop_column_if_exists(db, "users", "bio") is False

    def test_add_column_with_reference(self, db):
        create_users(db)
        create_table_if_not_exists(db, "posts", id_column())

        add_column_if_not_exists(
            db, "posts", Column("user_id", Integer, ForeignKey("users.id", ondelete="SET NULL"))
        )

        fks = [fk for _, fk in introspection.foreign_keys_referencing(db, "users")]
        assert fks[0]["constrained_columns"] == ["user_id"]


class TestIndexesAndViews:
    def test_index_is_idempotent(self, db):
        create_users(db)

        assert create_index_if_not_exists(db, "idx_users_name", "users", ["name"]) is True
        assert create_index_if_not_exists(db, "idx_users_name", "users", ["name"]) is False
        assert drop_index_if_exists(db, "idx_users_name", "users") is True
        assert drop_index_if_exists(db, "idx_users_name", "users") is False

    def test_partial_index(self, db):
        create_users(db)

        create_index_if_not_exists(
            db, "idx_users_named", "users", ["name"], where="name IS NOT NULL"
        )

        assert introspection.has_index(db, "users", "idx_users_named")

    def test_index_on_missing_table_is_skipped(self, db):
        assert create_index_if_not_exists(db, "idx_missing", "missing", ["id"]) is False

    def test_view_is_idempotent(self, db):
        create_users(db)

        assert create_view_if_not_exists(db, "user_emails", "SELECT id, email FROM users") is True
        assert create_view_if_not_exists(db, "user_emails", "SELECT id FROM users") is False
        assert drop_view_if_exists(db, "user_emails") is True
        assert drop_view_if_exists(db, "user_emails") is False


class TestConstraintsOnSqlite:
    """SQLite cannot alter constraints; the helpers report no change."""

    def test_constraint_helpers_are_noops(self, db):
        create_users(db)
        create_table_if_not_exists(db, "posts", id_column(), Column("user_id", Integer))

        assert add_foreign_key_if_missing(db, "posts", "fk_posts_user", "user_id", "users") is False
        assert add_check_constraint_if_missing(db, "posts", "ck_posts_user", "user_id > 0") is False
        assert drop_constraint_if_exists(db, "posts", "fk_posts_user") is False


class TestReconcileColumnType:
    def test_integer_to_text_keeps_rows_and_indexes(self, db):
        create_table_if_not_exists(
            db,
            "items",
            id_column(),
            Column("owner_id", Integer),
            Index("idx_items_owner", "owner_id"),
        )
        db.execute("INSERT INTO items (owner_id) VALUES (7), (8)")

        assert reconcile_column_type(db, "items", "owner_id", Text()) is True

        assert introspection.is_text_type(introspection.column_type(db, "items", "owner_id"))
        assert db.fetch_all("SELECT owner_id FROM items ORDER BY id") == [
            {"owner_id": "7"},
            {"owner_id": "8"},
        ]
        assert introspection.has_index(db, "items", "idx_items_owner")
        assert not introspection.has_table(db, "_items_rebuild")

    def test_rebuild_keeps_partial_indexes_and_triggers(self, db):
        """Index and trigger DDL survives the SQLite table rebuild verbatim."""
        create_table_if_not_exists(db, "items", id_column(), Column("owner_id", Integer))
        create_index_if_not_exists(
            db, "idx_items_owned", "items", ["owner_id"], where="owner_id IS NOT NULL"
        )
        db.execute(
            "CREATE TRIGGER trg_items_touch AFTER INSERT ON items "
            "BEGIN UPDATE items SET owner_id = owner_id WHERE id = NEW.id; END"
        )

        reconcile_column_type(db, "items", "owner_id", Text())

        index_sql = db.scalar("SELECT sql FROM sqlite_master WHERE name = 'idx_items_owned'")
        assert "WHERE owner_id IS NOT NULL" in index_sql
        assert introspection.has_trigger(db, "trg_items_touch")

    def test_same_family_is_left_alone(self, db):
        create_users(db)

        assert reconcile_column_type(db, "users", "email", Text()) is False
        assert introspection.column_type_name(db, "users", "email") == "VARCHAR"

    def test_missing_column(self, db):
        create_users(db)

        assert reconcile_column_type(db, "users", "missing", Text()) is False


class TestDataHelpers:
    @pytest.fixture
    def roles(self, db):
        create_table_if_not_exists(
            db,
            "roles",
            id_column(),
            Column("name", String(50), nullable=False, unique=True),
            Column("description", Text),
        )
        return db

    def test_upsert_reports_what_happened(self, roles):
        assert upsert(roles, "roles", {"name": "teacher"}, {"description": "Teaches"}) == "inserted"
        assert upsert(roles, "roles", {"name": "teacher"}, {"description": "Teaches"}) == "unchanged"
        assert upsert(roles, "roles", {"name": "teacher"}, {"description": "Leads"}) == "updated"

        assert roles.fetch_all("SELECT name, description FROM roles") == [
            {"name": "teacher", "description": "Leads"}
        ]

    def test_upsert_matches_null_keys(self, roles):
        roles.execute("ALTER TABLE roles ADD COLUMN scope TEXT")

        upsert(roles, "roles", {"name": "guest", "scope": None}, {"description": "Visitor"})
        result = upsert(roles, "roles", {"name": "guest", "scope": None}, {"description": "Visitor"})

        assert result == "unchanged"

    def test_insert_if_missing_never_updates(self, roles):
        assert insert_if_missing(roles, "roles", {"name": "admin"}, {"description": "All"}) is True
        assert insert_if_missing(roles, "roles", {"name": "admin"}, {"description": "Other"}) is False

        assert roles.scalar("SELECT description FROM roles WHERE name = 'admin'") == "All"

    def test_lookup_id_by_natural_key(self, roles):
        insert_if_missing(roles, "roles", {"name": "student"})
        insert_if_missing(roles, "roles", {"name": "teacher"})

        assert lookup_id(roles, "roles", "name", "teacher") == 2
        assert lookup_id(roles, "roles", "name", "missing") is None
