"""
Migration 20251125000000: Auth Compatibility Views

The auth library reads and writes sessions through a `session` relation
with camelCase columns, while existing code uses `user_sessions`. The
physical table moves to `session_store` and both names become views over
it. INSTEAD OF triggers route writes on either view to the table.

After this unit `user_sessions` is a view, not a table; units that check
for it must not try to create or alter it as one.
"""

import logging

from eoty_db.database import introspection
from eoty_db.database.migrations.base import Migration, TransactionalMode
from eoty_db.database.schema_ops import (
    create_view_if_not_exists,
    drop_view_if_exists,
    rename_table_if_exists,
)
from eoty_db.exceptions import MigrationError

logger = logging.getLogger(__name__)

STORE_TABLE = "session_store"

# store column -> column name exposed by each view
VIEW_COLUMNS = {
    "user_sessions": {
        "id": "id",
        "user_id": "user_id",
        "token": "token",
        "expires_at": "expires_at",
        "ip_address": "ip_address",
        "user_agent": "user_agent",
        "created_at": "created_at",
        "updated_at": "updated_at",
    },
    "session": {
        "id": "id",
        "user_id": "userId",
        "token": "token",
        "expires_at": "expiresAt",
        "ip_address": "ipAddress",
        "user_agent": "userAgent",
        "created_at": "createdAt",
        "updated_at": "updatedAt",
    },
}

OPERATIONS = ("insert", "update", "delete")


def view_select(db, view: str) -> str:
    q = db.quote
    columns = ", ".join(
        f"{q(store)} AS {q(alias)}" for store, alias in VIEW_COLUMNS[view].items()
    )
    return f"SELECT {columns} FROM {q(STORE_TABLE)}"


def _insert_sql(db, view: str) -> str:
    q = db.quote
    mapping = VIEW_COLUMNS[view]
    values = []
    for store, alias in mapping.items():
        if store in ("created_at", "updated_at"):
            values.append(f"COALESCE(NEW.{q(alias)}, CURRENT_TIMESTAMP)")
        else:
            values.append(f"NEW.{q(alias)}")
    return (
        f"INSERT INTO {q(STORE_TABLE)} ({', '.join(q(c) for c in mapping)}) "
        f"VALUES ({', '.join(values)})"
    )


def _update_sql(db, view: str) -> str:
    q = db.quote
    assignments = ", ".join(
        f"{q(store)} = NEW.{q(alias)}" for store, alias in VIEW_COLUMNS[view].items()
    )
    return f"UPDATE {q(STORE_TABLE)} SET {assignments} WHERE {q('id')} = OLD.{q('id')}"


def _delete_sql(db) -> str:
    q = db.quote
    return f"DELETE FROM {q(STORE_TABLE)} WHERE {q('id')} = OLD.{q('id')}"


def sqlite_trigger_name(view: str, operation: str) -> str:
    return f"{view}_{operation}"


def postgres_trigger_name(view: str) -> str:
    return f"{view}_view_write"


class AuthCompatViews(Migration):
    description = "Move sessions to session_store behind writable compatibility views"
    transactional_mode = TransactionalMode.WRAP

    def apply(self, db):
        rename_table_if_exists(db, "user_sessions", STORE_TABLE)
        if not introspection.has_table(db, STORE_TABLE):
            raise MigrationError(
                f"Neither user_sessions nor {STORE_TABLE} exists as a table",
                migration_id=self.id,
            )

        for view in VIEW_COLUMNS:
            create_view_if_not_exists(db, view, view_select(db, view))
            if db.is_postgres:
                self._create_postgres_trigger(db, view)
            else:
                self._create_sqlite_triggers(db, view)

    def _create_sqlite_triggers(self, db, view):
        statements = {
            "insert": _insert_sql(db, view),
            "update": _update_sql(db, view),
            "delete": _delete_sql(db),
        }
        for operation in OPERATIONS:
            name = sqlite_trigger_name(view, operation)
            if introspection.has_trigger(db, name):
                logger.debug(f"Trigger {name} already exists")
                continue
            db.execute(
                f"CREATE TRIGGER {db.quote(name)} INSTEAD OF {operation.upper()} "
                f"ON {db.quote(view)} FOR EACH ROW BEGIN {statements[operation]}; END"
            )
            logger.info(f"Created trigger: {name}")

    def _create_postgres_trigger(self, db, view):
        name = postgres_trigger_name(view)
        if introspection.has_trigger(db, name):
            logger.debug(f"Trigger {name} already exists")
            return

        db.execute(
            f"CREATE OR REPLACE FUNCTION {name}() RETURNS trigger AS $$\n"
            "BEGIN\n"
            "  IF TG_OP = 'INSERT' THEN\n"
            f"    {_insert_sql(db, view)};\n"
            "    RETURN NEW;\n"
            "  ELSIF TG_OP = 'UPDATE' THEN\n"
            f"    {_update_sql(db, view)};\n"
            "    RETURN NEW;\n"
            "  END IF;\n"
            f"  {_delete_sql(db)};\n"
            "  RETURN OLD;\n"
            "END;\n"
            "$$ LANGUAGE plpgsql"
        )
        db.execute(
            f"CREATE TRIGGER {name} INSTEAD OF INSERT OR UPDATE OR DELETE "
            f"ON {db.quote(view)} FOR EACH ROW EXECUTE FUNCTION {name}()"
        )
        logger.info(f"Created trigger: {name}")

    def revert(self, db):
        for view in VIEW_COLUMNS:
            if db.is_postgres:
                name = postgres_trigger_name(view)
                if introspection.has_trigger(db, name):
                    db.execute(f"DROP TRIGGER {name} ON {db.quote(view)}")
                db.execute(f"DROP FUNCTION IF EXISTS {name}()")
            else:
                for operation in OPERATIONS:
                    name = sqlite_trigger_name(view, operation)
                    if introspection.has_trigger(db, name):
                        db.execute(f"DROP TRIGGER {db.quote(name)}")
            drop_view_if_exists(db, view)

        rename_table_if_exists(db, STORE_TABLE, "user_sessions")
