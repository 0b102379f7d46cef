"""
Repair 002: Reconcile User Id Types

Finds integer columns that hold user ids in base tables and converts
them to TEXT. Covers tables created outside the migration units (by hand
or by old application code) after 20251120000000 converted users.id.
"""

import logging

from sqlalchemy import Text

from eoty_db.database import introspection
from eoty_db.database.migrations.base import Migration
from eoty_db.database.schema_ops import reconcile_column_type

logger = logging.getLogger(__name__)

USER_ID_COLUMNS = {
    "user_id",
    "created_by",
    "uploaded_by",
    "uploader_id",
    "author_id",
    "reviewed_by",
    "moderator_id",
    "updated_by",
    "acknowledged_by",
    "resolved_by",
    "assigned_by",
}

EXCLUDED_TABLES = {"schema_migrations", "schema_migrations_history", "schema_migrations_lock"}


def integer_user_columns(db) -> list[tuple[str, str]]:
    """(table, column) pairs still storing user ids as integers."""
    found = []
    for table in sorted(introspection.list_tables(db)):
        if table in EXCLUDED_TABLES:
            continue
        for column in introspection.list_columns(db, table):
            if column["name"] in USER_ID_COLUMNS and introspection.is_integer_type(column["type"]):
                found.append((table, column["name"]))
    return found


class ReconcileUserIdTypes(Migration):
    description = "Convert leftover integer user id columns to TEXT"

    def apply(self, db):
        pending = integer_user_columns(db)
        for table, column in pending:
            reconcile_column_type(db, table, column, Text())
        logger.info(f"Reconciled {len(pending)} user id columns")
