"""
Repair 001: Add Missing User Columns

Deployments created before 001_core_schema existed built `users` by hand
and lack some of its columns. Run once on such a database, then mark
001_core_schema applied with a repair plan.
"""

import logging

from sqlalchemy import Boolean, Column, DateTime, Integer, String, false, true

from eoty_db.database.migrations.base import Migration
from eoty_db.database.schema_ops import add_column_if_not_exists

logger = logging.getLogger(__name__)


def user_columns() -> list[Column]:
    return [
        Column("name", String(255)),
        Column("first_name", String(100)),
        Column("last_name", String(100)),
        Column("role", String(50), nullable=False, server_default="student"),
        Column("chapter_id", Integer),
        Column("is_active", Boolean, nullable=False, server_default=true()),
        Column("email_verified", Boolean, nullable=False, server_default=false()),
        Column("profile_picture", String(500)),
        Column("last_login", DateTime(timezone=True)),
    ]


class AddMissingUserColumns(Migration):
    description = "Add core users columns missing from hand-built tables"

    def apply(self, db):
        added = [
            column.name
            for column in user_columns()
            if add_column_if_not_exists(db, "users", column)
        ]
        if added:
            logger.info(f"Added users columns: {', '.join(added)}")
        else:
            logger.info("users already has every core column")
