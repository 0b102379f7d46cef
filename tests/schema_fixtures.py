"""Migration unit sources and helpers shared by the test modules."""

import textwrap
from pathlib import Path

# Three-unit registry: users, sessions referencing users, users.email_verified.
CREATE_USERS = '''
from sqlalchemy import Column, Integer, String

from eoty_db.database.migrations.base import Migration
from eoty_db.database.schema_ops import create_table_if_not_exists, drop_table_if_exists


class CreateUsers(Migration):
    description = "Create users"

    def apply(self, db):
        create_table_if_not_exists(
            db,
            "users",
            Column("id", Integer, primary_key=True),
            Column("email", String(255), nullable=False),
        )

    def revert(self, db):
        drop_table_if_exists(db, "users")
'''

CREATE_SESSIONS = '''
import os

from sqlalchemy import Column, ForeignKey, Integer, String

from eoty_db.database.migrations.base import Migration, TransactionalMode
from eoty_db.database.schema_ops import create_table_if_not_exists, drop_table_if_exists


class CreateSessions(Migration):
    description = "Create sessions"
    transactional_mode = TransactionalMode.NONE

    def apply(self, db):
        create_table_if_not_exists(
            db,
            "sessions",
            Column("id", Integer, primary_key=True),
            Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
            Column("token", String(255)),
        )
        if os.environ.get("EOTY_TEST_INTERRUPT_SESSIONS"):
            raise RuntimeError("interrupted after creating sessions")

    def revert(self, db):
        drop_table_if_exists(db, "sessions")
'''

ADD_EMAIL_VERIFIED = '''
from sqlalchemy import Boolean, Column, false

from eoty_db.database.migrations.base import Migration
from eoty_db.database.schema_ops import add_column_if_not_exists, drop_column_if_exists


class AddEmailVerified(Migration):
    description = "Add users.email_verified"

    def apply(self, db):
        add_column_if_not_exists(
            db, "users", Column("email_verified", Boolean, nullable=False, server_default=false())
        )

    def revert(self, db):
        drop_column_if_exists(db, "users", "email_verified")
'''

SCENARIO_UNITS = {
    "001_create_users.py": CREATE_USERS,
    "002_create_sessions.py": CREATE_SESSIONS,
    "003_add_email_verified.py": ADD_EMAIL_VERIFIED,
}

M1, M2, M3 = (name[:-3] for name in SCENARIO_UNITS)


def write_unit(directory: Path, filename: str, source: str) -> Path:
    """Write a unit file, creating the directory as needed."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / filename
    path.write_text(textwrap.dedent(source).lstrip(), encoding="utf-8")
    return path
