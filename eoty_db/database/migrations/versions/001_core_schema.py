"""
Migration 001: Core Schema

Creates the tables every other unit builds on:
- chapters: local EOTY chapters
- users: accounts (integer ids until 20251120000000 converts them)
- roles, user_permissions, role_permissions: RBAC catalog
- user_sessions: login sessions
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, false, func, true

from eoty_db.database.migrations.base import Migration, TransactionalMode
from eoty_db.database.schema_ops import (
    create_table_if_not_exists,
    drop_table_if_exists,
    id_column,
    timestamps,
)


class CoreSchema(Migration):
    description = "Create chapters, users, RBAC and session tables"
    transactional_mode = TransactionalMode.WRAP

    def apply(self, db):
        create_table_if_not_exists(
            db,
            "chapters",
            id_column(),
            Column("name", String(255), nullable=False),
            Column("location", String(255)),
            Column("description", Text),
            Column("is_active", Boolean, nullable=False, server_default=true()),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "users",
            id_column(),
            Column("email", String(255), nullable=False, unique=True),
            Column("password_hash", String(255)),
            Column("name", String(255)),
            Column("first_name", String(100)),
            Column("last_name", String(100)),
            Column("role", String(50), nullable=False, server_default="student"),
            Column("chapter_id", Integer, ForeignKey("chapters.id", ondelete="SET NULL")),
            Column("is_active", Boolean, nullable=False, server_default=true()),
            Column("email_verified", Boolean, nullable=False, server_default=false()),
            Column("profile_picture", String(500)),
            Column("last_login", DateTime(timezone=True)),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "roles",
            id_column(),
            Column("name", String(50), nullable=False, unique=True),
            Column("description", Text),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "user_permissions",
            id_column(),
            Column("permission_key", String(100), nullable=False, unique=True),
            Column("description", Text),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "role_permissions",
            id_column(),
            Column("role", String(50), nullable=False),
            Column(
                "permission_id",
                Integer,
                ForeignKey("user_permissions.id", ondelete="CASCADE"),
                nullable=False,
            ),
            Column("created_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
        )

        create_table_if_not_exists(
            db,
            "user_sessions",
            Column("id", String(255), primary_key=True),
            Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            Column("token", String(512), nullable=False, unique=True),
            Column("expires_at", DateTime(timezone=True), nullable=False),
            Column("ip_address", String(64)),
            Column("user_agent", Text),
            *timestamps(),
        )

    def revert(self, db):
        for table in (
            "user_sessions",
            "role_permissions",
            "user_permissions",
            "roles",
            "users",
            "chapters",
        ):
            drop_table_if_exists(db, table)
