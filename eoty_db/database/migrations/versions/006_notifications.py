"""
Migration 006: Notifications
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, false, func

from eoty_db.database.migrations.base import Migration, TransactionalMode
from eoty_db.database.schema_ops import create_table_if_not_exists, drop_table_if_exists, id_column


class Notifications(Migration):
    description = "Create user_notifications and push_subscriptions"
    transactional_mode = TransactionalMode.WRAP

    def apply(self, db):
        create_table_if_not_exists(
            db,
            "user_notifications",
            id_column(),
            Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            Column("type", String(50), nullable=False),
            Column("title", String(255), nullable=False),
            Column("message", Text),
            Column("data", JSON),
            Column("is_read", Boolean, nullable=False, server_default=false()),
            Column("read_at", DateTime(timezone=True)),
            Column("created_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
            Index("ix_user_notifications_user_read", "user_id", "is_read"),
        )

        create_table_if_not_exists(
            db,
            "push_subscriptions",
            id_column(),
            Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            Column("endpoint", String(1000), nullable=False, unique=True),
            Column("keys", JSON),
            Column("created_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
        )

    def revert(self, db):
        drop_table_if_exists(db, "push_subscriptions")
        drop_table_if_exists(db, "user_notifications")
