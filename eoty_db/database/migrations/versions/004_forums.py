"""
Migration 004: Forums

Chapter discussion boards: forums, topics, posts and likes.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, false, func

from eoty_db.database.migrations.base import Migration, TransactionalMode
from eoty_db.database.schema_ops import (
    create_table_if_not_exists,
    drop_table_if_exists,
    id_column,
    timestamps,
)


class Forums(Migration):
    description = "Create forums, forum_topics, forum_posts and post_likes"
    transactional_mode = TransactionalMode.WRAP

    def apply(self, db):
        create_table_if_not_exists(
            db,
            "forums",
            id_column(),
            Column("chapter_id", Integer, ForeignKey("chapters.id", ondelete="CASCADE")),
            Column("name", String(255), nullable=False),
            Column("description", Text),
            Column("created_by", Integer, ForeignKey("users.id", ondelete="SET NULL")),
            *timestamps(),
        )

        # last_post_id gets its foreign key in 015, once forum_posts exists.
        create_table_if_not_exists(
            db,
            "forum_topics",
            id_column(),
            Column("forum_id", Integer, ForeignKey("forums.id", ondelete="CASCADE"), nullable=False),
            Column("author_id", Integer, ForeignKey("users.id", ondelete="SET NULL")),
            Column("title", String(255), nullable=False),
            Column("is_pinned", Boolean, nullable=False, server_default=false()),
            Column("is_locked", Boolean, nullable=False, server_default=false()),
            Column("last_post_id", Integer),
            Column("last_activity_at", DateTime(timezone=True)),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "forum_posts",
            id_column(),
            Column("topic_id", Integer, ForeignKey("forum_topics.id", ondelete="CASCADE"), nullable=False),
            Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            Column("content", Text, nullable=False),
            Column("like_count", Integer, nullable=False, server_default="0"),
            Column("is_flagged", Boolean, nullable=False, server_default=false()),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "post_likes",
            id_column(),
            Column("post_id", Integer, ForeignKey("forum_posts.id", ondelete="CASCADE"), nullable=False),
            Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            Column("created_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
            UniqueConstraint("post_id", "user_id", name="uq_post_likes_post_user"),
        )

    def revert(self, db):
        for table in ("post_likes", "forum_posts", "forum_topics", "forums"):
            drop_table_if_exists(db, table)
