"""
Migration 20251115000002: Social Features

- private forum topics restricted to one chapter
- anonymous leaderboard entries and users
- auto-archiving of inactive forums and chapters
- a forum search index (with a tsvector column on PostgreSQL)
- queues for asynchronous badge and leaderboard updates

Only the three new tables are dropped on revert; added columns stay.
"""

import logging

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    false,
    func,
)

from eoty_db.database import introspection
from eoty_db.database.migrations.base import Migration, TransactionalMode
from eoty_db.database.schema_ops import (
    add_column_if_not_exists,
    create_index_if_not_exists,
    create_table_if_not_exists,
    drop_table_if_exists,
    id_column,
    timestamps,
)

logger = logging.getLogger(__name__)

TABLES = (
    "leaderboard_update_queue",
    "badge_update_queue",
    "forum_search_index",
)


def _queue_columns() -> list[Column]:
    return [
        Column("update_type", String(50), nullable=False),
        Column("metadata", JSON),
        Column("processed", Boolean, server_default=false()),
        Column("processed_at", DateTime(timezone=True)),
        Column("created_at", DateTime(timezone=True), server_default=func.now()),
    ]


class EnhanceSocialFeatures(Migration):
    description = "Add private topics, anonymous leaderboards, auto-archiving, forum search and update queues"
    transactional_mode = TransactionalMode.WRAP

    def apply(self, db):
        add_column_if_not_exists(db, "forum_topics", Column("is_private", Boolean, server_default=false()))
        add_column_if_not_exists(
            db,
            "forum_topics",
            Column("allowed_chapter_id", Integer, ForeignKey("chapters.id", ondelete="SET NULL")),
        )

        self._leaderboard(db)

        for table, days in (("forums", "90"), ("chapters", "180")):
            add_column_if_not_exists(db, table, Column("auto_archive_at", DateTime(timezone=True)))
            add_column_if_not_exists(db, table, Column("inactivity_days", Integer, server_default=days))

        created = create_table_if_not_exists(
            db,
            "forum_search_index",
            id_column(),
            Column("post_id", Integer, ForeignKey("forum_posts.id", ondelete="CASCADE")),
            Column("topic_id", Integer, ForeignKey("forum_topics.id", ondelete="CASCADE")),
            Column("searchable_content", Text),
            Column("keywords", Text),
            Column("indexed_at", DateTime(timezone=True), server_default=func.now()),
            *timestamps(),
            Index("ix_forum_search_index_topic_id", "topic_id"),
            Index("ix_forum_search_index_post_id", "post_id"),
        )
        if created and db.is_postgres:
            db.execute("ALTER TABLE forum_search_index ADD COLUMN IF NOT EXISTS search_vector tsvector")

        create_table_if_not_exists(
            db,
            "badge_update_queue",
            id_column(),
            Column("user_id", Integer),
            Column("badge_id", Integer, ForeignKey("badges.id", ondelete="CASCADE")),
            *_queue_columns(),
            Index("ix_badge_update_queue_processed_created", "processed", "created_at"),
            Index("ix_badge_update_queue_user_id", "user_id"),
        )

        create_table_if_not_exists(
            db,
            "leaderboard_update_queue",
            id_column(),
            Column("user_id", Integer),
            Column("chapter_id", Integer, ForeignKey("chapters.id", ondelete="CASCADE")),
            Column("points_delta", Integer, server_default="0"),
            *_queue_columns(),
            Index("ix_leaderboard_update_queue_processed_created", "processed", "created_at"),
            Index("ix_leaderboard_update_queue_user_chapter", "user_id", "chapter_id"),
        )

        add_column_if_not_exists(db, "users", Column("is_anonymous", Boolean, server_default=false()))

    def _leaderboard(self, db):
        if introspection.has_table(db, "leaderboard_entries"):
            add_column_if_not_exists(
                db, "leaderboard_entries", Column("is_anonymous", Boolean, server_default=false())
            )
            return

        logger.info("leaderboard_entries is missing; creating it with the anonymous flag")
        create_table_if_not_exists(
            db,
            "leaderboard_entries",
            id_column(),
            Column("user_id", Integer, nullable=False),
            Column("chapter_id", Integer, ForeignKey("chapters.id", ondelete="CASCADE")),
            Column("leaderboard_type", String(50), server_default="chapter"),
            Column("points", Integer, server_default="0"),
            Column("rank", Integer, server_default="0"),
            Column("is_anonymous", Boolean, server_default=false()),
            Column("period_date", DateTime(timezone=True)),
            *timestamps(),
        )
        create_index_if_not_exists(
            db,
            "ix_leaderboard_entries_chapter_type_rank",
            "leaderboard_entries",
            ["chapter_id", "leaderboard_type", "rank"],
        )
        create_index_if_not_exists(
            db, "ix_leaderboard_entries_user_type", "leaderboard_entries", ["user_id", "leaderboard_type"]
        )

    def revert(self, db):
        for table in TABLES:
            drop_table_if_exists(db, table)
