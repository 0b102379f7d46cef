"""
Migration 005: Gamification

Badges, achievements, engagement points and leaderboards.
"""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func

from eoty_db.database.migrations.base import Migration, TransactionalMode
from eoty_db.database.schema_ops import (
    create_table_if_not_exists,
    drop_table_if_exists,
    id_column,
    timestamps,
)

TABLES = (
    "leaderboard_entries",
    "user_engagement",
    "user_achievements",
    "achievements",
    "user_badges",
    "badges",
)


class Gamification(Migration):
    description = "Create badge, achievement, engagement and leaderboard tables"
    transactional_mode = TransactionalMode.WRAP

    def apply(self, db):
        create_table_if_not_exists(
            db,
            "badges",
            id_column(),
            Column("name", String(100), nullable=False, unique=True),
            Column("description", Text),
            Column("icon_url", String(500)),
            Column("criteria", JSON),
            Column("points", Integer, nullable=False, server_default="0"),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "user_badges",
            id_column(),
            Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            Column("badge_id", Integer, ForeignKey("badges.id", ondelete="CASCADE"), nullable=False),
            Column("earned_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
            UniqueConstraint("user_id", "badge_id", name="uq_user_badges_user_badge"),
        )

        create_table_if_not_exists(
            db,
            "achievements",
            id_column(),
            Column("name", String(100), nullable=False, unique=True),
            Column("description", Text),
            Column("category", String(50)),
            Column("threshold", Integer, nullable=False, server_default="1"),
            Column("points", Integer, nullable=False, server_default="0"),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "user_achievements",
            id_column(),
            Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            Column("achievement_id", Integer, ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False),
            Column("progress", Integer, nullable=False, server_default="0"),
            Column("unlocked_at", DateTime(timezone=True)),
            UniqueConstraint("user_id", "achievement_id", name="uq_user_achievements_user_achievement"),
        )

        create_table_if_not_exists(
            db,
            "user_engagement",
            id_column(),
            Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            Column("engagement_type", String(50), nullable=False),
            Column("points_earned", Integer, nullable=False, server_default="0"),
            Column("metadata", JSON),
            Column("created_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
            Index("ix_user_engagement_user_id", "user_id"),
        )

        create_table_if_not_exists(
            db,
            "leaderboard_entries",
            id_column(),
            Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            Column("chapter_id", Integer, ForeignKey("chapters.id", ondelete="CASCADE")),
            Column("period", String(20), nullable=False, server_default="all_time"),
            Column("points", Integer, nullable=False, server_default="0"),
            Column("rank", Integer),
            *timestamps(),
            UniqueConstraint("user_id", "chapter_id", "period", name="uq_leaderboard_entries_user_period"),
        )

    def revert(self, db):
        for table in TABLES:
            drop_table_if_exists(db, table)
