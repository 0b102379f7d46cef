"""
Migration 20251129000008: Create Missing Tables

Tables the application started using before any unit created them:
content moderation queue, rate limiting, privacy settings, chapter
archives, the realtime update queue and uptime monitoring.

Some deployments created a few of these by hand, so every table is
guarded. User references are TEXT, matching 20251120000000.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    true,
)

from eoty_db.database.migrations.base import Migration, TransactionalMode
from eoty_db.database.schema_ops import (
    create_table_if_not_exists,
    drop_table_if_exists,
    id_column,
    timestamps,
)

TABLES = (
    "uptime_statistics",
    "uptime_alerts",
    "uptime_monitoring",
    "system_health",
    "realtime_update_queue",
    "chapter_archives",
    "user_privacy_settings",
    "rate_limits",
    "content_moderation",
)


def _now(name: str) -> Column:
    return Column(name, DateTime(timezone=True), server_default=func.now())


class CreateMissingTables(Migration):
    description = "Create moderation queue, rate limit, privacy, archive, realtime and uptime tables"
    transactional_mode = TransactionalMode.WRAP

    def apply(self, db):
        create_table_if_not_exists(
            db,
            "content_moderation",
            id_column(),
            Column("content_type", String(50), nullable=False),
            Column("content_id", Integer, nullable=False),
            Column("content_text", Text, nullable=False),
            Column("moderation_status", String(50), server_default="pending"),
            Column("moderation_reason", String(255)),
            Column("moderator_id", Text),
            Column("moderated_at", DateTime(timezone=True)),
            Column("spam_score", Integer, server_default="0"),
            Column("moderation_metadata", JSON),
            *timestamps(),
            Index("ix_content_moderation_type_status", "content_type", "moderation_status"),
            Index("ix_content_moderation_spam_score", "spam_score"),
        )

        create_table_if_not_exists(
            db,
            "rate_limits",
            id_column(),
            Column("user_id", Text, nullable=False),
            Column("action_type", String(50), nullable=False),
            Column("count", Integer, server_default="0"),
            Column("window_start", DateTime(timezone=True), nullable=False),
            Column("last_action", DateTime(timezone=True), nullable=False),
            UniqueConstraint("user_id", "action_type", "window_start", name="uq_rate_limits_user_action_window"),
            Index("ix_rate_limits_window_start", "window_start"),
        )

        create_table_if_not_exists(
            db,
            "user_privacy_settings",
            id_column(),
            Column("user_id", Text, nullable=False, unique=True),
            Column("show_in_leaderboards", Boolean, server_default=true()),
            Column("show_real_name", Boolean, server_default=false()),
            Column("allow_public_profile", Boolean, server_default=true()),
            Column("hide_age_info", Boolean, server_default=true()),
            Column("restrict_location_sharing", Boolean, server_default=true()),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "chapter_archives",
            id_column(),
            Column("chapter_id", Integer, nullable=False),
            Column("chapter_name", String(255), nullable=False),
            _now("archived_at"),
            Column("archive_reason", String(50), nullable=False),
            Column("total_users", Integer, server_default="0"),
            Column("total_posts", Integer, server_default="0"),
            Column("archive_metadata", JSON),
            *timestamps(),
            Index("ix_chapter_archives_chapter_id", "chapter_id"),
        )

        create_table_if_not_exists(
            db,
            "realtime_update_queue",
            id_column(),
            Column("update_type", String(50), nullable=False),
            Column("user_id", Text),
            Column("chapter_id", Integer),
            Column("update_data", JSON, nullable=False),
            Column("status", String(50), server_default="pending"),
            Column("retry_count", Integer, server_default="0"),
            Column("next_retry_at", DateTime(timezone=True)),
            *timestamps(),
            Index("ix_realtime_update_queue_type_status", "update_type", "status"),
            Index("ix_realtime_update_queue_user_id", "user_id"),
        )

        create_table_if_not_exists(
            db,
            "system_health",
            id_column(),
            Column("component", String(100), nullable=False),
            Column("status", String(50), nullable=False),
            Column("response_time", Float),
            Column("error_message", Text),
            Column("health_data", JSON),
            *timestamps(),
            Index("ix_system_health_component_status", "component", "status"),
        )

        create_table_if_not_exists(
            db,
            "uptime_monitoring",
            id_column(),
            Column("is_healthy", Boolean, nullable=False),
            Column("error_message", Text),
            Column("check_duration_ms", Float),
            Column("uptime_percentage", Float),
            _now("timestamp"),
            Index("ix_uptime_monitoring_timestamp", "timestamp"),
        )

        create_table_if_not_exists(
            db,
            "uptime_alerts",
            id_column(),
            Column("severity", String(20), nullable=False),
            Column("message", Text, nullable=False),
            Column("uptime_percentage", Float),
            Column("consecutive_failures", Integer, server_default="0"),
            Column("resolved", Boolean, server_default=false()),
            Column("resolved_at", DateTime(timezone=True)),
            _now("timestamp"),
            Index("ix_uptime_alerts_resolved", "resolved"),
        )

        create_table_if_not_exists(
            db,
            "uptime_statistics",
            id_column(),
            Column("total_checks", Integer, server_default="0"),
            Column("successful_checks", Integer, server_default="0"),
            Column("failed_checks", Integer, server_default="0"),
            Column("uptime_percentage", Float, server_default="100"),
            Column("meets_threshold", Boolean, server_default=true()),
            _now("timestamp"),
        )

    def revert(self, db):
        for table in TABLES:
            drop_table_if_exists(db, table)
