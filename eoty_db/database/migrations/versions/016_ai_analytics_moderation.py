"""
Migration 016: AI Analytics and Moderation (personalization and language)

Adds learning-session personalization, language detection and
interaction analytics tables.

This unit was first written as a standalone replacement for 011 and 013,
so it also declares several of their tables with integer user ids. On any
database that ran those units the declarations are no-ops; they only take
effect on databases that skipped them, and 20251120000000 converts the
user columns either way. Revert drops only the tables this unit owns.
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
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    true,
)

from eoty_db.database.migrations.base import Migration, TransactionalMode
from eoty_db.database.schema_ops import create_table_if_not_exists, drop_table_if_exists, id_column

logger = logging.getLogger(__name__)

OWNED_TABLES = (
    "unsupported_language_logs",
    "session_analytics",
    "performance_logs",
    "interaction_logs",
    "translation_logs",
    "language_usage_logs",
    "lesson_prerequisites",
    "context_usage_logs",
    "user_content_success",
    "user_preferences",
    "user_learning_sessions",
)


def _now(name: str) -> Column:
    return Column(name, DateTime(timezone=True), server_default=func.now())


def _user(name: str = "user_id", nullable: bool = True) -> Column:
    return Column(name, Integer, ForeignKey("users.id"), nullable=nullable)


class AiAnalyticsPersonalization(Migration):
    description = "Create personalization, language and interaction analytics tables"
    transactional_mode = TransactionalMode.WRAP

    def apply(self, db):
        self._declare_shared_tables(db)

        create_table_if_not_exists(
            db,
            "user_learning_sessions",
            id_column(),
            _user(nullable=False),
            Column("session_date", DateTime(timezone=True), nullable=False),
            Column("activity_type", String(100), nullable=False),
            Column("duration_minutes", Integer, server_default="0"),
            Column("topics_covered", JSON),
            Column("details", JSON),
            _now("created_at"),
            Index("ix_user_learning_sessions_user_date", "user_id", "session_date"),
        )

        create_table_if_not_exists(
            db,
            "user_preferences",
            id_column(),
            _user(nullable=False),
            Column("preferred_language", String(10), server_default="en-US"),
            Column("learning_pace", String(20), server_default="moderate"),
            Column("content_preferences", JSON),
            Column("accessibility_settings", JSON),
            _now("created_at"),
            _now("updated_at"),
            UniqueConstraint("user_id", name="uq_user_preferences_user"),
        )

        create_table_if_not_exists(
            db,
            "user_content_success",
            id_column(),
            _user(nullable=False),
            Column("content_type", String(100), nullable=False),
            Column("success_rate", Numeric(5, 2), server_default="0"),
            Column("engagement_level", String(20)),
            Column("sample_size", Integer, server_default="0"),
            _now("last_updated"),
            UniqueConstraint("user_id", "content_type", name="uq_user_content_success_user_type"),
        )

        create_table_if_not_exists(
            db,
            "context_usage_logs",
            id_column(),
            _user(nullable=False),
            Column("context_type", String(255)),
            Column("context_data", JSON),
            _now("timestamp"),
        )

        create_table_if_not_exists(
            db,
            "lesson_prerequisites",
            id_column(),
            Column("lesson_id", Integer, ForeignKey("lessons.id"), nullable=False),
            Column("prerequisite_lesson_id", Integer, ForeignKey("lessons.id"), nullable=False),
            Column("importance", String(20), server_default="recommended"),
            _now("created_at"),
            UniqueConstraint("lesson_id", "prerequisite_lesson_id", name="uq_lesson_prerequisites_pair"),
        )

        create_table_if_not_exists(
            db,
            "language_usage_logs",
            id_column(),
            _user(),
            Column("detected_language", String(10), nullable=False),
            Column("input_text", Text),
            Column("confidence", Numeric(3, 2)),
            _now("timestamp"),
        )

        create_table_if_not_exists(
            db,
            "translation_logs",
            id_column(),
            _user(),
            Column("source_language", String(10), nullable=False),
            Column("target_language", String(10), nullable=False),
            Column("original_text", Text),
            Column("translated_text", Text),
            Column("translation_quality", String(20)),
            _now("timestamp"),
        )

        create_table_if_not_exists(
            db,
            "interaction_logs",
            id_column(),
            Column("session_id", String(255), nullable=False),
            _user(),
            Column("interaction_type", String(50), nullable=False),
            Column("question", Text),
            Column("response", Text),
            Column("context", JSON),
            Column("performance_metrics", JSON),
            Column("faith_alignment", JSON),
            Column("moderation_flags", JSON),
            Column("language", String(10)),
            Column("user_feedback", String(50)),
            _now("timestamp"),
            Index("ix_interaction_logs_session", "session_id"),
        )

        create_table_if_not_exists(
            db,
            "performance_logs",
            id_column(),
            Column("interaction_id", Integer, ForeignKey("interaction_logs.id")),
            Column("response_time_ms", Integer, nullable=False),
            Column("ai_processing_time", Integer),
            Column("database_time", Integer),
            Column("cache_hit", Boolean),
            Column("total_time_ms", Integer, nullable=False),
            _now("timestamp"),
        )

        create_table_if_not_exists(
            db,
            "session_analytics",
            id_column(),
            Column("session_id", String(255), nullable=False),
            Column("start_time", DateTime(timezone=True), nullable=False),
            Column("end_time", DateTime(timezone=True), nullable=False),
            Column("interaction_count", Integer, nullable=False),
            Column("avg_response_time", Numeric(8, 2), nullable=False),
            Column("avg_faith_alignment", Numeric(3, 2), nullable=False),
            Column("moderation_event_count", Integer, nullable=False),
            _now("timestamp"),
        )

        create_table_if_not_exists(
            db,
            "unsupported_language_logs",
            id_column(),
            _user(),
            Column("session_id", String(255), nullable=False),
            Column("detected_language", String(10), nullable=False),
            Column("input_text", Text, nullable=False),
            _now("timestamp"),
        )

    def _declare_shared_tables(self, db):
        """Tables also created by 011 and 013."""
        created = [
            create_table_if_not_exists(
                db,
                "moderation_escalations",
                id_column(),
                _user(nullable=False),
                Column("content", Text, nullable=False),
                Column("content_type", String(50), nullable=False),
                Column("reason", Text, nullable=False),
                Column("priority", String(20), server_default="medium"),
                Column("status", String(50), server_default="pending"),
                _user("reviewed_by"),
                Column("resolution_notes", Text),
                _now("timestamp"),
                Column("reviewed_at", DateTime(timezone=True)),
            ),
            create_table_if_not_exists(
                db,
                "moderation_settings",
                id_column(),
                Column("setting_key", String(100), nullable=False, unique=True),
                Column("setting_value", JSON, nullable=False),
                _user("updated_by"),
                _now("updated_at"),
            ),
            create_table_if_not_exists(
                db,
                "performance_metrics",
                id_column(),
                Column("session_id", String(255), nullable=False),
                Column("operation", String(100), nullable=False),
                Column("response_time_ms", Integer, nullable=False),
                Column("within_threshold", Boolean, nullable=False),
                Column("threshold_ms", Integer, nullable=False),
                _now("timestamp"),
            ),
            create_table_if_not_exists(
                db,
                "system_jobs",
                id_column(),
                Column("job_name", String(255), nullable=False, unique=True),
                Column("job_type", String(100), nullable=False),
                Column("schedule", String(100), nullable=False),
                Column("is_active", Boolean, server_default=true()),
                _now("created_at"),
                Column("last_run_at", DateTime(timezone=True)),
            ),
        ]
        if any(created):
            logger.warning("Created shared tables that 011/013 normally own; their revert will drop them")

    def revert(self, db):
        for table in OWNED_TABLES:
            drop_table_if_exists(db, table)
