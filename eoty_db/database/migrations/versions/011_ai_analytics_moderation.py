"""
Migration 011: AI Analytics and Moderation

AI assistant conversations, faith-alignment scoring and the moderation
workflow (escalations, automatic decisions, doctrinal review).

User references here are strings: these tables were designed against the
text user ids that 20251120000000 later makes universal, so they carry no
foreign key to users.

Default moderation settings are reference data and live in the
system_defaults seed.
"""

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
    "model_fine_tuning_logs",
    "moderation_settings",
    "moderator_notifications",
    "doctrinal_review_queue",
    "auto_moderation_logs",
    "moderation_resolution_logs",
    "moderation_escalations",
    "faith_alignment_validation",
    "faith_alignment_logs",
    "ai_messages",
    "ai_conversations",
)


def _now(name: str) -> Column:
    return Column(name, DateTime(timezone=True), server_default=func.now())


def _score(name: str, nullable: bool = True) -> Column:
    return Column(name, Numeric(3, 2), nullable=nullable)


class AiAnalyticsModeration(Migration):
    description = "Create AI conversation, faith alignment and moderation tables"
    transactional_mode = TransactionalMode.WRAP

    def apply(self, db):
        create_table_if_not_exists(
            db,
            "ai_conversations",
            id_column(),
            Column("user_id", String(255), nullable=False),
            Column("resource_id", Integer, ForeignKey("resources.id", ondelete="CASCADE")),
            Column("title", String(255)),
            Column("context_type", String(50)),
            Column("conversation_context", JSON),
            Column("is_active", Boolean, server_default=true()),
            *timestamps(),
            Index("ix_ai_conversations_user_active", "user_id", "is_active"),
        )

        create_table_if_not_exists(
            db,
            "ai_messages",
            id_column(),
            Column("conversation_id", Integer, ForeignKey("ai_conversations.id", ondelete="CASCADE")),
            Column("message", Text, nullable=False),
            Column("is_user_message", Boolean, server_default=true()),
            Column("metadata", JSON),
            _score("faith_alignment_score"),
            Column("moderation_flags", JSON),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "faith_alignment_logs",
            id_column(),
            Column("response_preview", Text, nullable=False),
            _score("alignment_score", nullable=False),
            Column("validation_issues", JSON),
            Column("context", JSON),
            _now("created_at"),
        )

        create_table_if_not_exists(
            db,
            "faith_alignment_validation",
            id_column(),
            Column("question", Text, nullable=False),
            Column("response", Text, nullable=False),
            _score("alignment_score", nullable=False),
            Column("is_aligned", Boolean, nullable=False),
            Column("issues", JSON),
            Column("warnings", JSON),
            Column("suggestions", JSON),
            Column("context", JSON),
            _now("timestamp"),
        )

        create_table_if_not_exists(
            db,
            "moderation_escalations",
            id_column(),
            Column("user_id", String(255), nullable=False),
            Column("content", Text, nullable=False),
            Column("content_type", String(50), nullable=False),
            Column("reason", Text, nullable=False),
            Column("priority", String(20), server_default="medium"),
            Column("status", String(50), server_default="pending"),
            Column("reviewed_by", String(255)),
            Column("resolution_notes", Text),
            _now("timestamp"),
            Column("reviewed_at", DateTime(timezone=True)),
            Index("ix_moderation_escalations_status_priority", "status", "priority"),
        )

        create_table_if_not_exists(
            db,
            "moderation_resolution_logs",
            id_column(),
            Column("escalation_id", Integer, ForeignKey("moderation_escalations.id"), nullable=False),
            Column("moderator_id", String(255), nullable=False),
            Column("resolution_action", String(50), nullable=False),
            Column("resolution_category", String(100)),
            Column("resolution_notes", Text),
            _now("resolved_at"),
        )

        create_table_if_not_exists(
            db,
            "auto_moderation_logs",
            id_column(),
            Column("user_id", String(255), nullable=False),
            Column("content", Text, nullable=False),
            Column("moderation_decision", String(50), nullable=False),
            Column("flags", JSON),
            _score("faith_alignment_score"),
            _score("confidence"),
            _now("created_at"),
        )

        create_table_if_not_exists(
            db,
            "doctrinal_review_queue",
            id_column(),
            Column("question", Text, nullable=False),
            Column("response", Text, nullable=False),
            _score("alignment_score", nullable=False),
            Column("issues", JSON),
            Column("priority", String(20), server_default="medium"),
            Column("status", String(50), server_default="pending"),
            Column("reviewed_by", String(255)),
            Column("review_notes", Text),
            _now("timestamp"),
            Column("reviewed_at", DateTime(timezone=True)),
        )

        create_table_if_not_exists(
            db,
            "moderator_notifications",
            id_column(),
            Column("type", String(100), nullable=False),
            Column("title", String(255), nullable=False),
            Column("message", Text, nullable=False),
            Column("data", JSON),
            Column("priority", String(20), server_default="medium"),
            Column("status", String(50), server_default="unread"),
            _now("created_at"),
            Column("read_at", DateTime(timezone=True)),
        )

        create_table_if_not_exists(
            db,
            "moderation_settings",
            id_column(),
            Column("setting_key", String(100), nullable=False, unique=True),
            Column("setting_value", JSON, nullable=False),
            Column("updated_by", String(255)),
            _now("updated_at"),
        )

        create_table_if_not_exists(
            db,
            "model_fine_tuning_logs",
            id_column(),
            Column("model_id", String(255)),
            Column("training_examples", Integer),
            Column("validation_examples", Integer),
            Column("base_model", String(100)),
            Column("status", String(50), server_default="preparing"),
            _now("created_at"),
            Column("completed_at", DateTime(timezone=True)),
            Column("performance_metrics", JSON),
        )

    def revert(self, db):
        for table in TABLES:
            drop_table_if_exists(db, table)
