"""
Migration 20251115000005: Guided Onboarding

Onboarding flows made of ordered steps and milestones, per-user progress,
reminders for abandoned flows, contextual help resources and completion
rewards.

Some early databases carry an `onboarding_steps` table with the old
per-user layout (a `step_name` column). That table is set aside as
`onboarding_steps_legacy` before the flow-based table is created; other
partially upgraded tables get their missing columns added.
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
    false,
    func,
    true,
)

from eoty_db.database import introspection
from eoty_db.database.migrations.base import Migration, TransactionalMode
from eoty_db.database.schema_ops import (
    add_column_if_not_exists,
    create_table_if_not_exists,
    drop_table_if_exists,
    id_column,
    rename_table_if_exists,
    timestamps,
)

logger = logging.getLogger(__name__)

LEGACY_STEPS_TABLE = "onboarding_steps_legacy"

TABLES = (
    "onboarding_completion_rewards",
    "help_usage_tracking",
    "help_resources",
    "onboarding_reminders",
    "onboarding_milestones",
    "onboarding_step_completions",
    "user_onboarding",
    "onboarding_steps",
    "onboarding_flows",
)


def _flow_fk() -> Column:
    return Column("flow_id", Integer, ForeignKey("onboarding_flows.id", ondelete="CASCADE"))


def _step_columns() -> list[Column]:
    """Columns added to onboarding_steps after its first release."""
    return [
        Column("milestone_id", Integer),
        Column("order_index", Integer, server_default="0"),
        Column("prerequisites", JSON),
        Column("video_url", String(500)),
        Column("action_required", String(255)),
        Column("auto_resume", Boolean, server_default=true()),
        Column("is_required", Boolean, server_default=true()),
    ]


class EnhanceOnboarding(Migration):
    description = "Create onboarding flow, progress, reminder and help tables"
    transactional_mode = TransactionalMode.WRAP

    def apply(self, db):
        create_table_if_not_exists(
            db,
            "onboarding_flows",
            id_column(),
            Column("name", String(255), nullable=False),
            Column("audience", String(50), nullable=False),
            Column("description", Text),
            Column("is_active", Boolean, server_default=true()),
            Column("estimated_duration_minutes", Integer, server_default="10"),
            *timestamps(),
            Index("ix_onboarding_flows_audience_active", "audience", "is_active"),
        )

        self._upgrade_steps(db)

        create_table_if_not_exists(
            db,
            "user_onboarding",
            id_column(),
            Column("user_id", Integer),
            _flow_fk(),
            Column("status", String(50), server_default="in_progress"),
            Column("progress", Numeric(5, 2), server_default="0"),
            Column("current_step_id", Integer),
            Column("completed_steps", JSON),
            Column("skipped_steps", JSON),
            Column("started_at", DateTime(timezone=True), server_default=func.now()),
            Column("completed_at", DateTime(timezone=True)),
            Column("last_activity_at", DateTime(timezone=True), server_default=func.now()),
            *timestamps(),
            UniqueConstraint("user_id", "flow_id", name="uq_user_onboarding_user_flow"),
            Index("ix_user_onboarding_user_status", "user_id", "status"),
            Index("ix_user_onboarding_status_activity", "status", "last_activity_at"),
        )
        add_column_if_not_exists(db, "user_onboarding", Column("current_step_id", Integer))
        add_column_if_not_exists(db, "user_onboarding", Column("last_activity_at", DateTime(timezone=True)))

        create_table_if_not_exists(
            db,
            "onboarding_step_completions",
            id_column(),
            Column("user_id", Integer),
            _flow_fk(),
            Column("step_id", Integer, ForeignKey("onboarding_steps.id", ondelete="CASCADE")),
            Column("completed", Boolean, server_default=true()),
            Column("time_spent_seconds", Integer, server_default="0"),
            Column("completion_data", JSON),
            Column("completed_at", DateTime(timezone=True), server_default=func.now()),
            *timestamps(),
            UniqueConstraint("user_id", "flow_id", "step_id", name="uq_onboarding_step_completions_user_step"),
        )

        create_table_if_not_exists(
            db,
            "onboarding_milestones",
            id_column(),
            _flow_fk(),
            Column("name", String(255), nullable=False),
            Column("description", Text),
            Column("step_count", Integer, server_default="0"),
            Column("badge_id", Integer),
            Column("reward_type", String(50)),
            Column("reward_data", JSON),
            Column("order_index", Integer, server_default="0"),
            *timestamps(),
            Index("ix_onboarding_milestones_flow_order", "flow_id", "order_index"),
        )

        create_table_if_not_exists(
            db,
            "onboarding_reminders",
            id_column(),
            Column("user_id", Integer),
            _flow_fk(),
            Column("reminder_type", String(50), server_default="skipped"),
            Column("reminder_count", Integer, server_default="0"),
            Column("last_reminder_at", DateTime(timezone=True)),
            Column("next_reminder_at", DateTime(timezone=True)),
            Column("is_active", Boolean, server_default=true()),
            *timestamps(),
            Index("ix_onboarding_reminders_next_active", "next_reminder_at", "is_active"),
        )

        create_table_if_not_exists(
            db,
            "help_resources",
            id_column(),
            Column("resource_type", String(50), nullable=False),
            Column("component", String(255)),
            Column("page", String(255)),
            Column("audience", String(50), server_default="all"),
            Column("category", String(100)),
            Column("title", String(255), nullable=False),
            Column("content", Text, nullable=False),
            Column("view_count", Integer, server_default="0"),
            Column("helpful_count", Integer, server_default="0"),
            Column("is_active", Boolean, server_default=true()),
            *timestamps(),
            Index("ix_help_resources_type_component_audience", "resource_type", "component", "audience"),
            Index("ix_help_resources_category_audience", "category", "audience"),
        )

        create_table_if_not_exists(
            db,
            "help_usage_tracking",
            id_column(),
            Column("user_id", Integer),
            Column("help_resource_id", Integer, ForeignKey("help_resources.id", ondelete="CASCADE")),
            Column("interaction_type", String(50), server_default="viewed"),
            Column("context", JSON),
            Column("interacted_at", DateTime(timezone=True), server_default=func.now()),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "onboarding_completion_rewards",
            id_column(),
            Column("user_id", Integer),
            _flow_fk(),
            Column("reward_type", String(50), nullable=False),
            Column("badge_id", Integer),
            Column("points", Integer, server_default="0"),
            Column("welcome_message", Text),
            Column("announcement_enabled", Boolean, server_default=false()),
            Column("claimed", Boolean, server_default=false()),
            Column("earned_at", DateTime(timezone=True), server_default=func.now()),
            Column("claimed_at", DateTime(timezone=True)),
            *timestamps(),
        )

    def _upgrade_steps(self, db):
        if introspection.has_column(db, "onboarding_steps", "step_name"):
            logger.info("onboarding_steps has the per-user layout; moving it aside")
            rename_table_if_exists(db, "onboarding_steps", LEGACY_STEPS_TABLE)

        created = create_table_if_not_exists(
            db,
            "onboarding_steps",
            id_column(),
            Column("flow_id", Integer, nullable=False),
            Column("title", String(255), nullable=False),
            Column("description", Text),
            Column("content", Text),
            Column("step_type", String(50), server_default="info"),
            *_step_columns(),
            *timestamps(),
            Index("ix_onboarding_steps_flow_order", "flow_id", "order_index"),
        )
        if not created:
            for column in _step_columns():
                add_column_if_not_exists(db, "onboarding_steps", column)

    def revert(self, db):
        for table in TABLES:
            drop_table_if_exists(db, table)
        rename_table_if_exists(db, LEGACY_STEPS_TABLE, "onboarding_steps")
