"""
Migration 20251120000000: Convert User Ids to Text

The auth provider issues string user ids. users.id and every column that
stores a user id become TEXT; existing integer ids are kept as their
decimal string.

Earlier units disagree on the type (011 already used strings), so each
column is reconciled against its live type and only integer columns are
converted. On PostgreSQL the foreign keys pointing at users.id are
dropped for the conversion and recreated afterwards with ON DELETE
CASCADE.

Irreversible: ids created after the conversion need not be numeric.
"""

import logging

from sqlalchemy import Text

from eoty_db.database import introspection
from eoty_db.database.migrations.base import Migration, TransactionalMode
from eoty_db.database.schema_ops import (
    add_foreign_key_if_missing,
    drop_constraint_if_exists,
    reconcile_column_type,
)

logger = logging.getLogger(__name__)

# Columns holding a user id, by table. Missing tables and columns are skipped.
USER_REFERENCES = (
    ("user_sessions", "user_id"),
    ("courses", "created_by"),
    ("lessons", "created_by"),
    ("videos", "uploader_id"),
    ("resources", "uploaded_by"),
    ("user_course_enrollments", "user_id"),
    ("user_lesson_progress", "user_id"),
    ("quiz_sessions", "user_id"),
    ("forums", "created_by"),
    ("forum_topics", "author_id"),
    ("forum_posts", "user_id"),
    ("post_likes", "user_id"),
    ("user_badges", "user_id"),
    ("user_achievements", "user_id"),
    ("user_engagement", "user_id"),
    ("leaderboard_entries", "user_id"),
    ("badge_update_queue", "user_id"),
    ("leaderboard_update_queue", "user_id"),
    ("resource_shares", "shared_by"),
    ("shared_resource_notes", "shared_by"),
    ("ai_summaries", "validated_by"),
    ("user_notifications", "user_id"),
    ("push_subscriptions", "user_id"),
    ("ai_conversations", "user_id"),
    ("moderation_escalations", "user_id"),
    ("moderation_escalations", "reviewed_by"),
    ("moderation_resolution_logs", "moderator_id"),
    ("auto_moderation_logs", "user_id"),
    ("doctrinal_review_queue", "reviewed_by"),
    ("moderation_settings", "updated_by"),
    ("performance_alerts", "acknowledged_by"),
    ("user_learning_sessions", "user_id"),
    ("user_preferences", "user_id"),
    ("user_content_success", "user_id"),
    ("context_usage_logs", "user_id"),
    ("language_usage_logs", "user_id"),
    ("translation_logs", "user_id"),
    ("interaction_logs", "user_id"),
    ("unsupported_language_logs", "user_id"),
    ("user_onboarding", "user_id"),
    ("onboarding_step_completions", "user_id"),
    ("onboarding_reminders", "user_id"),
    ("help_usage_tracking", "user_id"),
    ("onboarding_completion_rewards", "user_id"),
    ("user_chapters", "user_id"),
    ("activity_logs", "user_id"),
    ("abnormal_activity_alerts", "user_id"),
    ("abnormal_activity_alerts", "resolved_by"),
    ("user_sso_accounts", "user_id"),
    ("localization_settings", "user_id"),
)


class ConvertUserIdsToText(Migration):
    description = "Convert users.id and all user id columns to TEXT"
    transactional_mode = TransactionalMode.WRAP

    def apply(self, db):
        if db.is_postgres:
            self._convert_users_postgres(db)
        else:
            reconcile_column_type(db, "users", "id", Text())

        converted = 0
        for table, column in USER_REFERENCES:
            # Only base tables; a later unit may have replaced one with a view.
            if introspection.has_table(db, table):
                converted += reconcile_column_type(db, table, column, Text())
        logger.info(f"Converted {converted} user id columns to TEXT")

    def _convert_users_postgres(self, db):
        if introspection.same_type_family(introspection.column_type(db, "users", "id"), Text()):
            logger.debug("users.id is already TEXT")
            return

        references = introspection.foreign_keys_referencing(db, "users")
        for table, fk in references:
            drop_constraint_if_exists(db, table, fk["name"])

        db.execute("ALTER TABLE users ALTER COLUMN id DROP DEFAULT")
        reconcile_column_type(db, "users", "id", Text(), using="id::text")

        for table, fk in references:
            for column in fk["constrained_columns"]:
                reconcile_column_type(db, table, column, Text())
        for table, fk in references:
            add_foreign_key_if_missing(
                db,
                table,
                fk["name"],
                fk["constrained_columns"][0],
                "users",
                fk["referred_columns"][0],
                ondelete="CASCADE",
            )
