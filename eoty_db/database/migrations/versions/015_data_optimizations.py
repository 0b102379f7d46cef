"""
Migration 015: Data Optimizations

Composite and partial indexes for the hot query paths, plus range checks
on progress and score columns.

Runs in `none` mode so PostgreSQL can build the indexes CONCURRENTLY,
which is refused inside a transaction block. Every statement is guarded,
so an interrupted run is finished by running the unit again.

Default roles and the headquarters chapter are seeded, not inserted here.
"""

import logging

from eoty_db.database.migrations.base import Migration, TransactionalMode
from eoty_db.database.schema_ops import (
    add_check_constraint_if_missing,
    add_foreign_key_if_missing,
    create_index_if_not_exists,
    drop_constraint_if_exists,
    drop_index_if_exists,
)

logger = logging.getLogger(__name__)

COMPOSITE_INDEXES = (
    ("users", ("role", "is_active")),
    ("users", ("created_at",)),
    ("courses", ("is_published", "created_at")),
    ("courses", ("created_by", "is_published")),
    ("lessons", ("is_published", "course_id")),
    ("lessons", ("created_by", "is_published")),
    ("user_lesson_progress", ("last_accessed_at",)),
    ("user_lesson_progress", ("progress", "is_completed")),
    ("quiz_sessions", ("score_percentage", "is_completed")),
    ("quiz_sessions", ("started_at",)),
    ("resources", ("is_public", "created_at")),
    ("forum_posts", ("like_count", "created_at")),
    ("user_engagement", ("engagement_type", "created_at")),
    ("user_engagement", ("points_earned", "created_at")),
    ("user_course_enrollments", ("enrollment_status", "last_accessed_at")),
    ("user_course_enrollments", ("progress_percentage", "enrolled_at")),
    ("ai_messages", ("conversation_id", "is_user_message", "created_at")),
)

# (name, table, columns, predicate)
PARTIAL_INDEXES = (
    ("idx_users_active_students", "users", ("role", "chapter_id"), "is_active AND role = 'student'"),
    ("idx_lessons_published_courses", "lessons", ("course_id", "order"), "is_published"),
    ("idx_quiz_questions_active", "quiz_questions", ("quiz_id", "order_number"), "is_active"),
    ("idx_user_progress_recent", "user_lesson_progress", ("user_id", "last_accessed_at"), "NOT is_completed"),
)

CHECK_CONSTRAINTS = (
    ("user_lesson_progress", "progress_range_check", "progress >= 0 AND progress <= 1"),
    ("quiz_sessions", "score_percentage_check", "score_percentage >= 0 AND score_percentage <= 100"),
    ("user_course_enrollments", "progress_percentage_check", "progress_percentage >= 0 AND progress_percentage <= 100"),
)


def index_name(table: str, columns: tuple[str, ...]) -> str:
    return f"{table}_{'_'.join(columns)}_index"


class DataOptimizations(Migration):
    description = "Add query indexes, partial indexes and range checks"
    transactional_mode = TransactionalMode.NONE

    def apply(self, db):
        created = 0
        for table, columns in COMPOSITE_INDEXES:
            created += create_index_if_not_exists(
                db, index_name(table, columns), table, columns, concurrently=True
            )

        for name, table, columns, predicate in PARTIAL_INDEXES:
            created += create_index_if_not_exists(
                db, name, table, columns, concurrently=True, where=predicate
            )
        logger.info(f"Created {created} indexes")

        add_foreign_key_if_missing(
            db,
            "forum_topics",
            "forum_topics_last_post_id_foreign",
            "last_post_id",
            "forum_posts",
            ondelete="SET NULL",
        )

        for table, name, condition in CHECK_CONSTRAINTS:
            add_check_constraint_if_missing(db, table, name, condition)

    def revert(self, db):
        for table, name, _ in CHECK_CONSTRAINTS:
            drop_constraint_if_exists(db, table, name)
        drop_constraint_if_exists(db, "forum_topics", "forum_topics_last_post_id_foreign")

        for name, table, _, _ in PARTIAL_INDEXES:
            drop_index_if_exists(db, name, table)
        for table, columns in COMPOSITE_INDEXES:
            drop_index_if_exists(db, index_name(table, columns), table)
