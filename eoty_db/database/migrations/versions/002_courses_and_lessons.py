"""
Migration 002: Courses and Lessons

Learning content and per-user progress tracking.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
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
    "user_lesson_progress",
    "user_course_enrollments",
    "resources",
    "videos",
    "lessons",
    "courses",
)


class CoursesAndLessons(Migration):
    description = "Create courses, lessons, videos, resources and progress tables"
    transactional_mode = TransactionalMode.WRAP

    def apply(self, db):
        create_table_if_not_exists(
            db,
            "courses",
            id_column(),
            Column("title", String(255), nullable=False),
            Column("description", Text),
            Column("difficulty", String(50), server_default="beginner"),
            Column("chapter_id", Integer, ForeignKey("chapters.id", ondelete="SET NULL")),
            Column("created_by", Integer, ForeignKey("users.id", ondelete="SET NULL")),
            Column("is_published", Boolean, nullable=False, server_default=false()),
            Column("is_active", Boolean, nullable=False, server_default=true()),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "lessons",
            id_column(),
            Column("course_id", Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
            Column("title", String(255), nullable=False),
            Column("description", Text),
            Column("content", Text),
            Column("order", Integer, nullable=False, server_default="0"),
            Column("duration_minutes", Integer),
            Column("created_by", Integer, ForeignKey("users.id", ondelete="SET NULL")),
            Column("is_published", Boolean, nullable=False, server_default=false()),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "videos",
            id_column(),
            Column("lesson_id", Integer, ForeignKey("lessons.id", ondelete="CASCADE")),
            Column("uploader_id", Integer, ForeignKey("users.id", ondelete="SET NULL")),
            Column("title", String(255), nullable=False),
            Column("url", String(1000)),
            Column("provider", String(50), server_default="local"),
            Column("status", String(50), nullable=False, server_default="pending"),
            Column("duration_seconds", Integer),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "resources",
            id_column(),
            Column("title", String(255), nullable=False),
            Column("description", Text),
            Column("url", String(1000)),
            Column("resource_type", String(50), nullable=False, server_default="document"),
            Column("is_public", Boolean, nullable=False, server_default=true()),
            Column("uploaded_by", Integer, ForeignKey("users.id", ondelete="SET NULL")),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "user_course_enrollments",
            id_column(),
            Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            Column("course_id", Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
            Column("enrollment_status", String(50), nullable=False, server_default="active"),
            Column("progress_percentage", Float, nullable=False, server_default="0"),
            Column("enrolled_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
            Column("last_accessed_at", DateTime(timezone=True)),
            Column("completed_at", DateTime(timezone=True)),
            UniqueConstraint("user_id", "course_id", name="uq_user_course_enrollments_user_course"),
        )

        create_table_if_not_exists(
            db,
            "user_lesson_progress",
            id_column(),
            Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            Column("lesson_id", Integer, ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False),
            Column("progress", Float, nullable=False, server_default="0"),
            Column("is_completed", Boolean, nullable=False, server_default=false()),
            Column("last_accessed_at", DateTime(timezone=True)),
            Column("completed_at", DateTime(timezone=True)),
            UniqueConstraint("user_id", "lesson_id", name="uq_user_lesson_progress_user_lesson"),
        )

    def revert(self, db):
        for table in TABLES:
            drop_table_if_exists(db, table)
