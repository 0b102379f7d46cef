"""
Migration 003: Quizzes
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text, false, func, true

from eoty_db.database.migrations.base import Migration, TransactionalMode
from eoty_db.database.schema_ops import (
    create_table_if_not_exists,
    drop_table_if_exists,
    id_column,
    timestamps,
)


class Quizzes(Migration):
    description = "Create quizzes, quiz_questions and quiz_sessions"
    transactional_mode = TransactionalMode.WRAP

    def apply(self, db):
        create_table_if_not_exists(
            db,
            "quizzes",
            id_column(),
            Column("lesson_id", Integer, ForeignKey("lessons.id", ondelete="CASCADE")),
            Column("title", String(255), nullable=False),
            Column("description", Text),
            Column("passing_score", Integer, nullable=False, server_default="70"),
            Column("time_limit_minutes", Integer),
            Column("is_active", Boolean, nullable=False, server_default=true()),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "quiz_questions",
            id_column(),
            Column("quiz_id", Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False),
            Column("question", Text, nullable=False),
            Column("question_type", String(50), nullable=False, server_default="multiple_choice"),
            Column("options", JSON),
            Column("correct_answer", Text),
            Column("explanation", Text),
            Column("order_number", Integer, nullable=False, server_default="0"),
            Column("is_active", Boolean, nullable=False, server_default=true()),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "quiz_sessions",
            id_column(),
            Column("quiz_id", Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False),
            Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            Column("answers", JSON),
            Column("score_percentage", Float),
            Column("is_completed", Boolean, nullable=False, server_default=false()),
            Column("started_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
            Column("completed_at", DateTime(timezone=True)),
        )

    def revert(self, db):
        for table in ("quiz_sessions", "quiz_questions", "quizzes"):
            drop_table_if_exists(db, table)
