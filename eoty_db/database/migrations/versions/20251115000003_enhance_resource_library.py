"""
Migration 20251115000003: Resource Library

Topic and publication date on resources, section-anchored notes that can
be shared with a chapter, admin validation of AI summaries, library
coverage tracking, exports, resource shares and a log of rejected
uploads.

`user_notes` and `ai_summaries` belong to the reader service and are not
created by any unit here. Their columns, and the note-sharing table that
references `user_notes`, are only added where those tables exist.
"""

import logging

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
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
    create_index_if_not_exists,
    create_table_if_not_exists,
    drop_table_if_exists,
    id_column,
    timestamps,
)

logger = logging.getLogger(__name__)

TABLES = (
    "unsupported_file_attempts",
    "resource_shares",
    "resource_exports",
    "resource_library_coverage",
    "shared_resource_notes",
)


def _summary_columns() -> list[Column]:
    return [
        Column("admin_validated", Boolean, server_default=false()),
        Column("admin_relevance_score", Numeric(3, 2)),
        Column("validated_by", Integer, ForeignKey("users.id", ondelete="SET NULL")),
        Column("validated_at", DateTime(timezone=True)),
        Column("validation_notes", Text),
        Column("word_count", Integer, server_default="0"),
        Column("meets_word_limit", Boolean, server_default=true()),
    ]


class EnhanceResourceLibrary(Migration):
    description = "Add resource topics, shared notes, summary validation, coverage, exports and shares"
    transactional_mode = TransactionalMode.WRAP

    def apply(self, db):
        add_column_if_not_exists(db, "resources", Column("topic", String(255)))
        add_column_if_not_exists(db, "resources", Column("published_date", Date))
        create_index_if_not_exists(db, "ix_resources_topic", "resources", ["topic"])
        create_index_if_not_exists(db, "ix_resources_published_date", "resources", ["published_date"])

        self._notes(db)
        self._summaries(db)

        create_table_if_not_exists(
            db,
            "resource_library_coverage",
            id_column(),
            Column("source_type", String(50), nullable=False),
            Column("source_name", String(255), nullable=False),
            Column("total_items", Integer, server_default="0"),
            Column("indexed_items", Integer, server_default="0"),
            Column("coverage_percentage", Numeric(5, 2), server_default="0"),
            Column("meets_requirement", Boolean, server_default=false()),
            Column("metadata", JSON),
            Column("last_updated", DateTime(timezone=True), server_default=func.now()),
            *timestamps(),
            UniqueConstraint("source_type", "source_name", name="uq_resource_library_coverage_source"),
            Index("ix_resource_library_coverage_type_met", "source_type", "meets_requirement"),
        )

        create_table_if_not_exists(
            db,
            "resource_exports",
            id_column(),
            Column("user_id", Text, nullable=False),
            Column("resource_id", Integer, ForeignKey("resources.id", ondelete="SET NULL")),
            Column("export_type", String(50), nullable=False),
            Column("format", String(20), nullable=False),
            Column("file_path", String(500)),
            Column("export_data", JSON),
            *timestamps(),
            Index("ix_resource_exports_user_created", "user_id", "created_at"),
            Index("ix_resource_exports_resource_id", "resource_id"),
        )

        create_table_if_not_exists(
            db,
            "resource_shares",
            id_column(),
            Column("resource_id", Integer, ForeignKey("resources.id", ondelete="CASCADE"), nullable=False),
            Column("shared_by", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            Column("chapter_id", Integer, ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False),
            Column("share_type", String(20), server_default="view"),
            Column("message", Text),
            *timestamps(),
            Index("ix_resource_shares_chapter_created", "chapter_id", "created_at"),
            Index("ix_resource_shares_resource_id", "resource_id"),
            Index("ix_resource_shares_shared_by", "shared_by"),
        )

        create_table_if_not_exists(
            db,
            "unsupported_file_attempts",
            id_column(),
            Column("user_id", Text, nullable=False),
            Column("file_name", String(255), nullable=False),
            Column("file_type", String(50), nullable=False),
            Column("mime_type", String(100)),
            Column("file_size", BigInteger),
            Column("error_message", Text),
            *timestamps(),
            Index("ix_unsupported_file_attempts_type_created", "file_type", "created_at"),
            Index("ix_unsupported_file_attempts_user_id", "user_id"),
        )

    def _notes(self, db):
        if not introspection.has_table(db, "user_notes"):
            logger.info("user_notes does not exist; skipping section anchors and note sharing")
            return

        add_column_if_not_exists(db, "user_notes", Column("section_anchor", String(255)))
        add_column_if_not_exists(db, "user_notes", Column("section_text", Text))
        add_column_if_not_exists(db, "user_notes", Column("section_position", Integer))
        if introspection.has_column(db, "user_notes", "resource_id"):
            create_index_if_not_exists(
                db, "ix_user_notes_resource_anchor", "user_notes", ["resource_id", "section_anchor"]
            )

        create_table_if_not_exists(
            db,
            "shared_resource_notes",
            id_column(),
            Column("note_id", Integer, ForeignKey("user_notes.id", ondelete="CASCADE"), nullable=False),
            Column("shared_by", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            Column("chapter_id", Integer, ForeignKey("chapters.id", ondelete="CASCADE")),
            Column("is_approved", Boolean, server_default=false()),
            *timestamps(),
            Index("ix_shared_resource_notes_chapter_approved", "chapter_id", "is_approved"),
            Index("ix_shared_resource_notes_shared_by", "shared_by"),
        )

    def _summaries(self, db):
        if not introspection.has_table(db, "ai_summaries"):
            logger.info("ai_summaries does not exist; skipping summary validation columns")
            return

        for column in _summary_columns():
            add_column_if_not_exists(db, "ai_summaries", column)
        if introspection.has_column(db, "ai_summaries", "relevance_score"):
            create_index_if_not_exists(
                db,
                "ix_ai_summaries_validated_relevance",
                "ai_summaries",
                ["admin_validated", "relevance_score"],
            )

    def revert(self, db):
        for table in TABLES:
            drop_table_if_exists(db, table)
