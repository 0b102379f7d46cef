"""
Migration 20251115000006: Chapter Discovery and Account Security

- chapters gain location and topic metadata for discovery
- user_chapters allows membership in several chapters
- users gain lockout and locale columns
- activity_logs and abnormal_activity_alerts record sign-in activity
- sso_providers / user_sso_accounts back single sign-on
- localization_settings holds per-user and system-wide locale defaults
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
    UniqueConstraint,
    false,
    func,
    true,
)

from eoty_db.database.migrations.base import Migration, TransactionalMode
from eoty_db.database.schema_ops import (
    add_column_if_not_exists,
    create_table_if_not_exists,
    drop_column_if_exists,
    drop_table_if_exists,
    id_column,
    timestamps,
)

TABLES = (
    "localization_settings",
    "user_sso_accounts",
    "sso_providers",
    "abnormal_activity_alerts",
    "activity_logs",
    "user_chapters",
)


def _chapter_columns() -> list[Column]:
    return [
        Column("country", String(100)),
        Column("city", String(100)),
        Column("timezone", String(64), server_default="UTC"),
        Column("language", String(10), server_default="en"),
        Column("topics", JSON),
        Column("region", String(100)),
        Column("latitude", Numeric(10, 8)),
        Column("longitude", Numeric(11, 8)),
    ]


def _user_columns() -> list[Column]:
    return [
        Column("failed_login_attempts", Integer, server_default="0"),
        Column("account_locked_until", DateTime(timezone=True)),
        Column("locale", String(10), server_default="en"),
        Column("timezone", String(64)),
        Column("preferred_chapters", JSON),
    ]


def _now(name: str) -> Column:
    return Column(name, DateTime(timezone=True), server_default=func.now())


class EnhanceChapterAuth(Migration):
    description = "Add chapter discovery, multi-chapter membership, security logging and SSO"
    transactional_mode = TransactionalMode.WRAP

    def apply(self, db):
        for column in _chapter_columns():
            add_column_if_not_exists(db, "chapters", column)
        for column in _user_columns():
            add_column_if_not_exists(db, "users", column)

        create_table_if_not_exists(
            db,
            "user_chapters",
            id_column(),
            Column("user_id", Integer),
            Column("chapter_id", Integer, ForeignKey("chapters.id", ondelete="CASCADE")),
            Column("role", String(50), server_default="member"),
            Column("is_primary", Boolean, server_default=false()),
            _now("joined_at"),
            *timestamps(),
            UniqueConstraint("user_id", "chapter_id", name="uq_user_chapters_user_chapter"),
            Index("ix_user_chapters_user_primary", "user_id", "is_primary"),
            Index("ix_user_chapters_chapter_role", "chapter_id", "role"),
        )

        create_table_if_not_exists(
            db,
            "activity_logs",
            id_column(),
            Column("user_id", Integer),
            Column("activity_type", String(50), nullable=False),
            Column("ip_address", String(64)),
            Column("user_agent", String(500)),
            Column("device_type", String(50)),
            Column("browser", String(100)),
            Column("os", String(100)),
            Column("location", String(255)),
            Column("success", Boolean, server_default=true()),
            Column("failure_reason", Text),
            Column("metadata", JSON),
            _now("created_at"),
            Index("ix_activity_logs_user_type_created", "user_id", "activity_type", "created_at"),
            Index("ix_activity_logs_ip_created", "ip_address", "created_at"),
        )

        create_table_if_not_exists(
            db,
            "abnormal_activity_alerts",
            id_column(),
            Column("user_id", Integer),
            Column("alert_type", String(50), nullable=False),
            Column("description", Text, nullable=False),
            Column("severity", String(20), server_default="medium"),
            Column("is_resolved", Boolean, server_default=false()),
            Column("resolved_at", DateTime(timezone=True)),
            Column("resolved_by", Integer),
            Column("activity_data", JSON),
            _now("created_at"),
            Index("ix_abnormal_activity_alerts_user_resolved", "user_id", "is_resolved", "created_at"),
        )

        create_table_if_not_exists(
            db,
            "sso_providers",
            id_column(),
            Column("provider_name", String(50), nullable=False, unique=True),
            Column("client_id", String(255), nullable=False),
            Column("client_secret", String(255), nullable=False),
            Column("authorization_url", String(500), nullable=False),
            Column("token_url", String(500), nullable=False),
            Column("user_info_url", String(500), nullable=False),
            Column("scopes", JSON),
            Column("is_active", Boolean, server_default=true()),
            *timestamps(),
        )

        create_table_if_not_exists(
            db,
            "user_sso_accounts",
            id_column(),
            Column("user_id", Integer),
            Column("provider_id", Integer, ForeignKey("sso_providers.id", ondelete="CASCADE")),
            Column("provider_user_id", String(255), nullable=False),
            Column("email", String(255), nullable=False),
            Column("profile_picture", String(500)),
            Column("profile_data", JSON),
            Column("last_used_at", DateTime(timezone=True)),
            *timestamps(),
            UniqueConstraint("provider_id", "provider_user_id", name="uq_user_sso_accounts_provider_user"),
        )

        create_table_if_not_exists(
            db,
            "localization_settings",
            id_column(),
            Column("user_id", Integer),
            Column("locale", String(10), server_default="en"),
            Column("timezone", String(64), server_default="UTC"),
            Column("date_format", String(20), server_default="YYYY-MM-DD"),
            Column("time_format", String(10), server_default="24h"),
            Column("currency", String(3), server_default="USD"),
            Column("content_filters", JSON),
            *timestamps(),
            UniqueConstraint("user_id", name="uq_localization_settings_user"),
            Index("ix_localization_settings_locale", "locale"),
        )

    def revert(self, db):
        for table in TABLES:
            drop_table_if_exists(db, table)
        for column in _user_columns():
            drop_column_if_exists(db, "users", column.name)
        for column in _chapter_columns():
            drop_column_if_exists(db, "chapters", column.name)
