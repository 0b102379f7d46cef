"""
Repair 003: Add Regional Roles

Adds the chapter-scoped and regional permissions, grants them to
chapter_admin and regional_coordinator, and creates user_chapter_roles
for per-chapter role assignments. Grants are additive; the
permissions_and_roles seed remains the source of truth for full sync.
"""

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from eoty_db.database import introspection
from eoty_db.database.migrations.base import Migration
from eoty_db.database.schema_ops import create_table_if_not_exists, id_column, timestamps
from eoty_db.seeding.catalog import (
    PERMISSIONS,
    ROLE_PERMISSIONS,
    sync_permissions,
    sync_role_permissions,
    sync_roles,
)

REGIONAL_PERMISSIONS = (
    "chapter:admin_own",
    "chapter:view_region",
    "chapter:coordinate_region",
    "content:create_chapter",
    "content:edit_chapter",
    "content:approve_chapter",
    "content:review_region",
    "discussion:moderate_chapter",
    "user:view_chapter",
    "user:manage_chapter",
    "user:approve_chapter_admin",
    "analytics:view_chapter",
    "analytics:view_region",
)

REGIONAL_ROLES = ("chapter_admin", "regional_coordinator")


class AddRegionalRoles(Migration):
    description = "Add chapter/regional permissions, roles and user_chapter_roles"

    def apply(self, db):
        sync_permissions(db, {key: PERMISSIONS[key] for key in REGIONAL_PERMISSIONS})
        sync_roles(db)
        for role in REGIONAL_ROLES:
            sync_role_permissions(db, role, ROLE_PERMISSIONS[role], prune=False)

        # Match users.id, which is TEXT only once user ids have been converted.
        user_id_type = Text if introspection.is_text_type(
            introspection.column_type(db, "users", "id")
        ) else Integer
        create_table_if_not_exists(
            db,
            "user_chapter_roles",
            id_column(),
            Column("user_id", user_id_type, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            Column("chapter_id", Integer, ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False),
            Column("role", String(50), nullable=False),
            Column("permissions", JSON),
            Column("assigned_at", DateTime(timezone=True), server_default=func.now()),
            Column("assigned_by", Text),
            *timestamps(),
            UniqueConstraint("user_id", "chapter_id", "role", name="uq_user_chapter_roles_user_chapter_role"),
        )
