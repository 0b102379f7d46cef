"""
RBAC Permission Catalog

Reference data for the platform's role based access control: every
permission key with its description, the role list and the permissions
each role is granted. Shared by the permissions seed and the regional
roles repair script.

Permission ids are always resolved by key, never by insertion offset.
"""

import logging
from typing import Any

from eoty_db.database.schema_ops import insert_if_missing, lookup_id, upsert

logger = logging.getLogger(__name__)

PERMISSIONS: dict[str, str] = {
    # Courses and lessons
    "course:view": "View courses",
    "course:create": "Create courses",
    "course:edit_own": "Edit own courses",
    "course:edit_any": "Edit any courses",
    "course:delete_own": "Delete own courses",
    "course:delete_any": "Delete any courses",
    "course:publish": "Publish courses",
    "lesson:view": "View lessons",
    "lesson:create": "Create lessons",
    "lesson:edit_own": "Edit own lessons",
    "lesson:edit_any": "Edit any lessons",
    "lesson:delete_own": "Delete own lessons",
    "lesson:delete_any": "Delete any lessons",
    # Videos
    "video:upload": "Upload videos",
    "video:stream": "Stream videos",
    "video:manage": "Manage videos",
    "video:delete_own": "Delete own videos",
    "video:delete_any": "Delete any videos",
    # Quizzes
    "quiz:take": "Take quizzes",
    "quiz:create": "Create quizzes",
    "quiz:edit_own": "Edit own quizzes",
    "quiz:edit_any": "Edit any quizzes",
    # Discussions
    "discussion:view": "View discussions",
    "discussion:create": "Create discussions",
    "discussion:moderate": "Moderate discussions",
    "discussion:delete_any": "Delete any discussions",
    "discussion:moderate_chapter": "Moderate discussions in own chapter",
    # Content
    "content:view": "View content management",
    "content:flag": "Flag content for review",
    "content:review": "Review flagged content",
    "content:moderate": "Moderate content",
    "content:manage": "Manage all content",
    "content:create": "Create content",
    "content:edit_own": "Edit own content",
    "content:create_chapter": "Create chapter content",
    "content:edit_chapter": "Edit chapter content",
    "content:approve_chapter": "Approve chapter content",
    "content:review_region": "Review content across the region",
    # Users
    "user:view": "View user profiles",
    "user:create": "Create users",
    "user:edit_own": "Edit own profile",
    "user:edit_any": "Edit any user profile",
    "user:manage": "Manage users",
    "user:manage_roles": "Manage user roles",
    "user:view_chapter": "View users in own chapter",
    "user:manage_chapter": "Manage users in own chapter",
    "user:approve_chapter_admin": "Approve chapter admin assignments",
    # Chapters
    "chapter:view": "View chapters",
    "chapter:manage": "Manage chapters",
    "chapter:admin_own": "Administer own chapter",
    "chapter:view_region": "View chapters in the region",
    "chapter:coordinate_region": "Coordinate chapters across the region",
    # Analytics
    "analytics:view": "View analytics",
    "analytics:view_own": "View own analytics",
    "analytics:view_chapter": "View chapter analytics",
    "analytics:view_region": "View regional analytics",
    # Learning
    "progress:view": "View progress",
    "notes:create": "Create notes",
    "notes:view_own": "View own notes",
    # Administration
    "data:export": "Export data",
    "audit:view": "View audit logs",
    "admin:view": "View admin panel",
    "admin:moderate": "Admin moderation access",
    "system:admin": "Full system access",
}

ROLES: dict[str, str] = {
    "guest": "Unauthenticated visitor with read-only catalog access",
    "youth": "Under-18 member; student access with privacy protections",
    "student": "Learner participating in courses and discussions",
    "moderator": "Reviews flagged content and moderates discussions",
    "teacher": "Creates and manages courses",
    "chapter_admin": "Administers a single chapter",
    "regional_coordinator": "Coordinates chapters across a region",
    "admin": "Full platform administration",
}

_STUDENT = [
    "course:view",
    "lesson:view",
    "quiz:take",
    "discussion:view",
    "discussion:create",
    "user:edit_own",
    "progress:view",
    "notes:create",
    "notes:view_own",
    "video:stream",
]

_CHAPTER_ADMIN = _STUDENT + [
    "chapter:admin_own",
    "discussion:moderate_chapter",
    "user:view_chapter",
    "user:manage_chapter",
    "analytics:view_chapter",
    "content:create",
    "content:edit_own",
    "content:create_chapter",
    "content:edit_chapter",
    "content:approve_chapter",
    "video:upload",
    "video:manage",
]

ROLE_PERMISSIONS: dict[str, list[str]] = {
    "guest": ["course:view", "lesson:view"],
    "youth": list(_STUDENT),
    "student": _STUDENT + ["user:view"],
    "moderator": [
        "course:view",
        "lesson:view",
        "quiz:take",
        "discussion:view",
        "discussion:create",
        "discussion:moderate",
        "discussion:delete_any",
        "content:moderate",
        "content:flag",
        "content:review",
        "user:view",
        "user:edit_own",
        "analytics:view_own",
    ],
    "teacher": [
        "course:view",
        "course:create",
        "course:edit_own",
        "course:delete_own",
        "course:publish",
        "lesson:view",
        "lesson:create",
        "lesson:edit_own",
        "lesson:delete_own",
        "video:upload",
        "video:stream",
        "video:manage",
        "video:delete_own",
        "quiz:take",
        "quiz:create",
        "quiz:edit_own",
        "discussion:view",
        "discussion:create",
        "user:edit_own",
        "user:view",
        "analytics:view_own",
        "progress:view",
        "notes:create",
        "notes:view_own",
    ],
    "chapter_admin": _CHAPTER_ADMIN,
    "regional_coordinator": _CHAPTER_ADMIN + [
        "chapter:view_region",
        "chapter:coordinate_region",
        "analytics:view_region",
        "analytics:view",
        "user:approve_chapter_admin",
        "user:view",
        "content:review_region",
        "content:moderate",
    ],
    "admin": list(PERMISSIONS),
}


def category_of(permission_key: str) -> str | None:
    """`course:view` -> `course`."""
    prefix, sep, _ = permission_key.partition(":")
    return prefix if sep and prefix else None


def sync_permissions(db: Any, permissions: dict[str, str] | None = None) -> dict[str, int]:
    """
    Upsert permission rows by key.

    Args:
        db: Adapter (usually transaction-bound)
        permissions: key -> description; the whole catalog when omitted

    Returns:
        Count of rows per outcome ("inserted", "updated", "unchanged")
    """
    counts = {"inserted": 0, "updated": 0, "unchanged": 0}
    has_category = db.has_column("user_permissions", "category")
    for key, description in (permissions or PERMISSIONS).items():
        values: dict[str, Any] = {"description": description}
        if has_category:
            values["category"] = category_of(key)
        counts[upsert(db, "user_permissions", {"permission_key": key}, values)] += 1
    logger.info(
        f"Permissions: {counts['inserted']} inserted, {counts['updated']} updated, "
        f"{counts['unchanged']} unchanged"
    )
    return counts


def sync_roles(db: Any, roles: dict[str, str] | None = None) -> int:
    """Upsert role rows by name; returns the number of new roles."""
    inserted = 0
    for name, description in (roles or ROLES).items():
        if upsert(db, "roles", {"name": name}, {"description": description}) == "inserted":
            inserted += 1
    return inserted


def sync_role_permissions(db: Any, role: str, keys: list[str], prune: bool = True) -> tuple[int, int]:
    """
    Make `role` hold exactly `keys` (or at least `keys` when not pruning).

    Keys missing from user_permissions are skipped with a warning.

    Returns:
        (granted, revoked) row counts
    """
    wanted = set()
    for key in dict.fromkeys(keys):
        permission_id = lookup_id(db, "user_permissions", "permission_key", key)
        if permission_id is None:
            logger.warning(f"Permission {key} does not exist; not granted to {role}")
            continue
        wanted.add(permission_id)

    granted = sum(
        1
        for permission_id in sorted(wanted)
        if insert_if_missing(db, "role_permissions", {"role": role, "permission_id": permission_id})
    )

    revoked = 0
    if prune:
        current = db.fetch_all(
            "SELECT permission_id FROM role_permissions WHERE role = :role", {"role": role}
        )
        for row in current:
            if row["permission_id"] not in wanted:
                revoked += db.execute(
                    "DELETE FROM role_permissions WHERE role = :role AND permission_id = :pid",
                    {"role": role, "pid": row["permission_id"]},
                ).affected

    if granted or revoked:
        logger.info(f"Role {role}: {granted} granted, {revoked} revoked")
    return granted, revoked
