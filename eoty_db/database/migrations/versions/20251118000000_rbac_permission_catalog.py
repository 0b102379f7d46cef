"""
Migration 20251118000000: RBAC Permission Catalog

Prepares the RBAC tables for the full permission catalog:
- user_permissions.category, backfilled from the `<category>:<action>` key
- a unique (role, permission_id) index so mappings can be upserted

The permissions and role mappings themselves are reference data and are
maintained by the permissions_and_roles seed. Duplicate mappings left by
older deployments are removed before the unique index is built.
"""

import logging

from sqlalchemy import Column, String

from eoty_db.database import introspection
from eoty_db.database.migrations.base import Migration, TransactionalMode
from eoty_db.database.schema_ops import (
    add_column_if_not_exists,
    create_index_if_not_exists,
    drop_column_if_exists,
    drop_index_if_exists,
)

logger = logging.getLogger(__name__)

ROLE_PERMISSION_INDEX = "uq_role_permissions_role_permission"


class RbacPermissionCatalog(Migration):
    description = "Add permission categories and unique role/permission mappings"
    transactional_mode = TransactionalMode.WRAP

    def apply(self, db):
        add_column_if_not_exists(db, "user_permissions", Column("category", String(50)))

        # Only rows still missing a category are touched.
        if db.is_sqlite:
            prefix_sql = "substr(permission_key, 1, instr(permission_key, ':') - 1)"
            has_prefix_sql = "instr(permission_key, ':') > 1"
        else:
            prefix_sql = "split_part(permission_key, ':', 1)"
            has_prefix_sql = "position(':' in permission_key) > 1"
        backfilled = db.execute(
            f"UPDATE user_permissions SET category = {prefix_sql} "
            f"WHERE category IS NULL AND {has_prefix_sql}"
        ).affected
        if backfilled:
            logger.info(f"Backfilled category for {backfilled} permissions")

        if not introspection.has_index(db, "role_permissions", ["role", "permission_id"]):
            removed = db.execute(
                "DELETE FROM role_permissions WHERE id NOT IN ("
                "SELECT keep_id FROM (SELECT MIN(id) AS keep_id FROM role_permissions "
                "GROUP BY role, permission_id) AS keepers)"
            ).affected
            if removed:
                logger.warning(f"Removed {removed} duplicate role/permission mappings")
            create_index_if_not_exists(
                db, ROLE_PERMISSION_INDEX, "role_permissions", ["role", "permission_id"], unique=True
            )

    def revert(self, db):
        drop_index_if_exists(db, ROLE_PERMISSION_INDEX, "role_permissions")
        drop_column_if_exists(db, "user_permissions", "category")
