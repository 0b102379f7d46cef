"""
Seed 002: Permissions and Role Mappings

Brings user_permissions and role_permissions in line with the catalog.
Grants missing mappings and revokes mappings the catalog no longer lists.
"""

from eoty_db.seeding.base import Seed
from eoty_db.seeding.catalog import ROLE_PERMISSIONS, sync_permissions, sync_role_permissions


class PermissionsAndRoles(Seed):
    description = "Sync the RBAC permission catalog and role mappings"

    def run(self, db, settings):
        sync_permissions(db)
        for role, keys in ROLE_PERMISSIONS.items():
            sync_role_permissions(db, role, keys)
