"""
Seed 006: Development Administrator

Creates (or updates) the administrator account used on development and
staging databases. Refused in production unless forced.
"""

import logging
import uuid

from eoty_db.database import introspection
from eoty_db.database.schema_ops import lookup_id, upsert
from eoty_db.seeding.base import Seed

logger = logging.getLogger(__name__)


class DevelopmentAdmin(Seed):
    description = "Default administrator account for non-production environments"
    production_safe = False

    def run(self, db, settings):
        values = {
            "name": "EOTY Administrator",
            "first_name": "EOTY",
            "last_name": "Administrator",
            "role": "admin",
            "is_active": True,
            "email_verified": True,
        }
        if settings.seed_admin_password_hash is not None:
            values["password_hash"] = settings.seed_admin_password_hash.get_secret_value()

        chapter_id = lookup_id(db, "chapters", "name", "EOTY Global")
        if chapter_id is not None:
            values["chapter_id"] = chapter_id

        email = settings.seed_admin_email
        # String user ids have no database default.
        if lookup_id(db, "users", "email", email) is None and introspection.is_text_type(
            introspection.column_type(db, "users", "id")
        ):
            values["id"] = uuid.uuid4().hex
        outcome = upsert(db, "users", {"email": email}, values)
        logger.info(f"Administrator {email}: {outcome}")
