"""
Seed 001: Roles and Default Chapter
"""

import logging

from eoty_db.database.schema_ops import insert_if_missing
from eoty_db.seeding.base import Seed
from eoty_db.seeding.catalog import sync_roles

logger = logging.getLogger(__name__)

DEFAULT_CHAPTER = {
    "name": "EOTY Global",
    "location": "Online",
    "description": "Default chapter for members not yet assigned to a local chapter",
}


class RolesAndChapters(Seed):
    description = "Create platform roles and the default chapter"

    def run(self, db, settings):
        added = sync_roles(db)
        if added:
            logger.info(f"Added {added} role(s)")

        if insert_if_missing(
            db,
            "chapters",
            {"name": DEFAULT_CHAPTER["name"]},
            {"location": DEFAULT_CHAPTER["location"], "description": DEFAULT_CHAPTER["description"]},
        ):
            logger.info(f"Created chapter {DEFAULT_CHAPTER['name']}")
