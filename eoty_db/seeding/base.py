"""
Base Seed Class

Seeds load reference and demo data once the schema is at head. Unlike
migrations they are not recorded anywhere: every seed runs on every
invocation and must converge on the same rows however often it runs
(check before insert, upsert on a natural key).
"""

import logging
from typing import Any, ClassVar

from eoty_db.database.migrations.base import TransactionalMode

logger = logging.getLogger(__name__)


class Seed:
    """
    Base class for all seed units.

    Example:
        class DefaultChapter(Seed):
            description = "Create the default chapter"

            def run(self, db, settings):
                insert_if_missing(db, "chapters", {"name": "Main"})
    """

    name: ClassVar[str | None] = None
    description: ClassVar[str] = ""
    # False for seeds that create accounts or demo content.
    production_safe: ClassVar[bool] = True
    transactional_mode: ClassVar[TransactionalMode | str] = TransactionalMode.WRAP

    def run(self, db: Any, settings: Any) -> None:
        """Load the seed's rows. Must be implemented by each seed."""
        raise NotImplementedError

    @property
    def mode(self) -> TransactionalMode:
        return TransactionalMode.parse(self.transactional_mode)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r} production_safe={self.production_safe}>"
