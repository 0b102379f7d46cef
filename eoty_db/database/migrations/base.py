"""
Base Migration Class

Every migration unit (and every repair script) is a subclass of
`Migration` living in its own file. The runner owns transactions,
ledger writes and logging; a unit only describes the schema change:

- `apply(db)` moves the schema forward and must be safe to re-run
- `revert(db)` undoes it; units that do not define it are irreversible
- `transactional_mode` declares how the runner wraps the unit
"""

import logging
from enum import Enum
from typing import Any, ClassVar

logger = logging.getLogger(__name__)


class TransactionalMode(str, Enum):
    """Atomicity contract a unit declares with the runner."""

    WRAP = "wrap"  # apply/revert and the ledger write share one transaction
    OWN = "own"  # the unit opens its own transactions
    NONE = "none"  # statements run in autocommit

    @classmethod
    def parse(cls, value: "TransactionalMode | str") -> "TransactionalMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"Unknown transactional mode {value!r}; expected one of "
                f"{', '.join(m.value for m in cls)}"
            ) from None


class Direction(str, Enum):
    """Direction of a planned or recorded step."""

    UP = "up"
    DOWN = "down"
    SCRIPT = "script"
    REPAIR = "repair"


class Migration:
    """
    Base class for all migration units.

    Subclasses set class attributes and implement `apply`. The loader fills
    in `id` from the file name when a unit does not declare one.

    Example:
        class AddUserRole(Migration):
            description = "Add users.role"

            def apply(self, db):
                add_column_if_not_exists(db, "users", Column("role", String(32)))
    """

    id: ClassVar[str | None] = None
    description: ClassVar[str] = ""
    sequence: ClassVar[int] = 0
    transactional_mode: ClassVar[TransactionalMode | str] = TransactionalMode.WRAP

    def apply(self, db: Any) -> None:
        """Move the schema forward. Must be implemented by each unit."""
        raise NotImplementedError

    @property
    def reversible(self) -> bool:
        """True if the subclass defines its own `revert`."""
        return "revert" in _defined_methods(type(self))

    @property
    def mode(self) -> TransactionalMode:
        return TransactionalMode.parse(self.transactional_mode)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r} mode={self.mode.value}>"


def _defined_methods(cls: type) -> set[str]:
    names: set[str] = set()
    for klass in cls.__mro__:
        if klass is Migration or klass is object:
            break
        names.update(vars(klass))
    return names


def defines_apply(cls: type) -> bool:
    """True if `cls` (or an intermediate base) overrides `apply`."""
    return "apply" in _defined_methods(cls)
