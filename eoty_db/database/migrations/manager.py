"""
Migration Manager

Discovers migration unit files, validates them and exposes the immutable,
totally ordered migration registry.

Unit files are named `<numeric prefix>_<name>.py` and hold exactly one
`Migration` subclass. Order key: (numeric prefix, declared sequence, id).
"""

import hashlib
import importlib.util
import inspect
import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from types import ModuleType

from eoty_db.exceptions import (
    DuplicateMigrationIdError,
    InvalidMigrationError,
    UnknownMigrationError,
)

from .base import Migration, TransactionalMode, defines_apply

logger = logging.getLogger(__name__)

UNIT_FILE_PATTERN = re.compile(r"^(?P<prefix>\d+)_(?P<name>[A-Za-z0-9_]+)$")

UNIT_TEMPLATE = '''"""
Migration {unit_id}: {title}
"""

import logging

from sqlalchemy import Column, Integer, String

from eoty_db.database.migrations.base import Migration, TransactionalMode
from eoty_db.database.schema_ops import (
    add_column_if_not_exists,
    create_table_if_not_exists,
    drop_table_if_exists,
)

logger = logging.getLogger(__name__)


class {class_name}(Migration):
    description = "{title}"
    transactional_mode = TransactionalMode.WRAP

    def apply(self, db):
        # Guard every statement so the unit is safe to re-run.
        pass

    def revert(self, db):
        pass
'''


def file_checksum(path: Path) -> str:
    """SHA-256 of a unit's source file."""
    return hashlib.sha256(path.read_bytes()).hexdigest()


def _import_file(path: Path) -> ModuleType:
    module_name = f"eoty_db_units.{path.parent.name}.{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise InvalidMigrationError(f"Could not load spec for {path}", path=str(path))

    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except InvalidMigrationError:
        raise
    except Exception as e:
        raise InvalidMigrationError(
            f"Failed to import unit file {path.name}: {e}", path=str(path)
        ) from e
    return module


def load_unit_classes(directory: Path, base_class: type) -> list[tuple[Path, type]]:
    """
    Import every unit file in `directory` and return its single unit class.

    Args:
        directory: Folder of `<prefix>_<name>.py` files
        base_class: Class each unit must subclass

    Returns:
        (path, class) pairs in file-name order

    Raises:
        InvalidMigrationError: Bad file name, import failure, or not exactly
            one `base_class` subclass defined in the file
    """
    if not directory.exists():
        logger.warning(f"Unit directory does not exist: {directory}")
        return []

    found = []
    for path in sorted(directory.glob("*.py")):
        if path.name.startswith("_"):
            continue
        if not UNIT_FILE_PATTERN.match(path.stem):
            raise InvalidMigrationError(
                f"Unit file name must look like <number>_<name>.py: {path.name}",
                path=str(path),
            )

        module = _import_file(path)
        classes = [
            obj
            for _, obj in inspect.getmembers(module, inspect.isclass)
            if issubclass(obj, base_class)
            and obj is not base_class
            and obj.__module__ == module.__name__
        ]
        if len(classes) != 1:
            raise InvalidMigrationError(
                f"{path.name} must define exactly one {base_class.__name__} subclass, "
                f"found {len(classes)}",
                path=str(path),
            )
        found.append((path, classes[0]))
    return found


@dataclass(frozen=True)
class MigrationUnit:
    """One registry entry: a unit instance plus its source metadata."""

    id: str
    migration: Migration
    path: Path | None
    prefix: int
    sequence: int
    checksum: str | None

    @property
    def description(self) -> str:
        return self.migration.description

    @property
    def mode(self) -> TransactionalMode:
        return self.migration.mode

    @property
    def reversible(self) -> bool:
        return self.migration.reversible

    @property
    def sort_key(self) -> tuple[int, int, str]:
        return (self.prefix, self.sequence, self.id)


def build_unit(path: Path, migration_class: type[Migration]) -> MigrationUnit:
    """Validate a loaded class and wrap it as a registry entry."""
    if not defines_apply(migration_class):
        raise InvalidMigrationError(
            f"{path.name}: {migration_class.__name__} does not implement apply()",
            path=str(path),
        )

    migration = migration_class()
    try:
        mode = TransactionalMode.parse(migration_class.transactional_mode)
    except ValueError as e:
        raise InvalidMigrationError(f"{path.name}: {e}", path=str(path)) from e

    unit_id = migration_class.id or path.stem
    if not isinstance(unit_id, str) or not unit_id.strip():
        raise InvalidMigrationError(f"{path.name}: unit id must be a non-empty string", path=str(path))

    match = UNIT_FILE_PATTERN.match(unit_id) or UNIT_FILE_PATTERN.match(path.stem)
    prefix = int(match.group("prefix"))

    # Instances carry the resolved id so units can log it.
    migration.id = unit_id
    migration.transactional_mode = mode

    return MigrationUnit(
        id=unit_id,
        migration=migration,
        path=path,
        prefix=prefix,
        sequence=int(migration_class.sequence or 0),
        checksum=file_checksum(path),
    )


class MigrationRegistry:
    """
    Immutable, totally ordered list of known migration units.

    Built once at startup; duplicate ids are fatal.
    """

    def __init__(self, units: Iterable[MigrationUnit], path: Path | None = None) -> None:
        """
        Initialize the registry.

        Args:
            units: Registry entries in any order
            path: Directory the units were loaded from (used by `scaffold`)

        Raises:
            DuplicateMigrationIdError: Two units share an id
        """
        self.path = Path(path) if path else None

        by_id: dict[str, list[MigrationUnit]] = {}
        for unit in units:
            by_id.setdefault(unit.id, []).append(unit)
        for unit_id, claims in by_id.items():
            if len(claims) > 1:
                raise DuplicateMigrationIdError(
                    unit_id, [str(u.path) for u in claims]
                )

        self._units: tuple[MigrationUnit, ...] = tuple(
            sorted((claims[0] for claims in by_id.values()), key=lambda u: u.sort_key)
        )
        self._index = {unit.id: i for i, unit in enumerate(self._units)}

    @classmethod
    def from_path(cls, path: str | Path) -> "MigrationRegistry":
        """Discover and load every unit file under `path`."""
        directory = Path(path)
        logger.info(f"Discovering migrations in: {directory}")
        units = [build_unit(p, klass) for p, klass in load_unit_classes(directory, Migration)]
        registry = cls(units, path=directory)
        logger.info(f"Discovered {len(registry)} migrations")
        return registry

    def __iter__(self) -> Iterator[MigrationUnit]:
        return iter(self._units)

    def __len__(self) -> int:
        return len(self._units)

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._index

    @property
    def units(self) -> tuple[MigrationUnit, ...]:
        return self._units

    @property
    def head(self) -> str | None:
        return self._units[-1].id if self._units else None

    def ids(self) -> list[str]:
        return [unit.id for unit in self._units]

    def get(self, unit_id: str) -> MigrationUnit:
        """
        Get a unit by id.

        Raises:
            UnknownMigrationError: If no unit has this id
        """
        try:
            return self._units[self._index[unit_id]]
        except KeyError:
            raise UnknownMigrationError(
                f"Unknown migration id: {unit_id}", migration_id=unit_id
            ) from None

    def index_of(self, unit_id: str) -> int:
        self.get(unit_id)
        return self._index[unit_id]

    def up_to(self, target: str | None = None) -> list[MigrationUnit]:
        """Units in order, up to and including `target` (all if None)."""
        if target is None:
            return list(self._units)
        return list(self._units[: self.index_of(target) + 1])

    def scaffold(self, name: str, now: datetime | None = None) -> Path:
        """Write a new, empty unit file named after the current UTC timestamp."""
        if self.path is None:
            raise InvalidMigrationError("Registry has no source directory to scaffold into")
        return scaffold(self.path, name, now=now)


def scaffold(directory: Path, name: str, now: datetime | None = None) -> Path:
    """
    Create a timestamp-prefixed unit file from the template.

    Args:
        directory: Target directory
        name: Free-form name; normalized to snake_case
        now: Timestamp override (tests)

    Returns:
        Path of the created file
    """
    slug = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")
    if not slug:
        raise InvalidMigrationError(f"Cannot derive a unit name from {name!r}")

    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d%H%M%S")
    unit_id = f"{stamp}_{slug}"
    path = Path(directory) / f"{unit_id}.py"
    if path.exists():
        raise InvalidMigrationError(f"Unit file already exists: {path}", path=str(path))

    class_name = "".join(part.capitalize() for part in slug.split("_")) or "NewMigration"
    if class_name[0].isdigit():
        class_name = f"Migration{class_name}"
    content = UNIT_TEMPLATE.format(
        unit_id=unit_id,
        title=slug.replace("_", " ").capitalize(),
        class_name=class_name,
    )

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    logger.info(f"Created migration file: {path}")
    return path
