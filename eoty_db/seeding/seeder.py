"""
Seeder

Runs seed units in file order under the seeder lock. Seeds have no
ledger; each one is internally idempotent, so running the whole set
again converges on the same rows.

In production, seeds that are not marked production-safe are refused up
front unless forced, so a refused invocation changes nothing.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from eoty_db.core.config import Settings
from eoty_db.database.migrations.base import TransactionalMode
from eoty_db.database.migrations.lock import SEEDER_LOCK, MigrationLock
from eoty_db.database.migrations.manager import UNIT_FILE_PATTERN, load_unit_classes
from eoty_db.exceptions import SeedError, SeedFailedError, SeedRefusedError

from .base import Seed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeedUnit:
    name: str
    seed: Seed
    path: Path | None
    prefix: int

    @property
    def short_name(self) -> str:
        return self.name.split("_", 1)[-1]


@dataclass
class SeedResult:
    executed: list[str] = field(default_factory=list)
    execution_time_ms: float = 0.0
    forced: bool = False


def _defines_run(cls: type) -> bool:
    return any("run" in vars(klass) for klass in cls.__mro__ if klass not in (Seed, object))


def load_seeds(directory: str | Path) -> list[SeedUnit]:
    """
    Load seed units from `directory`, ordered by numeric prefix then name.

    Raises:
        InvalidMigrationError: A file is malformed
        SeedError: Two seeds share a name, or a seed lacks run()
    """
    units: dict[str, SeedUnit] = {}
    for path, seed_class in load_unit_classes(Path(directory), Seed):
        if not _defines_run(seed_class):
            raise SeedError(f"{path.name}: {seed_class.__name__} does not implement run()")

        name = seed_class.name or path.stem
        if name in units:
            raise SeedError(
                f"Duplicate seed name {name} in {path.name} and {units[name].path.name}",
                seed_name=name,
            )
        seed = seed_class()
        seed.name = name
        match = UNIT_FILE_PATTERN.match(path.stem)
        units[name] = SeedUnit(name=name, seed=seed, path=path, prefix=int(match.group("prefix")))

    return sorted(units.values(), key=lambda unit: (unit.prefix, unit.name))


class Seeder:
    """
    Runs seed units against a migrated database.

    Usage:
        seeder = Seeder(db, settings)
        result = seeder.run()
    """

    def __init__(
        self,
        db_connection: Any,
        settings: Settings | None = None,
        seeds: list[SeedUnit] | None = None,
    ) -> None:
        """
        Initialize the seeder.

        Args:
            db_connection: Plain database adapter
            settings: Engine settings; environment and force flag gate
                production runs
            seeds: Preloaded seed units; loaded from settings.seeds_path
                when omitted
        """
        self.db = db_connection
        self.settings = settings or Settings()
        self._seeds = seeds

    @property
    def seeds(self) -> list[SeedUnit]:
        if self._seeds is None:
            self._seeds = load_seeds(self.settings.seeds_path)
        return self._seeds

    def select(self, only: list[str] | None = None) -> list[SeedUnit]:
        """Seeds to run, in order. `only` matches full names or names without the prefix."""
        if not only:
            return list(self.seeds)

        unknown = [
            name for name in only
            if not any(name in (unit.name, unit.short_name) for unit in self.seeds)
        ]
        if unknown:
            raise SeedError(f"Unknown seed(s): {', '.join(unknown)}")
        return [
            unit for unit in self.seeds
            if unit.name in only or unit.short_name in only
        ]

    def check_allowed(self, units: list[SeedUnit], force: bool) -> None:
        """
        Refuse production runs of unsafe seeds.

        Raises:
            SeedRefusedError: Production environment, not forced, and at
                least one selected seed is not production-safe
        """
        if not self.settings.is_production:
            return
        refused = [unit.name for unit in units if not unit.seed.production_safe]
        if not refused:
            return
        if force:
            logger.warning(f"Forcing production run of unsafe seeds: {', '.join(refused)}")
            return
        raise SeedRefusedError(
            f"Refusing to run seeds in production: {', '.join(refused)} "
            "(set EOTY_FORCE_SEED=1 or pass --force to override)",
            refused=refused,
        )

    def run(self, only: list[str] | None = None, force: bool | None = None) -> SeedResult:
        """
        Run the selected seeds in order under the seeder lock.

        Args:
            only: Seed names to run (all when None)
            force: Override the production gate (settings.force_seed when None)

        Returns:
            SeedResult listing executed seeds

        Raises:
            SeedRefusedError: Production gate; nothing was run
            LockUnavailableError: Another seeder holds the lock
            SeedFailedError: A seed failed; later seeds were not run
        """
        force = self.settings.force_seed if force is None else force
        units = self.select(only)
        self.check_allowed(units, force)

        result = SeedResult(forced=force)
        start_time = time.time()
        if not units:
            logger.info("No seeds to run")
            return result

        lock = MigrationLock.from_settings(self.db, self.settings, name=SEEDER_LOCK)
        lock.acquire()
        try:
            for unit in units:
                lock.refresh()
                self._run_one(unit)
                result.executed.append(unit.name)
        finally:
            lock.release()
            result.execution_time_ms = (time.time() - start_time) * 1000

        logger.info(f"Ran {len(result.executed)} seed(s) in {result.execution_time_ms:.1f}ms")
        return result

    def _run_one(self, unit: SeedUnit) -> None:
        start = time.time()
        logger.info(f"Seed {unit.name} started: {unit.seed.description}")
        try:
            if unit.seed.mode is TransactionalMode.WRAP:
                with self.db.transaction() as tx:
                    unit.seed.run(tx, self.settings)
            else:
                unit.seed.run(self.db, self.settings)
        except Exception as e:
            logger.error(f"Seed {unit.name} failed: {e}")
            raise SeedFailedError(unit.name, e) from e
        logger.info(f"Seed {unit.name} completed in {(time.time() - start) * 1000:.1f}ms")
