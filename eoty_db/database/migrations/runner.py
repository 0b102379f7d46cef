"""
Migration Runner

Reconciles the ledger with the registry under the migration lock:
computes status, plans and executes up/down runs, applies repair plans to
the ledger and runs out-of-band repair scripts.
"""

import json
import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from eoty_db.core.config import Settings
from eoty_db.database.connection import DatabaseConnection
from eoty_db.exceptions import (
    ConfigurationError,
    DatabaseError,
    IdempotenceViolationError,
    IrreversibleMigrationError,
    LedgerDriftError,
    MigrationCancelledError,
    MigrationFailedError,
    SqlError,
    UnknownMigrationError,
)

from .base import Direction, TransactionalMode
from .ledger import HistoryEntry, Ledger, LedgerEntry, utcnow
from .lock import RUNNER_LOCK, MigrationLock
from .manager import MigrationRegistry, MigrationUnit

logger = logging.getLogger(__name__)


@dataclass
class MigrationStatus:
    """Ordered diff between the ledger and the registry."""

    applied: list[LedgerEntry] = field(default_factory=list)
    pending: list[MigrationUnit] = field(default_factory=list)
    orphans: list[LedgerEntry] = field(default_factory=list)
    out_of_order: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)

    @property
    def at_head(self) -> bool:
        return not self.pending and not self.orphans

    @property
    def has_drift(self) -> bool:
        return bool(self.orphans or self.out_of_order)

    def to_dict(self) -> dict[str, Any]:
        return {
            "at_head": self.at_head,
            "applied": [e.id for e in self.applied],
            "pending": [u.id for u in self.pending],
            "orphans": [e.id for e in self.orphans],
            "out_of_order": list(self.out_of_order),
            "modified": list(self.modified),
        }


@dataclass(frozen=True)
class PlannedStep:
    unit: MigrationUnit
    direction: Direction
    batch: int | None = None

    def describe(self) -> str:
        return f"{self.direction.value:<6} {self.unit.id} [{self.unit.mode.value}] {self.unit.description}"


@dataclass(frozen=True)
class StepResult:
    id: str
    direction: str
    execution_time_ms: float


@dataclass
class RunResult:
    direction: str
    batch: int | None = None
    steps: list[StepResult] = field(default_factory=list)
    execution_time_ms: float = 0.0

    @property
    def ids(self) -> list[str]:
        return [step.id for step in self.steps]


class RepairAction(BaseModel):
    """One ledger adjustment: mark a unit applied, forget a row, or restamp a checksum."""

    action: Literal["mark_applied", "forget", "restamp"]
    id: str = Field(min_length=1)


class RepairPlan(BaseModel):
    actions: list[RepairAction] = Field(default_factory=list)

    @classmethod
    def parse(cls, data: Any) -> "RepairPlan":
        """
        Validate a plan given as a list of actions or {"actions": [...]}.

        Raises:
            ConfigurationError: If the document is not a valid plan
        """
        if isinstance(data, cls):
            return data
        if isinstance(data, list):
            data = {"actions": data}
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise ConfigurationError(
                f"Invalid repair plan at {location or 'root'}: {first.get('msg')}",
                config_key="repair_plan",
            ) from e

    @classmethod
    def from_file(cls, path: str | Path) -> "RepairPlan":
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Cannot read repair plan {path}: {e}", config_key="repair_plan"
            ) from e
        return cls.parse(data)


@dataclass
class RepairResult:
    changes: list[dict[str, Any]] = field(default_factory=list)

    @property
    def changed(self) -> int:
        return sum(1 for change in self.changes if change["changed"])


class MigrationRunner:
    """
    High-level migration execution engine.

    One runner serves one invocation at a time. Concurrent invocations
    against the same database are serialized by the lock.
    """

    def __init__(
        self,
        db_connection: Any,
        registry: MigrationRegistry,
        settings: Settings | None = None,
        repairs: MigrationRegistry | None = None,
        progress_callback: Callable[[int, int, str], None] | None = None,
    ) -> None:
        """
        Initialize migration runner.

        Args:
            db_connection: Plain database adapter
            registry: Loaded migration registry
            settings: Engine settings (lock timings, out-of-order policy)
            repairs: Registry of repair scripts; loaded from
                settings.repairs_path on first use when omitted
            progress_callback: Optional callback for progress updates
                Called with (current_step, total_steps, message)
        """
        self.db = db_connection
        self.registry = registry
        self.settings = settings or Settings()
        self.ledger = Ledger(db_connection)
        self.progress_callback = progress_callback
        self._repairs = repairs
        self._cancel_requested = threading.Event()

    @classmethod
    def from_settings(
        cls, settings: Settings, db_connection: Any = None, **kwargs: Any
    ) -> "MigrationRunner":
        """Build a runner (and adapter, unless given) from settings."""
        db = db_connection or DatabaseConnection.from_config(settings.database)
        registry = MigrationRegistry.from_path(settings.migrations_path)
        return cls(db, registry, settings=settings, **kwargs)

    @property
    def repairs(self) -> MigrationRegistry:
        if self._repairs is None:
            self._repairs = MigrationRegistry.from_path(self.settings.repairs_path)
        return self._repairs

    # Status ----------------------------------------------------------------
    def status(self) -> MigrationStatus:
        """Diff the ledger against the registry. Never takes the lock."""
        return self._diff(self.ledger.entries())

    def _diff(self, entries: list[LedgerEntry]) -> MigrationStatus:
        applied_ids = {entry.id for entry in entries}
        known = [entry for entry in entries if entry.id in self.registry]
        orphans = [entry for entry in entries if entry.id not in self.registry]
        pending = [unit for unit in self.registry if unit.id not in applied_ids]

        last_applied = max((self.registry.index_of(e.id) for e in known), default=-1)
        out_of_order = [
            unit.id for unit in pending if self.registry.index_of(unit.id) < last_applied
        ]

        modified = []
        for entry in known:
            current = self.registry.get(entry.id).checksum
            if entry.checksum and current and entry.checksum != current:
                modified.append(entry.id)

        return MigrationStatus(
            applied=list(entries),
            pending=pending,
            orphans=orphans,
            out_of_order=out_of_order,
            modified=modified,
        )

    def history(self, limit: int = 50) -> list[HistoryEntry]:
        return self.ledger.history(limit)

    # Planning ----------------------------------------------------------------
    def plan(self, target: str | None = None) -> list[PlannedStep]:
        """Dry run: the steps `up(target)` would execute right now."""
        return self._plan_up(self.status(), target)

    def _plan_up(self, status: MigrationStatus, target: str | None) -> list[PlannedStep]:
        if target is None:
            selected = status.pending
        else:
            limit = self.registry.index_of(target)
            selected = [u for u in status.pending if self.registry.index_of(u.id) <= limit]
        return [PlannedStep(unit, Direction.UP) for unit in selected]

    def _plan_down(self, entries: list[LedgerEntry], target: str | None) -> list[PlannedStep]:
        ordered = sorted(entries, key=lambda e: (e.applied_at, e.id))
        if target is None:
            to_revert = ordered
        else:
            ids = [entry.id for entry in ordered]
            if target not in ids:
                raise UnknownMigrationError(
                    f"Target {target} is not recorded in the ledger", migration_id=target
                )
            to_revert = ordered[ids.index(target) + 1:]
        to_revert.reverse()

        orphans = [entry.id for entry in to_revert if entry.id not in self.registry]
        if orphans:
            raise LedgerDriftError(
                f"Cannot revert ledger entries missing from the registry: {', '.join(orphans)}",
                orphans=orphans,
            )

        steps = []
        for entry in to_revert:
            unit = self.registry.get(entry.id)
            if not unit.reversible:
                raise IrreversibleMigrationError(
                    f"Migration {unit.id} has no revert action; cannot move below it",
                    migration_id=unit.id,
                )
            steps.append(PlannedStep(unit, Direction.DOWN, batch=entry.batch))
        return steps

    def _check_drift(self, status: MigrationStatus, tolerate_out_of_order: bool) -> None:
        if status.orphans:
            orphans = [entry.id for entry in status.orphans]
            raise LedgerDriftError(
                f"Ledger has entries not in the registry: {', '.join(orphans)}",
                orphans=orphans,
                out_of_order=status.out_of_order,
            )
        if status.out_of_order and not tolerate_out_of_order:
            raise LedgerDriftError(
                "Pending migrations are ordered before already applied ones: "
                f"{', '.join(status.out_of_order)}",
                out_of_order=status.out_of_order,
            )
        if status.out_of_order:
            logger.warning(f"Applying out-of-order migrations: {status.out_of_order}")

    # Commands ----------------------------------------------------------------
    def up(
        self,
        target: str | None = None,
        repair_plan: RepairPlan | list[dict[str, Any]] | None = None,
    ) -> RunResult:
        """
        Apply pending migrations in order, up to and including `target`.

        Args:
            target: Registry id to stop at (head if None)
            repair_plan: Ledger adjustments applied first, under the same lock

        Returns:
            RunResult listing the applied units

        Raises:
            UnknownMigrationError: `target` is not in the registry
            LedgerDriftError: Orphans, or out-of-order units not tolerated
            LockUnavailableError: Another runner holds the lock
            MigrationFailedError: A unit failed; later units were not run
        """
        if target is not None:
            self.registry.get(target)
        plan = RepairPlan.parse(repair_plan) if repair_plan is not None else None
        if plan is not None:
            self._validate_repair_plan(plan)

        self.ledger.ensure_tables()
        lock = self._lock()
        entries = lock.acquire(snapshot=self.ledger.entries)
        try:
            if plan is not None:
                self._apply_repair_plan(plan)
                entries = self.ledger.entries()

            status = self._diff(entries)
            self._check_drift(
                status,
                tolerate_out_of_order=self.settings.allow_out_of_order or plan is not None,
            )

            steps = self._plan_up(status, target)
            batch = self.ledger.next_batch()
            steps = [PlannedStep(s.unit, s.direction, batch=batch) for s in steps]
            return self._execute(steps, Direction.UP, batch, lock)
        finally:
            lock.release()

    def down(self, target: str | None) -> RunResult:
        """
        Revert applied migrations, newest first, down to but not including `target`.

        The whole range is validated before anything runs.

        Raises:
            UnknownMigrationError: `target` is not in the ledger
            LedgerDriftError: An entry in range is missing from the registry
            IrreversibleMigrationError: A unit in range has no revert action
        """
        self.ledger.ensure_tables()
        lock = self._lock()
        entries = lock.acquire(snapshot=self.ledger.entries)
        try:
            steps = self._plan_down(entries, target)
            return self._execute(steps, Direction.DOWN, None, lock)
        finally:
            lock.release()

    def repair(self, plan: RepairPlan | list[dict[str, Any]]) -> RepairResult:
        """Apply ledger adjustments without running any apply/revert action."""
        plan = RepairPlan.parse(plan)
        self._validate_repair_plan(plan)

        self.ledger.ensure_tables()
        lock = self._lock()
        lock.acquire()
        try:
            return self._apply_repair_plan(plan)
        finally:
            lock.release()

    def run_script(self, name: str) -> RunResult:
        """
        Run a repair script by id or by name without its numeric prefix.

        Scripts run under the lock with their declared transactional mode,
        are never written to the ledger and are always recorded in history.
        """
        unit = self._find_script(name)
        self.ledger.ensure_tables()
        lock = self._lock()
        lock.acquire()
        try:
            return self._execute(
                [PlannedStep(unit, Direction.SCRIPT)], Direction.SCRIPT, None, lock
            )
        finally:
            lock.release()

    def cancel(self) -> None:
        """Request cancellation; honoured before the next unit starts."""
        logger.warning("Cancellation requested")
        self._cancel_requested.set()

    # Internals ---------------------------------------------------------------
    def _lock(self) -> MigrationLock:
        return MigrationLock.from_settings(self.db, self.settings, name=RUNNER_LOCK)

    def _find_script(self, name: str) -> MigrationUnit:
        if name in self.repairs:
            return self.repairs.get(name)
        matches = [unit for unit in self.repairs if unit.id.split("_", 1)[-1] == name]
        if len(matches) == 1:
            return matches[0]
        raise UnknownMigrationError(f"Unknown repair script: {name}", migration_id=name)

    def _report_progress(self, current: int, total: int, message: str) -> None:
        if self.progress_callback:
            try:
                self.progress_callback(current, total, message)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")

    def _execute(
        self,
        steps: list[PlannedStep],
        direction: Direction,
        batch: int | None,
        lock: MigrationLock,
    ) -> RunResult:
        start_time = time.time()
        result = RunResult(direction=direction.value, batch=batch)

        if not steps:
            logger.info("No migrations to run")
            return result

        total = len(steps)
        logger.info(f"Running {total} step(s) {direction.value}: {[s.unit.id for s in steps]}")
        try:
            for i, step in enumerate(steps):
                if self._cancel_requested.is_set():
                    raise MigrationCancelledError(
                        f"Run cancelled before {step.unit.id}; {i} of {total} step(s) completed",
                        migration_id=step.unit.id,
                    )
                # Heartbeat: stale reclaim goes by acquired_at.
                lock.refresh()
                self._report_progress(i, total, f"{direction.value} {step.unit.id}")
                result.steps.append(self._run_step(step))
        finally:
            self._cancel_requested.clear()
            result.execution_time_ms = (time.time() - start_time) * 1000

        self._report_progress(total, total, "Completed successfully")
        logger.info(
            f"Completed {total} step(s) {direction.value} in {result.execution_time_ms:.1f}ms"
        )
        return result

    def _run_step(self, step: PlannedStep) -> StepResult:
        unit, direction = step.unit, step.direction
        action = unit.migration.revert if direction is Direction.DOWN else unit.migration.apply
        started_at = utcnow()
        start = time.time()

        logger.info(f"Migration {unit.id} {direction.value} started [{unit.mode.value}]: {unit.description}")
        try:
            if unit.mode is TransactionalMode.WRAP:
                with self.db.transaction() as tx:
                    action(tx)
                    self._record_success(tx, step, started_at, (time.time() - start) * 1000)
            else:
                action(self.db)
                elapsed = (time.time() - start) * 1000
                if unit.mode is TransactionalMode.OWN:
                    with self.db.transaction() as tx:
                        self._record_success(tx, step, started_at, elapsed)
                else:
                    self._record_success(self.db, step, started_at, elapsed)
        except Exception as e:
            elapsed = (time.time() - start) * 1000
            logger.error(
                f"Migration {unit.id} {direction.value} failed after {elapsed:.1f}ms: {e}"
            )
            self._record_failure(step, started_at, e)
            if (
                unit.mode is TransactionalMode.WRAP
                and isinstance(e, SqlError)
                and e.transaction_refused
            ):
                raise IdempotenceViolationError(unit.id, direction.value, e) from e
            raise MigrationFailedError(unit.id, direction.value, e) from e

        elapsed = (time.time() - start) * 1000
        logger.info(f"Migration {unit.id} {direction.value} completed in {elapsed:.1f}ms")
        return StepResult(id=unit.id, direction=direction.value, execution_time_ms=elapsed)

    def _record_success(
        self, db: Any, step: PlannedStep, started_at: datetime, elapsed: float
    ) -> None:
        unit = step.unit
        if step.direction is Direction.UP:
            self.ledger.record_applied(
                db,
                unit.id,
                step.batch or 1,
                checksum=unit.checksum,
                description=unit.description,
                execution_time_ms=elapsed,
            )
        elif step.direction is Direction.DOWN:
            self.ledger.record_reverted(db, unit.id)
        self.ledger.record_history(
            db, unit.id, step.direction.value, started_at, True, batch=step.batch
        )

    def _record_failure(self, step: PlannedStep, started_at: datetime, error: Exception) -> None:
        try:
            self.ledger.record_history(
                self.db,
                step.unit.id,
                step.direction.value,
                started_at,
                False,
                batch=step.batch,
                error_message=f"{type(error).__name__}: {error}",
            )
        except DatabaseError as history_error:
            logger.error(f"Could not record failure of {step.unit.id}: {history_error}")

    def _validate_repair_plan(self, plan: RepairPlan) -> None:
        for action in plan.actions:
            if action.action in ("mark_applied", "restamp"):
                self.registry.get(action.id)

    def _apply_repair_plan(self, plan: RepairPlan) -> RepairResult:
        result = RepairResult()
        if not plan.actions:
            return result

        started_at = utcnow()
        batch = self.ledger.next_batch()
        with self.db.transaction() as tx:
            for action in plan.actions:
                if action.action == "mark_applied":
                    unit = self.registry.get(action.id)
                    changed = self.ledger.mark_applied(
                        tx, unit.id, batch, checksum=unit.checksum, description=unit.description
                    )
                elif action.action == "forget":
                    changed = self.ledger.forget(tx, action.id)
                else:
                    unit = self.registry.get(action.id)
                    changed = self.ledger.restamp(tx, unit.id, unit.checksum)

                self.ledger.record_history(
                    tx, action.id, Direction.REPAIR.value, started_at, True, batch=batch
                )
                logger.info(f"Repair {action.action} {action.id}: {'changed' if changed else 'no change'}")
                result.changes.append(
                    {"action": action.action, "id": action.id, "changed": changed}
                )
        return result


def summarize(steps: Iterable[PlannedStep]) -> list[str]:
    return [step.describe() for step in steps]
