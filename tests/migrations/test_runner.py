"""
Tests for the migration runner: status, up/down runs, transactional modes,
ledger drift and repair, repair scripts and lock contention.
"""

import threading
from datetime import timedelta

import pytest
from sqlalchemy import func, select, update

from eoty_db.database import introspection
from eoty_db.database.connection import DatabaseConnection
from eoty_db.database.migrations.base import Direction
from eoty_db.database.migrations.ledger import utcnow
from eoty_db.database.migrations.lock import lock_table
from eoty_db.database.migrations.manager import MigrationRegistry
from eoty_db.database.migrations.runner import MigrationRunner, RepairPlan, summarize
from eoty_db.exceptions import (
    ConfigurationError,
    IdempotenceViolationError,
    IrreversibleMigrationError,
    LedgerDriftError,
    MigrationCancelledError,
    MigrationFailedError,
    UnknownMigrationError,
)
from schema_fixtures import (
    ADD_EMAIL_VERIFIED,
    CREATE_SESSIONS,
    CREATE_USERS,
    M1,
    M2,
    M3,
    write_unit,
)

ENGINE_TABLES = ("schema_migrations", "schema_migrations_history", "schema_migrations_lock")

ADD_ROLE = '''
from sqlalchemy import Column, String

from eoty_db.database.migrations.base import Migration
from eoty_db.database.schema_ops import add_column_if_not_exists


class AddUserRole(Migration):
    description = "Add users.role"

    def apply(self, db):
        add_column_if_not_exists(db, "users", Column("role", String(32)))
'''

HALF_DONE = '''
from sqlalchemy import Column, Integer

from eoty_db.database.migrations.base import Migration
from eoty_db.database.schema_ops import create_table_if_not_exists


class HalfDone(Migration):
    description = "Create audit_log, then fail"

    def apply(self, db):
        create_table_if_not_exists(db, "audit_log", Column("id", Integer, primary_key=True))
        raise RuntimeError("second statement failed")
'''

BOOM_UNIT = '''
from eoty_db.database.migrations.base import Migration


class Boom(Migration):
    def apply(self, db):
        raise RuntimeError("boom")
'''

SLOW_UNIT = '''
import time

from sqlalchemy import Column, Integer

from eoty_db.database.migrations.base import Migration
from eoty_db.database.schema_ops import create_table_if_not_exists


class SlowBackfill(Migration):
    description = "Create backfill_marker, then keep the write transaction open"

    def apply(self, db):
        create_table_if_not_exists(db, "backfill_marker", Column("id", Integer, primary_key=True))
        time.sleep(2.5)
'''

VACUUM_UNIT = '''
from eoty_db.database.migrations.base import Migration


class Compact(Migration):
    description = "Compact the database file"
    transactional_mode = "{mode}"

    def apply(self, db):
        db.execute("VACUUM")
'''

FIX_USERS_SCRIPT = '''
from sqlalchemy import Column, Text

from eoty_db.database.migrations.base import Migration
from eoty_db.database.schema_ops import add_column_if_not_exists


class FixUsers(Migration):
    description = "Add users.display_name if missing"

    def apply(self, db):
        add_column_if_not_exists(db, "users", Column("display_name", Text))
'''


def ledger_ids(runner):
    return [entry.id for entry in runner.ledger.entries()]


def user_schema(db):
    return introspection.schema_snapshot(db, exclude=ENGINE_TABLES)


class TestScenarios:
    """End-to-end runs over the users/sessions/email_verified registry."""

    def test_fresh_install_to_head(self, scenario_units, make_runner, db):
        runner = make_runner()

        result = runner.up()

        assert result.ids == [M1, M2, M3]
        assert result.batch == 1
        assert ledger_ids(runner) == [M1, M2, M3]
        assert introspection.has_table(db, "users")
        assert introspection.has_table(db, "sessions")
        referencing = introspection.foreign_keys_referencing(db, "users")
        assert [(t, fk["constrained_columns"], fk["referred_columns"]) for t, fk in referencing] == [
            ("sessions", ["user_id"], ["id"])
        ]
        db.execute("INSERT INTO users (email) VALUES ('a@example.org')")
        assert not db.scalar("SELECT email_verified FROM users")

        status = runner.status()
        assert status.at_head
        assert status.pending == [] and status.orphans == []

    def test_partial_rerun_after_failure(self, scenario_units, make_runner, db, monkeypatch):
        """A `none` unit interrupted after its DDL completes on the next run."""
        monkeypatch.setenv("EOTY_TEST_INTERRUPT_SESSIONS", "1")
        runner = make_runner()

        with pytest.raises(MigrationFailedError) as exc_info:
            runner.up()

        assert exc_info.value.migration_id == M2
        assert exc_info.value.direction == "up"
        assert ledger_ids(runner) == [M1]
        assert introspection.has_table(db, "sessions")
        failure = runner.history(1)[0]
        assert (failure.migration_id, failure.success) == (M2, False)
        assert "interrupted after creating sessions" in failure.error_message

        monkeypatch.delenv("EOTY_TEST_INTERRUPT_SESSIONS")
        result = make_runner().up()

        assert result.ids == [M2, M3]
        assert ledger_ids(runner) == [M1, M2, M3]
        assert introspection.has_column(db, "users", "email_verified")

    def test_down_one_step(self, scenario_units, make_runner, db):
        runner = make_runner()
        runner.up()

        result = runner.down(M1)

        assert result.ids == [M3, M2]
        assert result.direction == "down"
        assert ledger_ids(runner) == [M1]
        assert introspection.has_table(db, "users")
        assert not introspection.has_table(db, "sessions")
        assert not introspection.has_column(db, "users", "email_verified")

    def test_concurrent_runner_waits_and_finds_head(
        self, scenario_units, make_runner, settings, database_url
    ):
        """The second runner blocks on the lock and then has nothing to do."""
        outcome = {}

        def run_second():
            conn = DatabaseConnection(database_url)
            try:
                runner_b = MigrationRunner(
                    conn,
                    MigrationRegistry.from_path(scenario_units),
                    settings=settings.model_copy(update={"lock_timeout": 30.0}),
                )
                outcome["result"] = runner_b.up()
            except Exception as e:
                outcome["error"] = e
            finally:
                conn.dispose()

        second = threading.Thread(target=run_second)

        def start_second_while_holding_lock(current, total, message):
            if second.ident is None:
                second.start()

        runner_a = make_runner()
        runner_a.progress_callback = start_second_while_holding_lock

        result_a = runner_a.up()
        second.join(timeout=30)

        assert "error" not in outcome
        assert result_a.ids == [M1, M2, M3]
        assert outcome["result"].steps == []
        assert ledger_ids(runner_a) == [M1, M2, M3]
        ups = [h for h in runner_a.history(50) if h.direction == "up" and h.success]
        assert sorted(h.migration_id for h in ups) == [M1, M2, M3]

    def test_waiting_runner_outlasts_long_wrap_unit(
        self, unit_dirs, make_runner, settings, database_url
    ):
        """Busy errors while A's unit holds the write lock are retried by B."""
        write_unit(unit_dirs["versions"], "001_slow_backfill.py", SLOW_UNIT)
        outcome = {}

        def run_second():
            conn = DatabaseConnection(database_url, connect_timeout=1)
            try:
                runner_b = MigrationRunner(
                    conn,
                    MigrationRegistry.from_path(unit_dirs["versions"]),
                    settings=settings.model_copy(update={"lock_timeout": 30.0}),
                )
                outcome["result"] = runner_b.up()
            except Exception as e:
                outcome["error"] = e
            finally:
                conn.dispose()

        second = threading.Thread(target=run_second)

        def start_second(current, total, message):
            if second.ident is None:
                second.start()

        runner_a = make_runner()
        runner_a.progress_callback = start_second

        assert runner_a.up().ids == ["001_slow_backfill"]
        second.join(timeout=30)

        assert "error" not in outcome
        assert outcome["result"].steps == []
        assert ledger_ids(runner_a) == ["001_slow_backfill"]

    def test_guarded_unit_tolerates_out_of_band_change(self, unit_dirs, make_runner, db):
        """A column added by hand is left alone and the unit is still recorded."""
        write_unit(unit_dirs["versions"], "001_create_users.py", CREATE_USERS)
        write_unit(unit_dirs["versions"], "002_add_user_role.py", ADD_ROLE)
        make_runner().up(target="001_create_users")
        db.execute("ALTER TABLE users ADD COLUMN role TEXT")

        runner = make_runner()
        result = runner.up()

        assert result.ids == ["002_add_user_role"]
        assert ledger_ids(runner) == ["001_create_users", "002_add_user_role"]
        assert introspection.column_type_name(db, "users", "role") == "TEXT"


class TestStatusAndPlanning:
    def test_empty_registry(self, make_runner):
        runner = make_runner()

        assert runner.up().steps == []
        status = runner.status()
        assert status.at_head
        assert status.to_dict()["applied"] == []

    def test_status_before_first_run(self, scenario_units, make_runner):
        status = make_runner().status()

        assert [u.id for u in status.pending] == [M1, M2, M3]
        assert not status.at_head
        assert not status.has_drift

    def test_already_at_head_is_a_noop(self, scenario_units, make_runner):
        runner = make_runner()
        runner.up()

        assert runner.up().steps == []
        assert ledger_ids(runner) == [M1, M2, M3]

    def test_plan_is_a_dry_run(self, scenario_units, make_runner, db):
        runner = make_runner()

        steps = runner.plan(M2)

        assert [(s.unit.id, s.direction) for s in steps] == [(M1, Direction.UP), (M2, Direction.UP)]
        assert summarize(steps)[0].startswith(f"up     {M1} [wrap]")
        assert not introspection.has_table(db, "users")

    def test_up_to_target_then_to_head(self, scenario_units, make_runner):
        runner = make_runner()

        first = runner.up(target=M2)
        second = runner.up()

        assert first.ids == [M1, M2]
        assert second.ids == [M3]
        assert [e.batch for e in runner.ledger.entries()] == [1, 1, 2]

    def test_unknown_targets(self, scenario_units, make_runner):
        runner = make_runner()

        with pytest.raises(UnknownMigrationError):
            runner.up(target="999_missing")
        with pytest.raises(UnknownMigrationError):
            runner.plan("999_missing")

        runner.up(target=M1)
        with pytest.raises(UnknownMigrationError):
            runner.down(M3)


class TestTransactionalModes:
    def test_wrap_failure_leaves_no_trace(self, scenario_units, make_runner, db):
        write_unit(scenario_units, "004_half_done.py", HALF_DONE)
        runner = make_runner()

        with pytest.raises(MigrationFailedError) as exc_info:
            runner.up()

        assert exc_info.value.migration_id == "004_half_done"
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert not introspection.has_table(db, "audit_log")
        assert ledger_ids(runner) == [M1, M2, M3]

    def test_up_then_down_restores_schema(self, scenario_units, make_runner, db):
        runner = make_runner()
        runner.up(target=M1)
        before = user_schema(db)

        runner.up()
        runner.down(M1)

        assert user_schema(db).diff(before) == {}

    def test_failing_unit_raises_migration_failed(self, unit_dirs, make_runner, db):
        write_unit(unit_dirs["versions"], "001_boom.py", BOOM_UNIT)
        runner = make_runner()

        with pytest.raises(MigrationFailedError) as exc_info:
            runner.up()

        error = exc_info.value
        assert error.migration_id == "001_boom"
        assert error.direction == "up"
        assert isinstance(error.cause, RuntimeError)
        assert str(error.cause) == "boom"
        assert ledger_ids(runner) == []
        assert runner.history(1)[0].error_message
        assert db.scalar(select(func.count()).select_from(lock_table)) == 0

    def test_wrap_unit_refused_by_database(self, unit_dirs, make_runner):
        write_unit(unit_dirs["versions"], "001_compact.py", VACUUM_UNIT.format(mode="wrap"))
        runner = make_runner()

        with pytest.raises(IdempotenceViolationError) as exc_info:
            runner.up()

        assert exc_info.value.migration_id == "001_compact"
        assert "none" in exc_info.value.user_message
        assert ledger_ids(runner) == []

    def test_none_unit_runs_outside_transaction(self, unit_dirs, make_runner):
        write_unit(unit_dirs["versions"], "001_compact.py", VACUUM_UNIT.format(mode="none"))
        runner = make_runner()

        assert runner.up().ids == ["001_compact"]

    def test_down_stops_at_irreversible_unit(self, scenario_units, make_runner, unit_dirs):
        write_unit(unit_dirs["versions"], "004_add_user_role.py", ADD_ROLE)
        write_unit(unit_dirs["versions"], "005_compact.py", VACUUM_UNIT.format(mode="none"))
        runner = make_runner()
        runner.up()

        with pytest.raises(IrreversibleMigrationError) as exc_info:
            runner.down(M3)

        assert exc_info.value.migration_id == "005_compact"
        assert len(ledger_ids(runner)) == 5


class TestDriftAndRepair:
    def test_orphan_blocks_up_until_forgotten(self, scenario_units, make_runner, db):
        make_runner().up()
        (scenario_units / f"{M3}.py").unlink()
        runner = make_runner()

        status = runner.status()
        assert [e.id for e in status.orphans] == [M3]
        assert status.has_drift and not status.at_head
        with pytest.raises(LedgerDriftError) as exc_info:
            runner.up()
        assert exc_info.value.orphans == [M3]

        runner.up(repair_plan=[{"action": "forget", "id": M3}])

        assert ledger_ids(runner) == [M1, M2]
        assert introspection.has_column(db, "users", "email_verified")
        assert runner.status().at_head

    def test_out_of_order_unit(self, unit_dirs, make_runner):
        directory = unit_dirs["versions"]
        write_unit(directory, f"{M1}.py", CREATE_USERS)
        write_unit(directory, f"{M3}.py", ADD_EMAIL_VERIFIED)
        make_runner().up()
        write_unit(directory, f"{M2}.py", CREATE_SESSIONS)

        strict = make_runner()
        assert strict.status().out_of_order == [M2]
        with pytest.raises(LedgerDriftError):
            strict.up()

        result = make_runner(allow_out_of_order=True).up()

        assert result.ids == [M2]
        assert ledger_ids(strict) == [M1, M3, M2]

    def test_modified_unit_is_reported_and_restamped(self, scenario_units, make_runner):
        make_runner().up()
        path = scenario_units / f"{M1}.py"
        path.write_text(path.read_text() + "\n# reviewed\n")
        runner = make_runner()

        assert runner.status().modified == [M1]

        result = runner.repair(RepairPlan.parse({"actions": [{"action": "restamp", "id": M1}]}))

        assert result.changed == 1
        assert runner.status().modified == []
        assert runner.history(1)[0].direction == "repair"

    def test_mark_applied_does_not_run_the_unit(self, scenario_units, make_runner, db):
        runner = make_runner()

        result = runner.repair([{"action": "mark_applied", "id": M1}])

        assert result.changes == [{"action": "mark_applied", "id": M1, "changed": True}]
        assert ledger_ids(runner) == [M1]
        assert not introspection.has_table(db, "users")

    def test_invalid_repair_plans(self, scenario_units, make_runner):
        runner = make_runner()

        with pytest.raises(ConfigurationError):
            runner.repair([{"action": "rewrite", "id": M1}])
        with pytest.raises(UnknownMigrationError):
            runner.repair([{"action": "mark_applied", "id": "999_missing"}])

    def test_repair_plan_from_file(self, tmp_path):
        plan_file = tmp_path / "plan.json"
        plan_file.write_text('[{"action": "forget", "id": "001_create_users"}]')

        plan = RepairPlan.from_file(plan_file)

        assert [(a.action, a.id) for a in plan.actions] == [("forget", "001_create_users")]
        with pytest.raises(ConfigurationError):
            RepairPlan.from_file(tmp_path / "missing.json")


class TestScriptsAndCancellation:
    def test_run_script_is_recorded_in_history_only(self, scenario_units, make_runner, unit_dirs, db):
        write_unit(unit_dirs["repairs"], "001_fix_users.py", FIX_USERS_SCRIPT)
        runner = make_runner()
        runner.up()

        result = runner.run_script("fix_users")
        runner.run_script("001_fix_users")

        assert result.ids == ["001_fix_users"]
        assert introspection.has_column(db, "users", "display_name")
        assert ledger_ids(runner) == [M1, M2, M3]
        assert [h.direction for h in runner.history(2)] == ["script", "script"]

    def test_unknown_script(self, make_runner):
        with pytest.raises(UnknownMigrationError):
            make_runner().run_script("does_not_exist")

    def test_cancel_between_units(self, scenario_units, make_runner):
        runner = make_runner()
        runner.progress_callback = lambda current, total, message: runner.cancel()

        with pytest.raises(MigrationCancelledError):
            runner.up()

        assert ledger_ids(runner) == [M1]

        runner.progress_callback = None
        assert runner.up().ids == [M2, M3]

    def test_lock_is_refreshed_before_each_unit(self, scenario_units, make_runner, db):
        """A lock aged past stale_after during one unit is fresh again before the next."""
        stale_rows = []

        def count_stale():
            cutoff = utcnow() - timedelta(hours=1)
            return db.scalar(
                select(func.count()).select_from(lock_table).where(lock_table.c.acquired_at < cutoff)
            )

        def age_lock(current, total, message):
            if current < total:
                stale_rows.append(count_stale())
                db.execute(update(lock_table).values(acquired_at=utcnow() - timedelta(hours=2)))

        runner = make_runner()
        runner.progress_callback = age_lock

        assert runner.up().ids == [M1, M2, M3]
        assert stale_rows == [0, 0, 0]
