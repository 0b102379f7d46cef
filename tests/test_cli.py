"""
Tests for the eoty-db command line interface and its exit codes.
"""

import json

import pytest

from eoty_db import cli
from eoty_db.database import introspection
from eoty_db.database.migrations.lock import MigrationLock
from eoty_db.exceptions import (
    ConfigurationError,
    DatabaseConnectionError,
    IdempotenceViolationError,
    LockUnavailableError,
    MigrationFailedError,
    SeedRefusedError,
    UnknownMigrationError,
)
from schema_fixtures import M1, M2, M3, SCENARIO_UNITS, write_unit

BOOM_UNIT = '''
from eoty_db.database.migrations.base import Migration


class Boom(Migration):
    def apply(self, db):
        raise RuntimeError("boom")
'''

UNSAFE_SEED = '''
from eoty_db.seeding.base import Seed


class DemoAccounts(Seed):
    description = "Demo accounts"
    production_safe = False

    def run(self, db, settings):
        db.execute("CREATE TABLE IF NOT EXISTS demo_marker (id INTEGER PRIMARY KEY)")
'''


@pytest.fixture
def cli_env(monkeypatch, unit_dirs, database_url):
    """Point the CLI at temporary unit directories; return the base argv."""
    monkeypatch.setenv("EOTY_ENV", "test")
    monkeypatch.setenv("EOTY_MIGRATIONS_PATH", str(unit_dirs["versions"]))
    monkeypatch.setenv("EOTY_REPAIRS_PATH", str(unit_dirs["repairs"]))
    monkeypatch.setenv("EOTY_SEEDS_PATH", str(unit_dirs["seeds"]))
    monkeypatch.setenv("EOTY_LOCK_TIMEOUT", "0.1")
    monkeypatch.setenv("EOTY_LOCK_POLL_INTERVAL", "0.01")
    monkeypatch.delenv("EOTY_FORCE_SEED", raising=False)
    return ["--database-url", database_url]


@pytest.fixture
def scenario(cli_env, unit_dirs):
    for filename, source in SCENARIO_UNITS.items():
        write_unit(unit_dirs["versions"], filename, source)
    return cli_env


class TestStatus:
    def test_pending_units_exit_1(self, scenario, capsys):
        assert cli.main([*scenario, "status"]) == cli.EXIT_FAILED

        out = capsys.readouterr().out
        assert f"Pending:  {M1}" in out

    def test_at_head_exit_0(self, scenario, capsys):
        assert cli.main([*scenario, "up"]) == cli.EXIT_OK
        assert cli.main([*scenario, "status"]) == cli.EXIT_OK

        assert "Database is at head" in capsys.readouterr().out

    def test_orphans_exit_2(self, scenario, unit_dirs, capsys):
        cli.main([*scenario, "up"])
        (unit_dirs["versions"] / f"{M3}.py").unlink()

        assert cli.main([*scenario, "status"]) == cli.EXIT_DRIFT
        assert f"Orphan:   {M3}" in capsys.readouterr().out

    def test_json_output(self, scenario, capsys):
        cli.main([*scenario, "up", "--target", M1])
        capsys.readouterr()

        cli.main([*scenario, "status", "--json"])

        status = json.loads(capsys.readouterr().out)
        assert status["applied"] == [M1]
        assert status["pending"] == [M2, M3]
        assert status["at_head"] is False

    def test_empty_registry_is_at_head(self, cli_env):
        assert cli.main([*cli_env, "status"]) == cli.EXIT_OK


class TestUpAndDown:
    def test_up_then_down(self, scenario, db, capsys):
        assert cli.main([*scenario, "up"]) == cli.EXIT_OK
        assert "Applied 3 migration(s) in batch 1" in capsys.readouterr().out

        assert cli.main([*scenario, "down", "--target", M1]) == cli.EXIT_OK
        assert "Reverted 2 migration(s)" in capsys.readouterr().out
        assert introspection.has_table(db, "users")
        assert not introspection.has_table(db, "sessions")

    def test_failed_unit_is_named_on_stderr(self, scenario, monkeypatch, capsys):
        monkeypatch.setenv("EOTY_TEST_INTERRUPT_SESSIONS", "1")

        assert cli.main([*scenario, "up"]) == cli.EXIT_FAILED

        err = capsys.readouterr().err
        assert f"migration {M2} failed during up" in err
        assert "interrupted after creating sessions" in err

    def test_failing_unit_exit_1(self, cli_env, unit_dirs, db, capsys):
        write_unit(unit_dirs["versions"], "001_boom.py", BOOM_UNIT)

        assert cli.main([*cli_env, "up"]) == cli.EXIT_FAILED

        err = capsys.readouterr().err
        assert "migration 001_boom failed during up: boom" in err
        assert db.scalar("SELECT COUNT(*) FROM schema_migrations") == 0

    def test_unknown_target_is_a_registry_error(self, scenario):
        assert cli.main([*scenario, "up", "--target", "999_missing"]) == cli.EXIT_CONFIG_ERROR

    def test_plan_and_history(self, scenario, capsys):
        cli.main([*scenario, "plan"])
        assert f"up     {M1} [wrap]" in capsys.readouterr().out

        cli.main([*scenario, "up"])
        capsys.readouterr()
        assert cli.main([*scenario, "history", "--limit", "1"]) == cli.EXIT_OK
        assert M3 in capsys.readouterr().out

    def test_lock_unavailable_exit_5(self, scenario, db):
        holder = MigrationLock(db, owner="someone-else")

        with holder:
            assert cli.main([*scenario, "up"]) == cli.EXIT_LOCK_UNAVAILABLE


class TestRepair:
    def test_repair_plan_file(self, scenario, tmp_path, capsys):
        plan = tmp_path / "plan.json"
        plan.write_text(json.dumps({"actions": [{"action": "mark_applied", "id": M1}]}))

        assert cli.main([*scenario, "repair", "--plan", str(plan)]) == cli.EXIT_OK
        assert f"mark_applied {M1}: changed" in capsys.readouterr().out

    def test_invalid_plan_file(self, scenario, tmp_path):
        plan = tmp_path / "plan.json"
        plan.write_text("not json")

        assert cli.main([*scenario, "repair", "--plan", str(plan)]) == cli.EXIT_CONFIG_ERROR

    def test_run_script(self, scenario, unit_dirs, capsys):
        write_unit(
            unit_dirs["repairs"],
            "001_touch.py",
            "from eoty_db.database.migrations.base import Migration\n\n\n"
            "class Touch(Migration):\n"
            "    def apply(self, db):\n"
            "        db.execute('CREATE TABLE IF NOT EXISTS touched (id INTEGER)')\n",
        )

        assert cli.main([*scenario, "run-script", "touch"]) == cli.EXIT_OK
        assert "Ran repair script 001_touch" in capsys.readouterr().out


class TestSeed:
    def test_refused_in_production_exit_3(self, cli_env, unit_dirs, db):
        write_unit(unit_dirs["seeds"], "001_demo_accounts.py", UNSAFE_SEED)

        assert cli.main([*cli_env, "--env", "production", "seed"]) == cli.EXIT_SEED_REFUSED
        assert not introspection.has_table(db, "demo_marker")

    def test_force_overrides_refusal(self, cli_env, unit_dirs, db):
        write_unit(unit_dirs["seeds"], "001_demo_accounts.py", UNSAFE_SEED)

        assert cli.main([*cli_env, "--env", "production", "seed", "--force"]) == cli.EXIT_OK
        assert introspection.has_table(db, "demo_marker")

    def test_force_from_environment(self, cli_env, unit_dirs, monkeypatch):
        write_unit(unit_dirs["seeds"], "001_demo_accounts.py", UNSAFE_SEED)
        monkeypatch.setenv("EOTY_FORCE_SEED", "true")

        assert cli.main([*cli_env, "--env", "production", "seed"]) == cli.EXIT_OK


class TestErrors:
    def test_bad_database_url_exit_6(self, cli_env):
        assert cli.main(["--database-url", "not a url", "status"]) == cli.EXIT_CONFIG_ERROR

    def test_invalid_setting_exit_6(self, cli_env, monkeypatch, capsys):
        monkeypatch.setenv("EOTY_LOCK_TIMEOUT", "-1")

        assert cli.main([*cli_env, "status"]) == cli.EXIT_CONFIG_ERROR
        assert "lock_timeout" in capsys.readouterr().err

    def test_unreachable_database_exit_4(self, cli_env, tmp_path):
        url = f"sqlite:///{tmp_path / 'missing' / 'dir' / 'eoty.db'}"

        assert cli.main(["--database-url", url, "status"]) == cli.EXIT_DATABASE_ERROR

    def test_invalid_unit_file_exit_6(self, cli_env, unit_dirs):
        write_unit(unit_dirs["versions"], "not_numbered.py", "VALUE = 1\n")

        assert cli.main([*cli_env, "status"]) == cli.EXIT_CONFIG_ERROR

    def test_json_status_reports_error_as_json(self, cli_env, unit_dirs, capsys):
        write_unit(unit_dirs["versions"], "not_numbered.py", "VALUE = 1\n")

        assert cli.main([*cli_env, "status", "--json"]) == cli.EXIT_CONFIG_ERROR

        captured = capsys.readouterr()
        error = json.loads(captured.out)
        assert error["error"] == "InvalidMigrationError"
        assert error["context"]["command"] == "status"
        assert error["user_message"]
        assert "not_numbered.py" in captured.err


class TestNew:
    def test_scaffolds_without_a_database(self, cli_env, unit_dirs, capsys):
        assert cli.main(["new", "add user bio"]) == cli.EXIT_OK

        created = list(unit_dirs["versions"].glob("*_add_user_bio.py"))
        assert len(created) == 1
        assert str(created[0]) in capsys.readouterr().out


class TestExitCodes:
    @pytest.mark.parametrize(
        "error, code",
        [
            (SeedRefusedError("refused", refused=["002_demo"]), cli.EXIT_SEED_REFUSED),
            (LockUnavailableError("busy", lock_name="runner"), cli.EXIT_LOCK_UNAVAILABLE),
            (UnknownMigrationError("missing"), cli.EXIT_CONFIG_ERROR),
            (DatabaseConnectionError("down"), cli.EXIT_DATABASE_ERROR),
            (ConfigurationError("bad"), cli.EXIT_CONFIG_ERROR),
        ],
    )
    def test_exit_code_for(self, error, code):
        assert cli.exit_code_for(error) == code

    def test_failed_units_exit_1(self):
        failed = MigrationFailedError("001_a", "up", RuntimeError("boom"))
        refused_wrap = IdempotenceViolationError("002_b", "up", RuntimeError("VACUUM"))

        assert cli.exit_code_for(failed) == cli.EXIT_FAILED
        assert cli.exit_code_for(refused_wrap) == cli.EXIT_FAILED
