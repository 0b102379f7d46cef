"""
eoty-db command line interface

    eoty-db status
    eoty-db up [--target ID] [--repair-plan FILE]
    eoty-db down --target ID
    eoty-db seed [--force] [--only NAME ...]
    eoty-db repair --plan FILE
    eoty-db run-script NAME
    eoty-db history [--limit N]
    eoty-db plan [--target ID]
    eoty-db new NAME

Exit codes: 0 success / at head, 1 pending units or failed unit, 2 ledger
drift, 3 seed refused, 4 database I/O error, 5 lock unavailable,
6 configuration or registry error.
"""

import argparse
import json
import logging
import sys
from typing import Any

from pydantic import SecretStr

from eoty_db import __version__
from eoty_db.core.config import Environment, Settings
from eoty_db.database.connection import DatabaseConnection
from eoty_db.database.migrations.manager import scaffold
from eoty_db.database.migrations.runner import MigrationRunner, RepairPlan, summarize
from eoty_db.exceptions import (
    ConfigurationError,
    DatabaseError,
    EotyDbError,
    LedgerDriftError,
    LockUnavailableError,
    MigrationError,
    MigrationFailedError,
    SeedError,
    SeedFailedError,
    SeedRefusedError,
)
from eoty_db.seeding import Seeder

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_DRIFT = 2
EXIT_SEED_REFUSED = 3
EXIT_DATABASE_ERROR = 4
EXIT_LOCK_UNAVAILABLE = 5
EXIT_CONFIG_ERROR = 6


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eoty-db",
        description="Incremental schema migrations and seeds for the EOTY platform",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--database-url",
        type=str,
        help="SQLAlchemy URL; overrides DATABASE_URL and DB_* variables",
    )
    parser.add_argument(
        "--env",
        type=str,
        choices=[e.value for e in Environment],
        help="Environment tag; overrides EOTY_ENV",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    commands = parser.add_subparsers(dest="command", required=True)

    status = commands.add_parser("status", help="Compare the ledger with the registry")
    status.add_argument("--json", action="store_true", help="Print machine-readable status")

    up = commands.add_parser("up", help="Apply pending migrations")
    up.add_argument("--target", type=str, help="Stop after this migration id")
    up.add_argument("--repair-plan", type=str, help="JSON repair plan applied first")

    down = commands.add_parser("down", help="Revert migrations applied after a target")
    down.add_argument("--target", type=str, required=True, help="Migration id to revert down to")

    seed = commands.add_parser("seed", help="Run seed units")
    seed.add_argument("--force", action="store_true", help="Allow unsafe seeds in production")
    seed.add_argument("--only", nargs="+", metavar="NAME", help="Run only these seeds")

    repair = commands.add_parser("repair", help="Apply a ledger repair plan")
    repair.add_argument("--plan", type=str, required=True, help="JSON repair plan file")

    run_script = commands.add_parser("run-script", help="Run a repair script by name")
    run_script.add_argument("name", type=str)

    history = commands.add_parser("history", help="Show recent ledger history")
    history.add_argument("--limit", type=int, default=20)

    plan = commands.add_parser("plan", help="Show what `up` would run")
    plan.add_argument("--target", type=str)

    new = commands.add_parser("new", help="Create a new migration file")
    new.add_argument("name", type=str)

    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    """Settings from the environment with command line overrides applied."""
    settings = Settings.from_env()
    if args.database_url:
        database = settings.database.model_copy(update={"url": SecretStr(args.database_url)})
        settings = settings.model_copy(update={"database": database})
    if args.env:
        settings = settings.model_copy(update={"environment": Environment(args.env)})
    if args.verbose:
        settings = settings.model_copy(update={"log_level": "DEBUG"})
    return settings


def _print_status(runner: MigrationRunner, as_json: bool) -> int:
    status = runner.status()
    if as_json:
        print(json.dumps(status.to_dict(), indent=2))
    else:
        print(f"Applied:  {len(status.applied)}")
        for unit in status.pending:
            print(f"Pending:  {unit.id}  {unit.description}")
        for entry in status.orphans:
            print(f"Orphan:   {entry.id} (applied {entry.applied_at:%Y-%m-%d %H:%M:%S}, not in registry)")
        for unit_id in status.out_of_order:
            print(f"Out of order: {unit_id}")
        for unit_id in status.modified:
            print(f"Modified since applied: {unit_id}")
        if status.at_head:
            print("Database is at head")

    if status.orphans:
        return EXIT_DRIFT
    if status.pending:
        return EXIT_FAILED
    return EXIT_OK


def _print_history(runner: MigrationRunner, limit: int) -> int:
    for entry in runner.history(limit):
        outcome = "ok" if entry.success else f"FAILED: {entry.error_message}"
        print(
            f"{entry.started_at:%Y-%m-%d %H:%M:%S}  {entry.direction:<6}  "
            f"{entry.migration_id}  {outcome}"
        )
    return EXIT_OK


def _run_command(args: argparse.Namespace, settings: Settings, db: Any) -> int:
    if args.command == "seed":
        result = Seeder(db, settings).run(only=args.only, force=args.force or None)
        print(f"Ran {len(result.executed)} seed(s): {', '.join(result.executed) or 'none'}")
        return EXIT_OK

    runner = MigrationRunner.from_settings(settings, db_connection=db)

    if args.command == "status":
        return _print_status(runner, args.json)

    if args.command == "plan":
        steps = runner.plan(args.target)
        for line in summarize(steps):
            print(line)
        if not steps:
            print("Nothing to apply")
        return EXIT_OK

    if args.command == "history":
        return _print_history(runner, args.limit)

    if args.command == "up":
        repair_plan = RepairPlan.from_file(args.repair_plan) if args.repair_plan else None
        result = runner.up(target=args.target, repair_plan=repair_plan)
        print(f"Applied {len(result.steps)} migration(s) in batch {result.batch}")
        for step in result.steps:
            print(f"  {step.id} ({step.execution_time_ms:.1f}ms)")
        return EXIT_OK

    if args.command == "down":
        result = runner.down(args.target)
        print(f"Reverted {len(result.steps)} migration(s)")
        for step in result.steps:
            print(f"  {step.id} ({step.execution_time_ms:.1f}ms)")
        return EXIT_OK

    if args.command == "repair":
        result = runner.repair(RepairPlan.from_file(args.plan))
        for change in result.changes:
            print(f"{change['action']} {change['id']}: {'changed' if change['changed'] else 'no change'}")
        return EXIT_OK

    if args.command == "run-script":
        result = runner.run_script(args.name)
        print(f"Ran repair script {', '.join(result.ids)}")
        return EXIT_OK

    raise ConfigurationError(f"Unknown command: {args.command}")


def exit_code_for(error: EotyDbError) -> int:
    """Map an engine error to the documented exit code."""
    if isinstance(error, SeedRefusedError):
        return EXIT_SEED_REFUSED
    if isinstance(error, LockUnavailableError):
        return EXIT_LOCK_UNAVAILABLE
    if isinstance(error, LedgerDriftError):
        return EXIT_DRIFT
    if isinstance(error, (MigrationFailedError, SeedFailedError)):
        return EXIT_FAILED
    if isinstance(error, DatabaseError):
        return EXIT_DATABASE_ERROR
    if isinstance(error, (ConfigurationError, MigrationError, SeedError)):
        return EXIT_CONFIG_ERROR
    return EXIT_FAILED


def main(argv: list[str] | None = None) -> int:
    """Entry point for the eoty-db console script."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args)
    except ConfigurationError as e:
        print(f"error: {e}", file=sys.stderr)
        print(e.user_message, file=sys.stderr)
        return EXIT_CONFIG_ERROR

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "new":
        try:
            path = scaffold(settings.migrations_path, args.name)
        except EotyDbError as e:
            print(f"error: {e}", file=sys.stderr)
            return EXIT_CONFIG_ERROR
        print(f"Created {path}")
        return EXIT_OK

    db = None
    try:
        logger.info(f"Connecting to {settings.database.redacted()} ({settings.environment.value})")
        db = DatabaseConnection.from_config(settings.database)
        return _run_command(args, settings, db)
    except MigrationFailedError as e:
        print(
            f"error: migration {e.migration_id} failed during {e.direction}: {e.cause}",
            file=sys.stderr,
        )
        return exit_code_for(e)
    except EotyDbError as e:
        e.with_context(command=args.command)
        if getattr(args, "json", False):
            print(json.dumps(e.to_dict(), indent=2, default=str))
        print(f"error: {e}", file=sys.stderr)
        if e.user_message:
            print(e.user_message, file=sys.stderr)
        return exit_code_for(e)
    except KeyboardInterrupt:
        print("interrupted", file=sys.stderr)
        return EXIT_FAILED
    finally:
        if db is not None:
            db.dispose()


if __name__ == "__main__":
    sys.exit(main())
