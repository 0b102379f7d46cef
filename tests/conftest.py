"""Shared fixtures for the schema engine test suite."""

import pytest

from eoty_db.core.config import Environment, Settings
from eoty_db.database.connection import DatabaseConnection
from eoty_db.database.migrations.manager import MigrationRegistry
from eoty_db.database.migrations.runner import MigrationRunner
from schema_fixtures import SCENARIO_UNITS, write_unit


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'eoty.db'}"


@pytest.fixture
def db(database_url):
    """Plain adapter over a temporary SQLite file."""
    conn = DatabaseConnection(database_url)
    yield conn
    conn.dispose()


@pytest.fixture
def unit_dirs(tmp_path):
    """Empty migration, repair and seed directories."""
    dirs = {name: tmp_path / name for name in ("versions", "repairs", "seeds")}
    for directory in dirs.values():
        directory.mkdir()
    return dirs


@pytest.fixture
def settings(unit_dirs, database_url):
    return Settings(
        environment=Environment.TEST,
        database={"url": database_url},
        lock_timeout=1.0,
        lock_poll_interval=0.01,
        migrations_path=unit_dirs["versions"],
        repairs_path=unit_dirs["repairs"],
        seeds_path=unit_dirs["seeds"],
    )


@pytest.fixture
def scenario_units(unit_dirs):
    """The users/sessions/email_verified registry written to disk."""
    for filename, source in SCENARIO_UNITS.items():
        write_unit(unit_dirs["versions"], filename, source)
    return unit_dirs["versions"]


@pytest.fixture
def make_runner(db, settings):
    """Build a runner over whatever unit files currently exist."""

    def _make(**overrides):
        run_settings = settings.model_copy(update=overrides) if overrides else settings
        registry = MigrationRegistry.from_path(run_settings.migrations_path)
        return MigrationRunner(db, registry, settings=run_settings)

    return _make
