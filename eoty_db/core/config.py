"""
Engine Configuration

Typed configuration for the schema engine, loaded from the process
environment (and an optional .env file).
"""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator

from eoty_db.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

PACKAGE_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_MIGRATIONS_PATH = PACKAGE_ROOT / "database" / "migrations" / "versions"
DEFAULT_REPAIRS_PATH = PACKAGE_ROOT / "database" / "migrations" / "repairs"
DEFAULT_SEEDS_PATH = PACKAGE_ROOT / "seeding" / "seeds"


class Environment(str, Enum):
    """Deployment environments."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class DatabaseConfig(BaseModel):
    """Database connection configuration."""
    url: Optional[SecretStr] = None
    driver: str = Field(default="postgresql+psycopg2")
    host: str = Field(default="localhost")
    port: int = Field(default=5432)
    database: str = Field(default="eoty")
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    connect_timeout: int = Field(default=10)
    statement_timeout_ms: Optional[int] = None
    echo: bool = Field(default=False)

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError(f"port out of range: {v}")
        return v

    def get_connection_string(self) -> str:
        """Get SQLAlchemy connection URL."""
        if self.url:
            return self.url.get_secret_value()

        if self.username and self.password:
            auth = f"{self.username}:{self.password.get_secret_value()}@"
        elif self.username:
            auth = f"{self.username}@"
        else:
            auth = ""

        return f"{self.driver}://{auth}{self.host}:{self.port}/{self.database}"

    def redacted(self) -> str:
        """Connection string safe for logs."""
        if self.url:
            raw = self.url.get_secret_value()
            if "@" in raw and "://" in raw:
                scheme, rest = raw.split("://", 1)
                return f"{scheme}://***@{rest.rsplit('@', 1)[1]}"
            return raw
        return f"{self.driver}://{self.host}:{self.port}/{self.database}"


class Settings(BaseModel):
    """Top-level engine settings."""
    environment: Environment = Field(default=Environment.DEVELOPMENT)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    lock_timeout: float = Field(default=30.0, ge=0)
    lock_poll_interval: float = Field(default=0.25, gt=0)
    lock_stale_after: float = Field(default=3600.0, gt=0)
    allow_out_of_order: bool = False

    force_seed: bool = False
    seed_admin_email: str = Field(default="admin@eoty.local")
    seed_admin_password_hash: Optional[SecretStr] = None

    migrations_path: Path = Field(default=DEFAULT_MIGRATIONS_PATH)
    repairs_path: Path = Field(default=DEFAULT_REPAIRS_PATH)
    seeds_path: Path = Field(default=DEFAULT_SEEDS_PATH)

    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @classmethod
    def from_env(
        cls, env: dict[str, str] | None = None, load_dotenv_file: bool = True
    ) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read instead of os.environ (tests)
            load_dotenv_file: Load a .env file into os.environ first

        Raises:
            ConfigurationError: If any value fails validation
        """
        if env is None:
            if load_dotenv_file:
                load_dotenv()
            env = dict(os.environ)

        database: dict[str, Any] = {}
        if url := env.get("DATABASE_URL"):
            database["url"] = url
        for key, field_name in (
            ("DB_DRIVER", "driver"),
            ("DB_HOST", "host"),
            ("DB_PORT", "port"),
            ("DB_NAME", "database"),
            ("DB_USER", "username"),
            ("DB_PASSWORD", "password"),
            ("DB_CONNECT_TIMEOUT", "connect_timeout"),
            ("DB_STATEMENT_TIMEOUT_MS", "statement_timeout_ms"),
            ("DB_ECHO", "echo"),
        ):
            if (value := env.get(key)) is not None:
                database[field_name] = value

        config: dict[str, Any] = {"database": database}
        for key, field_name in (
            ("EOTY_ENV", "environment"),
            ("EOTY_LOCK_TIMEOUT", "lock_timeout"),
            ("EOTY_LOCK_POLL_INTERVAL", "lock_poll_interval"),
            ("EOTY_LOCK_STALE_AFTER", "lock_stale_after"),
            ("EOTY_ALLOW_OUT_OF_ORDER", "allow_out_of_order"),
            ("EOTY_FORCE_SEED", "force_seed"),
            ("EOTY_SEED_ADMIN_EMAIL", "seed_admin_email"),
            ("EOTY_SEED_ADMIN_PASSWORD_HASH", "seed_admin_password_hash"),
            ("EOTY_MIGRATIONS_PATH", "migrations_path"),
            ("EOTY_REPAIRS_PATH", "repairs_path"),
            ("EOTY_SEEDS_PATH", "seeds_path"),
            ("EOTY_LOG_LEVEL", "log_level"),
        ):
            if (value := env.get(key)) is not None:
                config[field_name] = value.lower() if field_name == "environment" else value

        return cls.build(**config)

    @classmethod
    def build(cls, **values: Any) -> "Settings":
        """Validate values, mapping pydantic failures to ConfigurationError."""
        try:
            return cls(**values)
        except ValidationError as e:
            first = e.errors()[0]
            key = ".".join(str(part) for part in first.get("loc", ()))
            raise ConfigurationError(
                f"Invalid configuration: {first.get('msg')}", config_key=key or None
            ) from e
