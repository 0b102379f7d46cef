"""Core configuration for the schema engine."""

from .config import DatabaseConfig, Environment, Settings

__all__ = ["DatabaseConfig", "Environment", "Settings"]
