"""
Seeding Exception Classes
"""

import logging
from typing import Any

from .base import EotyDbError


class SeedError(EotyDbError):
    """Base class for seeder errors."""

    def __init__(self, message: str, seed_name: str | None = None, **kwargs: Any):
        context = kwargs.pop("context", {})
        if seed_name:
            context["seed"] = seed_name
        self.seed_name = seed_name
        super().__init__(message, context=context, **kwargs)


class SeedRefusedError(SeedError):
    """Raised when seeds that are unsafe for production are requested there."""

    def __init__(self, message: str, refused: list[str], **kwargs: Any):
        context = kwargs.pop("context", {})
        context["refused"] = refused
        kwargs.setdefault("log_level", logging.WARNING)
        self.refused = refused
        super().__init__(message, context=context, **kwargs)

    def _get_default_user_message(self) -> str:
        return "Refusing to run destructive seeds in production without --force."


class SeedFailedError(SeedError):
    """Raised when a seed unit fails."""

    def __init__(self, seed_name: str, cause: BaseException, **kwargs: Any):
        self.cause = cause
        super().__init__(
            f"Seed {seed_name} failed: {cause}", seed_name=seed_name, **kwargs
        )
