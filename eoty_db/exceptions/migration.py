"""
Migration Exception Classes
Errors raised while loading the registry, reconciling the ledger and
running migration units.
"""

import logging
from typing import Any

from .base import EotyDbError


class MigrationError(EotyDbError):
    """Base class for migration engine errors."""

    def __init__(
        self,
        message: str,
        migration_id: str | None = None,
        **kwargs: Any,
    ):
        context = kwargs.pop("context", {})
        if migration_id:
            context["migration_id"] = migration_id

        self.migration_id = migration_id
        super().__init__(message, context=context, **kwargs)

    def _get_default_user_message(self) -> str:
        if self.migration_id:
            return f"Migration {self.migration_id} could not be processed."
        return "Migration processing failed."


class InvalidMigrationError(MigrationError):
    """Raised when a migration source file is malformed."""

    def __init__(self, message: str, path: str | None = None, **kwargs: Any):
        context = kwargs.pop("context", {})
        if path:
            context["path"] = path
        self.path = path
        super().__init__(message, context=context, **kwargs)


class DuplicateMigrationIdError(MigrationError):
    """Raised at load time when two units claim the same id."""

    def __init__(self, migration_id: str, sources: list[str], **kwargs: Any):
        context = kwargs.pop("context", {})
        context["sources"] = sources
        self.sources = sources
        super().__init__(
            f"Duplicate migration id {migration_id!r} declared by {', '.join(sources)}",
            migration_id=migration_id,
            context=context,
            **kwargs,
        )


class UnknownMigrationError(MigrationError):
    """Raised when a target id is not known to the registry or the ledger."""


class LockUnavailableError(MigrationError):
    """Raised when another runner holds the lock past the wait budget."""

    def __init__(
        self,
        message: str,
        lock_name: str | None = None,
        holder: str | None = None,
        **kwargs: Any,
    ):
        context = kwargs.pop("context", {})
        if lock_name:
            context["lock"] = lock_name
        if holder:
            context["holder"] = holder
        self.lock_name = lock_name
        self.holder = holder
        super().__init__(message, context=context, **kwargs)

    def _get_default_user_message(self) -> str:
        return "Another migration run holds the lock. Try again once it finishes."


class LedgerDriftError(MigrationError):
    """Raised when the ledger disagrees with the registry."""

    def __init__(
        self,
        message: str,
        orphans: list[str] | None = None,
        out_of_order: list[str] | None = None,
        **kwargs: Any,
    ):
        context = kwargs.pop("context", {})
        self.orphans = list(orphans or [])
        self.out_of_order = list(out_of_order or [])
        if self.orphans:
            context["orphans"] = self.orphans
        if self.out_of_order:
            context["out_of_order"] = self.out_of_order
        super().__init__(message, context=context, **kwargs)

    def _get_default_user_message(self) -> str:
        return "The migration ledger has drifted from the registry. Supply a repair plan."


class IrreversibleMigrationError(MigrationError):
    """Raised when a down run would cross a unit without a revert action."""

    def _get_default_user_message(self) -> str:
        if self.migration_id:
            return f"Migration {self.migration_id} cannot be reverted."
        return "The requested range contains a migration that cannot be reverted."


class MigrationFailedError(MigrationError):
    """
    Raised when a planned step fails.

    Identifies the offending unit, the direction and the underlying cause.
    """

    def __init__(
        self,
        migration_id: str,
        direction: str,
        cause: BaseException,
        **kwargs: Any,
    ):
        context = kwargs.pop("context", {})
        context["direction"] = direction
        context["cause"] = f"{type(cause).__name__}: {cause}"
        self.direction = direction
        self.cause = cause
        super().__init__(
            f"Migration {migration_id} failed during {direction}: {cause}",
            migration_id=migration_id,
            context=context,
            **kwargs,
        )


class IdempotenceViolationError(MigrationFailedError):
    """
    Raised when a unit declared `wrap` but ran statements the database
    refuses to execute inside a transaction.
    """

    def _get_default_user_message(self) -> str:
        return (
            f"Migration {self.migration_id} must not use the 'wrap' transactional "
            "mode. Re-author it with 'own' or 'none'."
        )


class MigrationCancelledError(MigrationError):
    """Raised when a run is cancelled between units."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("log_level", logging.WARNING)
        super().__init__(message, **kwargs)
