"""
Base Exception Classes
Provides the foundation for the eoty_db exception hierarchy.
"""

import logging
from typing import Any

logger = logging.getLogger(__name__)


class EotyDbError(Exception):
    """
    Base exception class for all schema engine errors.

    Provides common functionality for error context, logging, and operator messages.
    """

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
        user_message: str | None = None,
        log_level: int = logging.ERROR,
    ):
        """
        Initialize base exception.

        Args:
            message: Technical error message for logging
            error_code: Optional error code for programmatic handling
            context: Optional context information for debugging
            user_message: Optional operator-facing message
            log_level: Logging level for this error
        """
        super().__init__(message)
        self.error_code = error_code or self.__class__.__name__
        self.context = context or {}
        self.user_message = user_message or self._get_default_user_message()
        self.log_level = log_level

        self._log_error()

    def _get_default_user_message(self) -> str:
        """Get default operator-facing message for this error type."""
        return "The schema operation could not be completed."

    def _log_error(self) -> None:
        """Log the error with appropriate level and context."""
        log_message = f"[{self.error_code}] {str(self)}"
        if self.context:
            log_message += f" | Context: {self.context}"

        logger.log(self.log_level, log_message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for structured output.

        Returns:
            Dictionary representation of the error
        """
        return {
            "error": self.error_code,
            "message": str(self),
            "user_message": self.user_message,
            "context": self.context,
        }

    def with_context(self, **kwargs: Any) -> "EotyDbError":
        """
        Add context information to the exception.

        Args:
            **kwargs: Context key-value pairs

        Returns:
            Self for method chaining
        """
        self.context.update(kwargs)
        return self


class ConfigurationError(EotyDbError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, config_key: str | None = None, **kwargs: Any):
        """
        Initialize configuration error.

        Args:
            message: Error message
            config_key: Configuration key that caused the error
            **kwargs: Additional arguments for base class
        """
        context = kwargs.pop("context", {})
        if config_key:
            context["config_key"] = config_key

        self.config_key = config_key
        super().__init__(message, context=context, **kwargs)

    def _get_default_user_message(self) -> str:
        if self.config_key:
            return f"Invalid configuration value for '{self.config_key}'."
        return "Configuration error. Check the environment settings."
