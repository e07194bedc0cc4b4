"""Shared error types for the ralph_loop package.

Mirrors a small exception hierarchy: every error carries a human-readable
message, an optional error code and a details dict for the operator summary.
"""

from typing import Any, Optional


class RalphError(Exception):
    """Base exception for ralph_loop errors.

    Use this for user-facing errors that should have actionable messages.

    Attributes:
        message: Human-readable error message
        error_code: Optional error code for reference
        details: Optional dictionary with additional error details
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(RalphError):
    """Base class for configuration problems. Always fatal at start."""


class ConfigMissingError(ConfigurationError):
    """The configuration file itself could not be found."""


class ConfigInvalidError(ConfigurationError):
    """The configuration is malformed or points at missing required files."""


class GitError(RalphError):
    """A git command exited with a non-zero status."""


class LockHeldError(RalphError):
    """Another live process already owns the orchestration root."""
