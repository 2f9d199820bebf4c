"""
Custom exception classes for the releaseflow engine.

Configuration and parse-time problems are raised before any stage starts.
Handler problems are recovered by the stage pipeline and reported as outcomes.
"""

from typing import Any, Dict, Optional


class ReleaseflowException(Exception):
    """Base exception class for all releaseflow exceptions."""

    pass


class ConfigurationError(ReleaseflowException):
    """
    Raised when the configuration tree, the filter rules or the release
    configuration violate an invariant.

    Always raised before the first stage runs, so no external side effect
    has happened yet.

    Example:
        >>> raise ConfigurationError(
        ...     "Category not allowed beneath parent",
        ...     details={"path": "announce/docker", "category": "packager"},
        ... )
    """

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        self.reason = reason
        self.details = details or {}
        message = f"{reason}"
        if self.details:
            message += f" - {self.details}"
        super().__init__(message)


class HandlerFailure(ReleaseflowException):
    """Raised by a handler adapter when it could not complete its work."""

    pass


class PostProcessError(ReleaseflowException):
    """Raised when the changelog checksum post-processing cannot complete."""

    pass


class ReleaseAbortedError(ReleaseflowException):
    """Raised when a fail-fast stage aborted the release run."""

    def __init__(self, stage: str, result: Any = None):
        self.stage = stage
        self.result = result
        super().__init__(f"Release aborted in fail-fast stage '{stage}'")
