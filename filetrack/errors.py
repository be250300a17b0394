"""Exception types raised by the sprint lifecycle and membership engine.

Every operation raises one of these instead of returning an error value.
Front ends (CLI, HTTP API) map them to exit codes and status codes.
"""


class SprintError(Exception):
    """Base class for every failure raised by filetrack operations."""

    code = "sprint_error"


class NotFoundError(SprintError):
    """A sprint, task, or project could not be resolved."""

    code = "not_found"


class InvalidReferenceError(SprintError):
    """A symbolic sprint reference or identifier is malformed."""

    code = "invalid_reference"


class AmbiguousDefaultError(SprintError):
    """Zero or multiple candidate sprints when a default was required."""

    code = "ambiguous_default"


class GuardViolationError(SprintError):
    """The operation contradicts the sprint's lifecycle state without an override."""

    code = "guard_violation"


class EmptyInputError(SprintError):
    """A batch operation was called without any items."""

    code = "empty_input"


class PersistenceError(SprintError):
    """A record could not be read from or written to disk."""

    code = "persistence_error"


class ConfigError(SprintError):
    """Raised when configuration is missing or invalid."""

    code = "config_error"
