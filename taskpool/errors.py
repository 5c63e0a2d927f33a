"""Domain exceptions raised inside the task pool engine.

Operations that return `OperationResult` translate these into failed results.
The catalog create operations, which return the created model, raise them.
"""

from taskpool.models.results import ErrorKind


class TaskPoolError(Exception):
    """Base class for expected, caller-facing failures."""

    kind: ErrorKind = ErrorKind.INVALID_STATE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(TaskPoolError):
    """Task, stage or project does not exist."""
    kind = ErrorKind.NOT_FOUND


class ForbiddenError(TaskPoolError):
    """Caller is not the task's current assignee."""
    kind = ErrorKind.FORBIDDEN


class InvalidStateError(TaskPoolError):
    """Requested transition is not allowed from the task's current status."""
    kind = ErrorKind.INVALID_STATE


class AlreadyCompletedError(TaskPoolError):
    kind = ErrorKind.ALREADY_COMPLETED


class ConflictError(TaskPoolError):
    """A concurrent writer changed the record between read and write."""
    kind = ErrorKind.CONFLICT


class InvalidInputError(TaskPoolError):
    kind = ErrorKind.INVALID_INPUT


class StoreUnavailableError(TaskPoolError):
    """The database rejected or could not complete the unit of work."""
    kind = ErrorKind.STORE_UNAVAILABLE
