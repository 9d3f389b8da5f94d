"""Error taxonomy for the scheduling core and its user-facing classification."""

from enum import Enum

from pydantic import BaseModel


class TaskError(Exception):
    """Base class for errors raised by the scheduling core."""


class TaskNotFoundError(TaskError, KeyError):
    """A referenced task id no longer exists."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id

    def __str__(self) -> str:
        return str(self.args[0])


class TaskValidationError(TaskError, ValueError):
    """A save request breaks a task rule. Raised before any write."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class CircularRelationshipError(TaskValidationError):
    """Accepting a relationship edge would close a cycle."""


class PersistenceError(TaskError, RuntimeError):
    """The task store rejected a read or write."""


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    # Task errors
    ERR_TASK_NOT_FOUND = "ERR_TASK_NOT_FOUND"
    ERR_VALIDATION = "ERR_VALIDATION"
    ERR_CIRCULAR_RELATIONSHIP = "ERR_CIRCULAR_RELATIONSHIP"

    # Storage errors
    ERR_PERSISTENCE = "ERR_PERSISTENCE"

    # Generic errors
    ERR_UNKNOWN = "ERR_UNKNOWN"


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity


def classify_error_with_response(exception: Exception) -> ErrorResponse:
    """Classify an error and return a structured response with recovery suggestions.

    The presentation layer shows ``message`` in a dismissible banner.

    Args:
        exception: The exception raised by a core operation

    Returns:
        ErrorResponse with code, message, suggestion, and severity
    """
    if isinstance(exception, CircularRelationshipError):
        return ErrorResponse(
            code=ErrorCode.ERR_CIRCULAR_RELATIONSHIP,
            message=str(exception),
            suggestion="Remove one of the linked tasks so the chain no longer loops back.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, TaskValidationError):
        return ErrorResponse(
            code=ErrorCode.ERR_VALIDATION,
            message=str(exception),
            suggestion="Fix the highlighted field and save again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, TaskNotFoundError):
        return ErrorResponse(
            code=ErrorCode.ERR_TASK_NOT_FOUND,
            message="That task no longer exists.",
            suggestion="Refresh the task list and try again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, PersistenceError):
        return ErrorResponse(
            code=ErrorCode.ERR_PERSISTENCE,
            message="Your change could not be saved.",
            suggestion="Please try again. If the problem persists, restart the app.",
            severity=ErrorSeverity.HIGH,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later.",
        severity=ErrorSeverity.MEDIUM,
    )
