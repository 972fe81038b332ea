"""Error kinds raised by the circulation engine.

NotFoundError, ConflictError, InvalidTransitionError and ValidationError are
expected outcomes: they reach the caller unchanged and are never retried.
InternalError wraps storage failures that survived the engine's single retry.
"""

from enum import Enum


class CirculationError(Exception):
    """Base exception for circulation operations."""


class NotFoundError(CirculationError):
    """Raised when a book, member, transaction or reservation does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ConflictError(CirculationError):
    """Raised when the current state does not allow the operation."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class InvalidTransitionError(CirculationError):
    """Raised when a status change is not allowed by the state machine."""

    def __init__(self, from_status: Enum | str, to_status: Enum | str):
        self.from_status = _status_value(from_status)
        self.to_status = _status_value(to_status)
        super().__init__(f"Invalid transition from {self.from_status} to {self.to_status}")


class ValidationError(CirculationError):
    """Raised when an input value is malformed or out of range."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class InternalError(CirculationError):
    """Raised when the storage layer fails for reasons outside the domain."""

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Internal error: {type(cause).__name__}: {cause}")


def _status_value(status: Enum | str) -> str:
    return status.value if isinstance(status, Enum) else str(status)
