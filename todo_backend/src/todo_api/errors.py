from __future__ import annotations


# PUBLIC_INTERFACE
class TaskError(Exception):
    """
    Base class for failures raised by the task service and stores.

    Each subclass carries the HTTP status the API layer should answer with, so
    the calling boundary can translate errors without inspecting messages.
    """

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# PUBLIC_INTERFACE
class ValidationError(TaskError):
    """Malformed or missing required input (empty title, bad reorder payload)."""

    status_code = 400


# PUBLIC_INTERFACE
class InvalidStateError(ValidationError):
    """The operation is not allowed for the task's current state."""

    status_code = 409


# PUBLIC_INTERFACE
class NotFoundError(TaskError):
    """The operation targets an id that does not resolve to a task."""

    status_code = 404

    def __init__(self, task_id: str) -> None:
        super().__init__("Todo not found")
        self.task_id = task_id


# PUBLIC_INTERFACE
class StoreError(TaskError):
    """Underlying persistence failure."""

    status_code = 500
