from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .models import TaskState

# Shared type for incoming due_date which can be a date, datetime, or ISO8601 string
DueDateInput = Union[date, datetime, str]

TITLE_MAX_LENGTH = 200


def _parse_due_date(value: Optional[DueDateInput]) -> Optional[datetime]:
    """
    Internal helper to normalize due_date input into a datetime.
    - If value is a string, attempt to parse via datetime.fromisoformat; if time is missing, set to 00:00.
    - If value is a date (not datetime), convert to datetime at 00:00.
    - If value is a datetime, return as-is.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, 0, 0, 0)

    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        try:
            return datetime.fromisoformat(s)
        except ValueError:
            try:
                d = date.fromisoformat(s)
                return datetime(d.year, d.month, d.day, 0, 0, 0)
            except ValueError as e:
                raise ValueError(
                    "Invalid due_date format. Use ISO8601 date or datetime string (e.g., '2025-01-31' or '2025-01-31T13:45:00')."
                ) from e

    raise ValueError("Invalid type for due_date; expected date, datetime, or ISO8601 string.")


def _clean_title(v: str) -> str:
    s = v.strip()
    if not (1 <= len(s) <= TITLE_MAX_LENGTH):
        raise ValueError(f"title length must be between 1 and {TITLE_MAX_LENGTH} characters")
    return s


# PUBLIC_INTERFACE
class TaskCreate(BaseModel):
    """
    Schema for creating a new task. New tasks are always active and not completed.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Buy groceries",
                "category": "Shopping",
                "due_date": "2025-02-01",
            }
        }
    )

    title: str = Field(..., description="Short title for the task", min_length=1, max_length=TITLE_MAX_LENGTH)
    category: Optional[str] = Field(default=None, description="Category label; 'Uncategorized' when omitted")
    due_date: Optional[datetime] = Field(
        default=None,
        description="Due date/time of the task. Accepts ISO8601 date or datetime; dates are set to 00:00",
    )

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Strip whitespace and enforce 1..200 length.
        """
        return _clean_title(v)

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        return _parse_due_date(v)


# PUBLIC_INTERFACE
class TaskPatch(BaseModel):
    """
    Partial update of a task.

    Only fields present in the payload are applied. A field sent as null is
    different from a missing one: `due_date: null` clears the due date and
    `category: null` resets the category, while `title`, `completed` and
    `order` reject null.
    """

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "title": "Buy groceries and supplies",
                "completed": True,
                "due_date": "2025-02-02T09:30:00",
            }
        },
    )

    title: Optional[str] = Field(default=None, description="Short title for the task", max_length=TITLE_MAX_LENGTH)
    completed: Optional[bool] = Field(default=None, description="Completion status flag")
    category: Optional[str] = Field(default=None, description="Category label")
    due_date: Optional[datetime] = Field(default=None, description="Due date/time; null clears it")
    order: Optional[int] = Field(default=None, description="Display position among active tasks")

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        return _parse_due_date(v)

    def changes(self) -> Dict[str, Any]:
        """Return only the fields explicitly set, including explicit nulls."""
        return {name: getattr(self, name) for name in self.model_fields_set}


# PUBLIC_INTERFACE
class ReorderItem(BaseModel):
    """One (id, order) assignment of a reorder batch."""

    id: str = Field(..., validation_alias=AliasChoices("id", "_id"), min_length=1)
    order: int = Field(..., ge=0, description="New display position")


# PUBLIC_INTERFACE
class ReorderRequest(BaseModel):
    """
    Reorder payload sent after a drag and drop: the full visible list with a
    dense 0..N-1 sequence.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"todos": [{"id": "b1c3...", "order": 0}, {"id": "a9f2...", "order": 1}]}
        }
    )

    todos: List[ReorderItem] = Field(..., description="Tasks with their new order values")


# PUBLIC_INTERFACE
class TaskOut(BaseModel):
    """
    Schema returned by the API for a task.
    """

    id: str = Field(..., description="Unique identifier of the task")
    title: str = Field(..., description="Short title for the task")
    completed: bool = Field(..., description="Completion status flag")
    category: str = Field(..., description="Category label")
    due_date: Optional[datetime] = Field(default=None, description="Due date/time as an ISO8601 datetime")
    order: int = Field(..., description="Display position among active tasks")
    state: TaskState = Field(..., description="'active' or 'trashed'")
    deleted_at: Optional[datetime] = Field(default=None, description="When the task was moved to the trash")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")


# PUBLIC_INTERFACE
class MessageOut(BaseModel):
    """Confirmation returned by operations without a task body."""

    message: str
    count: Optional[int] = Field(default=None, description="Number of tasks affected, when relevant")
