from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional, TypedDict

DEFAULT_CATEGORY = "Uncategorized"

# Categories offered by the web client; any other label is still accepted.
KNOWN_CATEGORIES: List[str] = [DEFAULT_CATEGORY, "Work", "Private", "Shopping", "Other"]


# PUBLIC_INTERFACE
class TaskState(str, Enum):
    """Lifecycle state of a task."""

    active = "active"
    trashed = "trashed"


# PUBLIC_INTERFACE
class TaskEntity(TypedDict):
    """
    A lightweight domain model representing a task record as held by the
    storage backends.

    Fields:
    - id: Opaque unique identifier (uuid4 string), immutable
    - title: Short title (1..200 chars, trimmed on input)
    - completed: Boolean completion flag
    - category: Free text label, "Uncategorized" by default
    - due_date: Optional due datetime (dates are normalized to 00:00)
    - order: Display position among active tasks (ascending)
    - state: TaskState.active or TaskState.trashed
    - deleted_at: Set exactly while the task is trashed
    - created_at: UTC creation timestamp
    - updated_at: UTC last update timestamp
    """

    id: str
    title: str
    completed: bool
    category: str
    due_date: Optional[datetime]
    order: int
    state: TaskState
    deleted_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
