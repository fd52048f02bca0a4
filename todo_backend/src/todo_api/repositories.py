from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import RLock
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import TaskEntity, TaskState
from .settings import Settings, get_settings

logger = logging.getLogger("todos.store")

# (field, descending) pairs, applied left to right.
SortSpec = Sequence[Tuple[str, bool]]

SORTABLE_FIELDS = frozenset({"order", "created_at", "updated_at", "deleted_at", "due_date", "title"})

UPDATABLE_FIELDS = frozenset(
    {"title", "completed", "category", "due_date", "order", "state", "deleted_at", "updated_at"}
)

ACTIVE_SORT: SortSpec = (("order", False), ("created_at", True))
TRASH_SORT: SortSpec = (("deleted_at", True),)


@dataclass(frozen=True)
class TaskFilter:
    """
    Filter for store queries. Unset attributes match everything.
    """
    state: Optional[TaskState] = None
    completed: Optional[bool] = None
    category: Optional[str] = None
    search: Optional[str] = None  # case-insensitive substring of title

    def matches(self, task: Mapping[str, Any]) -> bool:
        if self.state is not None and task["state"] != self.state:
            return False
        if self.completed is not None and task["completed"] != self.completed:
            return False
        if self.category is not None and task["category"] != self.category:
            return False
        if self.search and self.search.lower() not in (task["title"] or "").lower():
            return False
        return True


def check_fields(fields: Mapping[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise KeyError(f"fields not updatable: {sorted(unknown)}")


def check_sort(sort: SortSpec) -> None:
    for field, _ in sort:
        if field not in SORTABLE_FIELDS:
            raise KeyError(f"field not sortable: {field}")


# PUBLIC_INTERFACE
class TaskStore(ABC):
    """
    Abstract storage contract for task records.

    Stores are dumb: they apply exactly the fields they are given and never
    enforce lifecycle rules, which belong to TaskService. Methods are
    synchronous; the service runs them in a worker thread.
    """

    backend_name: str = "abstract"

    def init(self) -> None:
        """Prepare the backend (create schema, open resources)."""

    def close(self) -> None:
        """Release resources held by the backend."""

    @abstractmethod
    def find_many(self, task_filter: Optional[TaskFilter] = None, sort: SortSpec = ()) -> List[TaskEntity]:
        """Return all tasks matching the filter, sorted by the given keys."""

    @abstractmethod
    def find_one(self, task_id: str) -> Optional[TaskEntity]:
        """Return a task by id, or None if not found."""

    @abstractmethod
    def count(self, task_filter: Optional[TaskFilter] = None) -> int:
        """Return the number of tasks matching the filter."""

    @abstractmethod
    def insert(self, task: TaskEntity) -> TaskEntity:
        """Persist a fully populated task and return it."""

    @abstractmethod
    def update_one(self, task_id: str, fields: Mapping[str, Any]) -> Optional[TaskEntity]:
        """Apply fields to one task. Return the updated task or None if not found."""

    @abstractmethod
    def update_many(self, task_filter: TaskFilter, fields: Mapping[str, Any]) -> int:
        """Apply the same fields to every matching task. Return the number updated."""

    @abstractmethod
    def bulk_update(self, changes: Sequence[Tuple[str, Mapping[str, Any]]]) -> int:
        """
        Apply per-task field sets as one atomic batch.

        Ids that do not exist are skipped. Either every existing task in the
        batch is updated or, on failure, none is. Returns the number updated.
        """

    @abstractmethod
    def delete_one(self, task_id: str) -> Optional[TaskEntity]:
        """Remove a task. Return the removed task, or None if not found."""


def _sort_value(value: Any) -> Tuple[int, Any]:
    # None sorts after every real value in ascending order
    if value is None:
        return (1, 0)
    return (0, value)


def sort_tasks(items: Iterable[TaskEntity], sort: SortSpec) -> List[TaskEntity]:
    result = list(items)
    # Stable sorts applied from the least significant key
    for field, descending in reversed(list(sort)):
        result.sort(key=lambda t: _sort_value(t[field]), reverse=descending)  # type: ignore[literal-required]
    return result


class InMemoryTaskStore(TaskStore):
    """
    Thread-safe in-memory store suitable for testing and default runtime.
    """

    backend_name = "memory"

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[str, TaskEntity] = {}

    def init(self) -> None:
        logger.info("store.ready", extra={"category": "store", "event": "store.ready", "backend": self.backend_name})

    def close(self) -> None:
        with self._lock:
            self._items.clear()

    def find_many(self, task_filter: Optional[TaskFilter] = None, sort: SortSpec = ()) -> List[TaskEntity]:
        check_sort(sort)
        f = task_filter or TaskFilter()
        with self._lock:
            items = [t for t in self._items.values() if f.matches(t)]
            # Return copies to avoid external mutation
            return [t.copy() for t in sort_tasks(items, sort)]

    def find_one(self, task_id: str) -> Optional[TaskEntity]:
        with self._lock:
            item = self._items.get(task_id)
            return None if item is None else item.copy()

    def count(self, task_filter: Optional[TaskFilter] = None) -> int:
        f = task_filter or TaskFilter()
        with self._lock:
            return sum(1 for t in self._items.values() if f.matches(t))

    def insert(self, task: TaskEntity) -> TaskEntity:
        with self._lock:
            if task["id"] in self._items:
                raise KeyError(f"duplicate task id: {task['id']}")
            self._items[task["id"]] = task.copy()
        return task.copy()

    def update_one(self, task_id: str, fields: Mapping[str, Any]) -> Optional[TaskEntity]:
        check_fields(fields)
        with self._lock:
            existing = self._items.get(task_id)
            if existing is None:
                return None
            updated = existing.copy()
            updated.update(fields)  # type: ignore[typeddict-item]
            self._items[task_id] = updated
            return updated.copy()

    def update_many(self, task_filter: TaskFilter, fields: Mapping[str, Any]) -> int:
        check_fields(fields)
        with self._lock:
            targets = [tid for tid, t in self._items.items() if task_filter.matches(t)]
            for tid in targets:
                updated = self._items[tid].copy()
                updated.update(fields)  # type: ignore[typeddict-item]
                self._items[tid] = updated
            return len(targets)

    def bulk_update(self, changes: Sequence[Tuple[str, Mapping[str, Any]]]) -> int:
        with self._lock:
            # Stage every change first so a bad entry leaves the store untouched
            staged: Dict[str, TaskEntity] = {}
            for task_id, fields in changes:
                check_fields(fields)
                current = staged.get(task_id) or self._items.get(task_id)
                if current is None:
                    continue
                updated = current.copy()
                updated.update(fields)  # type: ignore[typeddict-item]
                staged[task_id] = updated
            self._items.update(staged)
            return len(staged)

    def delete_one(self, task_id: str) -> Optional[TaskEntity]:
        with self._lock:
            return self._items.pop(task_id, None)


# PUBLIC_INTERFACE
def build_store(settings: Optional[Settings] = None) -> TaskStore:
    """
    Construct the store selected by settings. The caller owns the handle and
    is responsible for calling init() and close().
    - memory: InMemoryTaskStore
    - sqlite: SQLiteTaskStore
    """
    settings = settings or get_settings()
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteTaskStore

        return SQLiteTaskStore(settings.sqlite_db_path)
    return InMemoryTaskStore()
