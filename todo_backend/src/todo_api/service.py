"""
Task lifecycle and ordering rules.

TaskService is the only component that decides how a task moves between the
active list and the trash and how its display order evolves. Stores only
persist what they are told.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError as PydanticValidationError

from .errors import InvalidStateError, NotFoundError, ValidationError
from .models import DEFAULT_CATEGORY, KNOWN_CATEGORIES, TaskEntity, TaskState
from .repositories import ACTIVE_SORT, TRASH_SORT, TaskFilter, TaskStore
from .schemas import TITLE_MAX_LENGTH, ReorderItem, TaskPatch
from .utils import new_task_id, utcnow

logger = logging.getLogger("todos.service")

ReorderInput = Union[ReorderItem, Mapping[str, Any], Tuple[str, int]]


def _clean_title(title: Any) -> str:
    if not isinstance(title, str):
        raise ValidationError("title is required")
    s = title.strip()
    if not s:
        raise ValidationError("title must not be empty")
    if len(s) > TITLE_MAX_LENGTH:
        raise ValidationError(f"title must be at most {TITLE_MAX_LENGTH} characters")
    return s


def _check_order(order: Any) -> int:
    # bool is an int subclass but never a valid position
    if isinstance(order, bool) or not isinstance(order, int):
        raise ValidationError("order must be an integer")
    if order < 0:
        raise ValidationError("order must not be negative")
    return order


class TaskService:
    """
    Async facade over a TaskStore implementing create, edit, trash, restore,
    permanent deletion, purge and reorder.

    Store calls are blocking and run in the threadpool. Writes that derive a
    task's order (create and reorder) are serialized by a single writer lock,
    so two concurrent creates cannot read the same active count.
    """

    def __init__(self, store: TaskStore, default_category: str = DEFAULT_CATEGORY) -> None:
        self._store = store
        self._default_category = default_category
        self._order_lock = asyncio.Lock()

    async def _call(self, fn, *args):
        return await run_in_threadpool(fn, *args)

    def _category(self, category: Optional[str]) -> str:
        if category is None or not str(category).strip():
            return self._default_category
        return str(category).strip()

    async def create(
        self,
        title: str,
        category: Optional[str] = None,
        due_date: Optional[datetime] = None,
    ) -> TaskEntity:
        """
        Create an active, not completed task appended after the current
        active tasks (order = number of active tasks).

        Raises:
            ValidationError: if the title is empty after trimming.
        """
        clean_title = _clean_title(title)
        async with self._order_lock:
            order = await self._call(self._store.count, TaskFilter(state=TaskState.active))
            now = utcnow()
            task: TaskEntity = {
                "id": new_task_id(),
                "title": clean_title,
                "completed": False,
                "category": self._category(category),
                "due_date": due_date,
                "order": order,
                "state": TaskState.active,
                "deleted_at": None,
                "created_at": now,
                "updated_at": now,
            }
            created = await self._call(self._store.insert, task)
        logger.info(
            "task.create",
            extra={"category": "tasks", "event": "task.create", "task_id": created["id"], "order": order},
        )
        return created

    async def get(self, task_id: str) -> TaskEntity:
        task = await self._call(self._store.find_one, task_id)
        if task is None:
            raise NotFoundError(task_id)
        return task

    async def update(self, task_id: str, patch: Union[TaskPatch, Mapping[str, Any]]) -> TaskEntity:
        """
        Apply the fields present in `patch`; absent fields are left unchanged.

        Trashed tasks can be updated too. `due_date=None` clears the due date
        and `category=None` resets the category to the default.

        Raises:
            ValidationError: for a null title/completed/order, an empty title or a negative order.
            NotFoundError: if the task does not exist.
        """
        if not isinstance(patch, TaskPatch):
            try:
                patch = TaskPatch.model_validate(patch)
            except PydanticValidationError as e:
                raise ValidationError(str(e)) from e

        changes = patch.changes()
        if not changes:
            return await self.get(task_id)

        fields: Dict[str, Any] = {}
        for name, value in changes.items():
            if name == "title":
                fields["title"] = _clean_title(value)
            elif name == "completed":
                if value is None:
                    raise ValidationError("completed must not be null")
                fields["completed"] = bool(value)
            elif name == "category":
                fields["category"] = self._category(value)
            elif name == "due_date":
                fields["due_date"] = value
            elif name == "order":
                fields["order"] = _check_order(value)
        fields["updated_at"] = utcnow()

        updated = await self._call(self._store.update_one, task_id, fields)
        if updated is None:
            raise NotFoundError(task_id)
        logger.info(
            "task.update",
            extra={"category": "tasks", "event": "task.update", "task_id": task_id, "fields": sorted(changes)},
        )
        return updated

    async def soft_delete(self, task_id: str) -> TaskEntity:
        """
        Move a task to the trash. Its order is kept and the remaining active
        tasks are not renumbered.
        """
        fields = {"state": TaskState.trashed, "deleted_at": utcnow()}
        trashed = await self._call(self._store.update_one, task_id, fields)
        if trashed is None:
            raise NotFoundError(task_id)
        logger.info("task.trash", extra={"category": "tasks", "event": "task.trash", "task_id": task_id})
        return trashed

    async def restore(self, task_id: str) -> TaskEntity:
        """
        Bring a task back from the trash with the order it had before. That
        order may now equal another active task's order.
        """
        fields = {"state": TaskState.active, "deleted_at": None}
        restored = await self._call(self._store.update_one, task_id, fields)
        if restored is None:
            raise NotFoundError(task_id)
        logger.info(
            "task.restore",
            extra={"category": "tasks", "event": "task.restore", "task_id": task_id, "order": restored["order"]},
        )
        return restored

    async def permanent_delete(self, task_id: str) -> TaskEntity:
        """
        Destroy a trashed task. Active tasks must be moved to the trash first.

        Raises:
            NotFoundError: if the task does not exist.
            InvalidStateError: if the task is still active.
        """
        existing = await self.get(task_id)
        if existing["state"] != TaskState.trashed:
            raise InvalidStateError("Only tasks in the trash can be permanently deleted")
        removed = await self._call(self._store.delete_one, task_id)
        if removed is None:
            raise NotFoundError(task_id)
        logger.info("task.delete", extra={"category": "tasks", "event": "task.delete", "task_id": task_id})
        return removed

    async def purge_completed(self) -> int:
        """Move every completed active task to the trash. Returns how many moved."""
        count = await self._call(
            self._store.update_many,
            TaskFilter(state=TaskState.active, completed=True),
            {"state": TaskState.trashed, "deleted_at": utcnow()},
        )
        logger.info("task.purge", extra={"category": "tasks", "event": "task.purge", "count": count})
        return count

    async def reorder(self, pairs: Sequence[ReorderInput]) -> int:
        """
        Assign new order values in one atomic batch.

        The values are stored as given; callers send a dense 0..N-1 sequence.
        Unknown ids are skipped. Returns the number of tasks updated.

        Raises:
            ValidationError: for a malformed batch (not a list, missing id,
                negative order, the same id twice).
        """
        assignments = self._normalize_pairs(pairs)
        if not assignments:
            return 0
        changes = [(task_id, {"order": order}) for task_id, order in assignments]
        async with self._order_lock:
            updated = await self._call(self._store.bulk_update, changes)
        skipped = len(assignments) - updated
        logger.info(
            "task.reorder",
            extra={"category": "tasks", "event": "task.reorder", "count": updated, "skipped": skipped},
        )
        return updated

    @staticmethod
    def _normalize_pairs(pairs: Iterable[ReorderInput]) -> List[Tuple[str, int]]:
        if isinstance(pairs, (str, bytes, Mapping)) or not isinstance(pairs, (list, tuple)):
            raise ValidationError("reorder payload must be a list of {id, order} items")
        seen = set()
        result: List[Tuple[str, int]] = []
        for item in pairs:
            if isinstance(item, ReorderItem):
                task_id, order = item.id, item.order
            elif isinstance(item, Mapping):
                task_id, order = item.get("id", item.get("_id")), item.get("order")
            elif isinstance(item, (list, tuple)) and len(item) == 2:
                task_id, order = item
            else:
                raise ValidationError("reorder items must carry an id and an order")
            if not isinstance(task_id, str) or not task_id:
                raise ValidationError("reorder item id must be a non-empty string")
            if task_id in seen:
                raise ValidationError(f"task {task_id} appears more than once in the reorder payload")
            seen.add(task_id)
            result.append((task_id, _check_order(order)))
        return result

    async def list_active(
        self,
        completed: Optional[bool] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[TaskEntity]:
        """Active tasks by order ascending, newest first among equal orders."""
        task_filter = TaskFilter(
            state=TaskState.active,
            completed=completed,
            category=category,
            search=search.strip() if search and search.strip() else None,
        )
        return await self._call(self._store.find_many, task_filter, ACTIVE_SORT)

    async def list_trashed(self) -> List[TaskEntity]:
        """Trashed tasks, most recently deleted first."""
        return await self._call(self._store.find_many, TaskFilter(state=TaskState.trashed), TRASH_SORT)

    def categories(self) -> List[str]:
        known = list(KNOWN_CATEGORIES)
        if self._default_category not in known:
            known.insert(0, self._default_category)
        return known
