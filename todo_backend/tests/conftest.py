from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from src.todo_api.db import SQLiteTaskStore
from src.todo_api.main import create_app
from src.todo_api.models import TaskEntity, TaskState
from src.todo_api.repositories import InMemoryTaskStore, TaskStore
from src.todo_api.service import TaskService
from src.todo_api.settings import Settings

BASE_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_task(task_id: str, **overrides) -> TaskEntity:
    """Fully populated active task; timestamps are fixed for deterministic sorting."""
    task: TaskEntity = {
        "id": task_id,
        "title": f"Task {task_id}",
        "completed": False,
        "category": "Uncategorized",
        "due_date": None,
        "order": 0,
        "state": TaskState.active,
        "deleted_at": None,
        "created_at": BASE_TIME,
        "updated_at": BASE_TIME,
    }
    task.update(overrides)  # type: ignore[typeddict-item]
    return task


def minutes(n: int) -> datetime:
    return BASE_TIME + timedelta(minutes=n)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path: Path) -> TaskStore:
    """
    Both storage backends, initialized and closed around each test.
    The service rules must hold regardless of where tasks are kept.
    """
    if request.param == "sqlite":
        s: TaskStore = SQLiteTaskStore(str(tmp_path / "todos.db"))
    else:
        s = InMemoryTaskStore()
    s.init()
    yield s
    s.close()


@pytest.fixture()
def service(store: TaskStore) -> TaskService:
    return TaskService(store)


@pytest.fixture()
def client() -> TestClient:
    """
    API client over a fresh in-memory store. Entering the client runs the
    app lifespan, which initializes the store and wires the service.
    """
    app = create_app(Settings(), store=InMemoryTaskStore())
    with TestClient(app) as c:
        yield c
