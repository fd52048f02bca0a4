from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from ..schemas import MessageOut, ReorderRequest, TaskCreate, TaskOut, TaskPatch
from ..service import TaskService

router = APIRouter(
    prefix="/api/todos",
    tags=["todos"],
)

_NOT_FOUND = {404: {"description": "Todo not found"}}


def _get_service(request: Request) -> TaskService:
    """
    Dependency returning the TaskService wired at application startup.
    """
    return request.app.state.service


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=List[TaskOut],
    summary="List Todos",
    description=(
        "List active todos ordered by display position (ties: newest first).\n\n"
        "Query parameters:\n"
        "- completed: filter by completion status\n"
        "- category: filter by category label\n"
        "- q: case-insensitive search in the title"
    ),
)
async def list_todos(
    completed: Optional[bool] = Query(None, description="Filter by completion status"),
    category: Optional[str] = Query(None, description="Filter by category"),
    q: Optional[str] = Query(None, description="Search text for the title"),
    service: TaskService = Depends(_get_service),
) -> List[TaskOut]:
    items = await service.list_active(completed=completed, category=category, search=q)
    return [TaskOut(**it) for it in items]  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get(
    "/trash",
    response_model=List[TaskOut],
    summary="List Trash",
    description="List trashed todos, most recently deleted first.",
)
async def list_trash(service: TaskService = Depends(_get_service)) -> List[TaskOut]:
    items = await service.list_trashed()
    return [TaskOut(**it) for it in items]  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get(
    "/categories",
    response_model=List[str],
    summary="List Categories",
    description="Categories offered by the client. Other labels are accepted as well.",
)
async def list_categories(service: TaskService = Depends(_get_service)) -> List[str]:
    return service.categories()


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=TaskOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Todo",
    description="Create a new todo appended to the end of the active list.",
    responses={
        201: {"description": "Todo created successfully"},
        422: {"description": "Validation error"},
    },
)
async def create_todo(payload: TaskCreate, service: TaskService = Depends(_get_service)) -> TaskOut:
    created = await service.create(payload.title, category=payload.category, due_date=payload.due_date)
    return TaskOut(**created)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.delete(
    "/completed",
    response_model=MessageOut,
    summary="Purge Completed",
    description="Move every completed active todo to the trash.",
)
async def purge_completed(service: TaskService = Depends(_get_service)) -> MessageOut:
    count = await service.purge_completed()
    return MessageOut(message="Completed todos moved to trash", count=count)


# PUBLIC_INTERFACE
@router.patch(
    "/reorder",
    response_model=MessageOut,
    summary="Reorder Todos",
    description=(
        "Assign new order values in one batch. The client sends the visible list "
        "with a dense 0..N-1 sequence; unknown ids are skipped."
    ),
    responses={
        400: {"description": "Malformed reorder payload"},
        422: {"description": "Validation error"},
    },
)
async def reorder_todos(payload: ReorderRequest, service: TaskService = Depends(_get_service)) -> MessageOut:
    count = await service.reorder(payload.todos)
    return MessageOut(message="Todo order updated", count=count)


# PUBLIC_INTERFACE
@router.get(
    "/{todo_id}",
    response_model=TaskOut,
    summary="Get Todo",
    description="Get a single todo by ID, whether active or trashed.",
    responses=_NOT_FOUND,
)
async def get_todo(todo_id: str, service: TaskService = Depends(_get_service)) -> TaskOut:
    item = await service.get(todo_id)
    return TaskOut(**item)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.patch(
    "/{todo_id}",
    response_model=TaskOut,
    summary="Update Todo",
    description="Partially update fields of a todo. Omitted fields are left unchanged.",
    responses={**_NOT_FOUND, 400: {"description": "Invalid field value"}},
)
async def patch_todo(todo_id: str, payload: TaskPatch, service: TaskService = Depends(_get_service)) -> TaskOut:
    updated = await service.update(todo_id, payload)
    return TaskOut(**updated)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.delete(
    "/{todo_id}",
    response_model=TaskOut,
    summary="Trash Todo",
    description="Move a todo to the trash. It can be restored later.",
    responses=_NOT_FOUND,
)
async def trash_todo(todo_id: str, service: TaskService = Depends(_get_service)) -> TaskOut:
    trashed = await service.soft_delete(todo_id)
    return TaskOut(**trashed)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.delete(
    "/{todo_id}/permanent",
    response_model=MessageOut,
    summary="Delete Todo Permanently",
    description="Permanently delete a trashed todo.",
    responses={**_NOT_FOUND, 409: {"description": "Todo is not in the trash"}},
)
async def delete_todo_permanently(todo_id: str, service: TaskService = Depends(_get_service)) -> MessageOut:
    await service.permanent_delete(todo_id)
    return MessageOut(message="Todo permanently deleted")


# PUBLIC_INTERFACE
@router.post(
    "/{todo_id}/restore",
    response_model=TaskOut,
    summary="Restore Todo",
    description="Move a todo from the trash back to the active list.",
    responses=_NOT_FOUND,
)
async def restore_todo(todo_id: str, service: TaskService = Depends(_get_service)) -> TaskOut:
    restored = await service.restore(todo_id)
    return TaskOut(**restored)  # type: ignore[arg-type]
