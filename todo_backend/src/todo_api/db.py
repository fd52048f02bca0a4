from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Generator, List, Mapping, Optional, Sequence, Tuple

from .errors import StoreError
from .models import TaskEntity, TaskState
from .repositories import SortSpec, TaskFilter, TaskStore, check_fields, check_sort

logger = logging.getLogger("todos.store")


@dataclass(frozen=True)
class _Cols:
    table: str = "todos"
    id: str = "id"
    title: str = "title"
    completed: str = "completed"
    category: str = "category"
    due_date: str = "due_date"
    order: str = "sort_order"
    state: str = "state"
    deleted_at: str = "deleted_at"
    created_at: str = "created_at"
    updated_at: str = "updated_at"


_COLS = _Cols()


def _to_db(value: Any) -> Any:
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        # Fixed width keeps lexical order equal to chronological order
        return value.isoformat(timespec="microseconds")
    return value


def _parse_dt(s: Optional[str]) -> Optional[datetime]:
    if s is None:
        return None
    return datetime.fromisoformat(s)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SQLiteTaskStore(TaskStore):
    """
    SQLite store implementing the TaskStore interface.

    Each call opens its own connection, so the store can be used from the
    worker threads the service dispatches to. A call runs in one transaction
    that is committed on success and rolled back on error.
    """

    backend_name = "sqlite"

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        try:
            conn = sqlite3.connect(self._db_path, timeout=30.0)
        except sqlite3.Error as e:
            logger.exception("store.error", extra={"category": "store", "event": "store.error", "db_path": self._db_path})
            raise StoreError(f"could not open database: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.exception("store.error", extra={"category": "store", "event": "store.error", "db_path": self._db_path})
            raise StoreError(f"database operation failed: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init(self) -> None:
        os.makedirs(os.path.dirname(self._db_path) or ".", exist_ok=True)
        with self._conn() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_COLS.table} (
                    {_COLS.id} TEXT PRIMARY KEY,
                    {_COLS.title} TEXT NOT NULL,
                    {_COLS.completed} INTEGER NOT NULL DEFAULT 0,
                    {_COLS.category} TEXT NOT NULL,
                    {_COLS.due_date} TEXT NULL,
                    {_COLS.order} INTEGER NOT NULL DEFAULT 0,
                    {_COLS.state} TEXT NOT NULL DEFAULT '{TaskState.active.value}',
                    {_COLS.deleted_at} TEXT NULL,
                    {_COLS.created_at} TEXT NOT NULL,
                    {_COLS.updated_at} TEXT NOT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_COLS.table}_state_order "
                f"ON {_COLS.table}({_COLS.state}, {_COLS.order})"
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_COLS.table}_deleted_at ON {_COLS.table}({_COLS.deleted_at})"
            )
            total = conn.execute(f"SELECT COUNT(*) AS cnt FROM {_COLS.table}").fetchone()["cnt"]
        logger.info(
            "store.ready",
            extra={"category": "store", "event": "store.ready", "backend": self.backend_name,
                   "db_path": self._db_path, "total": int(total)},
        )

    def close(self) -> None:
        # No persistent connections are held between calls
        logger.info("store.closed", extra={"category": "store", "event": "store.closed", "backend": self.backend_name})

    def _row_to_entity(self, row: sqlite3.Row) -> TaskEntity:
        return {
            "id": str(row[_COLS.id]),
            "title": str(row[_COLS.title]),
            "completed": bool(row[_COLS.completed]),
            "category": str(row[_COLS.category]),
            "due_date": _parse_dt(row[_COLS.due_date]),
            "order": int(row[_COLS.order]),
            "state": TaskState(row[_COLS.state]),
            "deleted_at": _parse_dt(row[_COLS.deleted_at]),
            "created_at": _parse_dt(row[_COLS.created_at]),  # type: ignore
            "updated_at": _parse_dt(row[_COLS.updated_at]),  # type: ignore
        }

    def _where(self, task_filter: Optional[TaskFilter]) -> Tuple[str, List[Any]]:
        f = task_filter or TaskFilter()
        clauses = []
        params: List[Any] = []
        if f.state is not None:
            clauses.append(f"{_COLS.state} = ?")
            params.append(f.state.value)
        if f.completed is not None:
            clauses.append(f"{_COLS.completed} = ?")
            params.append(1 if f.completed else 0)
        if f.category is not None:
            clauses.append(f"{_COLS.category} = ?")
            params.append(f.category)
        if f.search:
            clauses.append(f"{_COLS.title} LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(f.search)}%")
        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where_sql, params

    def _set_clause(self, fields: Mapping[str, Any]) -> Tuple[str, List[Any]]:
        check_fields(fields)
        names = [getattr(_COLS, name) for name in fields]
        return ", ".join(f"{n} = ?" for n in names), [_to_db(v) for v in fields.values()]

    def _select_one(self, conn: sqlite3.Connection, task_id: str) -> Optional[sqlite3.Row]:
        return conn.execute(f"SELECT * FROM {_COLS.table} WHERE {_COLS.id} = ?", (task_id,)).fetchone()

    def find_many(self, task_filter: Optional[TaskFilter] = None, sort: SortSpec = ()) -> List[TaskEntity]:
        check_sort(sort)
        where_sql, params = self._where(task_filter)
        order_terms = []
        for field, descending in sort:
            col = getattr(_COLS, field)
            # NULLs last, matching the in-memory store
            order_terms.append(f"({col} IS NULL), {col} {'DESC' if descending else 'ASC'}")
        order_sql = f"ORDER BY {', '.join(order_terms)}" if order_terms else ""
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM {_COLS.table} {where_sql} {order_sql}", params
            ).fetchall()
            return [self._row_to_entity(r) for r in rows]

    def find_one(self, task_id: str) -> Optional[TaskEntity]:
        with self._conn() as conn:
            row = self._select_one(conn, task_id)
            return self._row_to_entity(row) if row else None

    def count(self, task_filter: Optional[TaskFilter] = None) -> int:
        where_sql, params = self._where(task_filter)
        with self._conn() as conn:
            row = conn.execute(f"SELECT COUNT(*) AS cnt FROM {_COLS.table} {where_sql}", params).fetchone()
            return int(row["cnt"]) if row else 0

    def insert(self, task: TaskEntity) -> TaskEntity:
        names = list(task.keys())
        cols = ", ".join(getattr(_COLS, n) for n in names)
        marks = ", ".join("?" for _ in names)
        with self._conn() as conn:
            conn.execute(
                f"INSERT INTO {_COLS.table} ({cols}) VALUES ({marks})",
                [_to_db(task[n]) for n in names],  # type: ignore[literal-required]
            )
            row = self._select_one(conn, task["id"])
            assert row is not None
            return self._row_to_entity(row)

    def update_one(self, task_id: str, fields: Mapping[str, Any]) -> Optional[TaskEntity]:
        set_sql, params = self._set_clause(fields)
        with self._conn() as conn:
            cur = conn.execute(
                f"UPDATE {_COLS.table} SET {set_sql} WHERE {_COLS.id} = ?", [*params, task_id]
            )
            if cur.rowcount == 0:
                return None
            row = self._select_one(conn, task_id)
            return self._row_to_entity(row) if row else None

    def update_many(self, task_filter: TaskFilter, fields: Mapping[str, Any]) -> int:
        set_sql, set_params = self._set_clause(fields)
        where_sql, where_params = self._where(task_filter)
        with self._conn() as conn:
            cur = conn.execute(
                f"UPDATE {_COLS.table} SET {set_sql} {where_sql}", [*set_params, *where_params]
            )
            return cur.rowcount

    def bulk_update(self, changes: Sequence[Tuple[str, Mapping[str, Any]]]) -> int:
        statements = []
        for task_id, fields in changes:
            set_sql, params = self._set_clause(fields)
            statements.append((f"UPDATE {_COLS.table} SET {set_sql} WHERE {_COLS.id} = ?", [*params, task_id]))
        updated = 0
        # One connection, one transaction: any failure rolls back the whole batch
        with self._conn() as conn:
            for sql, params in statements:
                updated += conn.execute(sql, params).rowcount
        return updated

    def delete_one(self, task_id: str) -> Optional[TaskEntity]:
        with self._conn() as conn:
            row = self._select_one(conn, task_id)
            if row is None:
                return None
            conn.execute(f"DELETE FROM {_COLS.table} WHERE {_COLS.id} = ?", (task_id,))
            return self._row_to_entity(row)
