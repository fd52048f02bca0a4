from __future__ import annotations

import uuid
from datetime import datetime, timezone


# PUBLIC_INTERFACE
def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# PUBLIC_INTERFACE
def new_task_id() -> str:
    """
    Allocate a fresh task id.

    uuid4 values are never handed out twice, so an id that belonged to a
    permanently deleted task cannot come back.
    """
    return str(uuid.uuid4())
