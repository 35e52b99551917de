"""persistence.py — Task status and OngoingJob bookkeeping in Postgres.

The connection pool is owned by a ``TaskStateStore``: opened lazily on the
first invocation of a cold container, borrowed per operation, and closed at
interpreter shutdown. Row locks serialize concurrent cleanup of the same
job; there is no global lock.
"""
from __future__ import annotations

import atexit
from typing import Optional

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from config import (
    DB_CONNECT_TIMEOUT_SECONDS,
    DB_POOL_MAX_SIZE,
    DB_POOL_MIN_SIZE,
    POSTGRES_URL,
    logger,
)
from errors import PersistenceError
from models import DISPATCHER_TRANSITIONS, TaskStatus
from serialization import _emit_structured_observability, _now_utc

__all__ = [
    "TaskStateStore",
    "_close_store",
    "_get_store",
]

_UPDATE_STATUS_SQL = 'UPDATE "Task" SET "status" = %s, "lastUpdated" = %s WHERE "id" = %s AND "status" IN ({})'
_LOCK_ONGOING_JOB_SQL = 'SELECT "id" FROM "OngoingJob" WHERE "taskId" = %s FOR UPDATE'
_DELETE_ONGOING_JOB_SQL = 'DELETE FROM "OngoingJob" WHERE "id" = %s'


class TaskStateStore:
    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    @classmethod
    def from_dsn(cls, dsn: str) -> "TaskStateStore":
        if not dsn:
            raise PersistenceError("POSTGRES_URL is not configured")
        pool = ConnectionPool(
            dsn,
            min_size=DB_POOL_MIN_SIZE,
            max_size=DB_POOL_MAX_SIZE,
            timeout=DB_CONNECT_TIMEOUT_SECONDS,
            kwargs={"row_factory": dict_row},
            open=True,
        )
        return cls(pool)

    def update_status(self, task_id: str, status: TaskStatus) -> int:
        """Set ``Task.status`` and ``Task.lastUpdated``. Returns rows touched.

        The write only applies while the row is in one of the statuses listed
        for ``status`` in ``DISPATCHER_TRANSITIONS``. Zero rows means the task
        is missing or was already moved on (a redelivered message for a build
        that started); callers treat that as already handled.
        """
        expected = DISPATCHER_TRANSITIONS[status]
        query = _UPDATE_STATUS_SQL.format(", ".join(["%s"] * len(expected)))
        params = (status.value, _now_utc(), task_id, *(s.value for s in expected))
        try:
            with self.pool.connection() as conn:
                cur = conn.execute(query, params)
                touched = cur.rowcount
        except (psycopg.Error, PoolTimeout) as exc:
            logger.error("[ERROR] Failed to update status for task %s: %s", task_id, exc, exc_info=True)
            raise PersistenceError(f"status update to {status.value} failed for task {task_id}") from exc

        if touched == 0:
            logger.warning(
                "[WARNING] Task %s not in %s; status %s not recorded",
                task_id,
                "/".join(s.value for s in expected),
                status.value,
            )
        _emit_structured_observability(
            component="trigger_build_task",
            event="status_update",
            task_id=task_id,
            outcome=status.value,
            extra={"rows": touched},
        )
        return touched

    def remove_ongoing_job(self, task_id: str) -> bool:
        """Delete the OngoingJob row for ``task_id`` under a row lock.

        Returns False when no row exists, which is not an error.
        """
        try:
            with self.pool.connection() as conn:
                with conn.transaction():
                    row = conn.execute(_LOCK_ONGOING_JOB_SQL, (task_id,)).fetchone()
                    if row is None:
                        logger.info("[INFO] No ongoing job found for task %s", task_id)
                        return False
                    conn.execute(_DELETE_ONGOING_JOB_SQL, (row["id"],))
        except (psycopg.Error, PoolTimeout) as exc:
            logger.error("[ERROR] Failed to remove ongoing job for task %s: %s", task_id, exc, exc_info=True)
            raise PersistenceError(f"ongoing job cleanup failed for task {task_id}") from exc

        logger.info("[INFO] Removed ongoing job %s for task %s", row["id"], task_id)
        return True

    def close(self) -> None:
        self.pool.close()


# ---------------------------------------------------------------------------
# Cold-start singleton
# ---------------------------------------------------------------------------

_store: Optional[TaskStateStore] = None


def _get_store() -> TaskStateStore:
    """Get (or open) the store for this container."""
    global _store
    if _store is None:
        _store = TaskStateStore.from_dsn(POSTGRES_URL)
        atexit.register(_close_store)
    return _store


def _close_store() -> None:
    global _store
    if _store is not None:
        _store.close()
        _store = None
