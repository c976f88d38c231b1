"""Task CRUD with queued synchronization.

Every mutation writes the task and appends exactly one queue item in the
same transaction, so the queue always reflects the last local change.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from ..database import Database, Transaction
from ..models import SyncOperation, Task, TaskSyncStatus
from ..sync.queue import SyncQueue
from ..sync.reconciler import StatusReconciler
from ..utils.datetime import now_utc, to_iso_string


logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("title", "description", "completed")


class TaskNotFoundError(LookupError):
    """Raised when a task id does not resolve to a live task."""

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class TaskService:
    """Local task operations."""

    def __init__(self, db: Database, queue: Optional[SyncQueue] = None):
        self.db = db
        self.queue = queue or SyncQueue(db)

    def create_task(self, title: str, description: str = "", completed: bool = False) -> Task:
        """Create a task and queue its ``create`` operation."""
        if not title or not title.strip():
            raise ValueError("Title is required")

        now = now_utc()
        task = Task(
            id=str(uuid.uuid4()),
            title=title.strip(),
            description=description or "",
            completed=bool(completed),
            created_at=now,
            updated_at=now,
            sync_status=TaskSyncStatus.PENDING,
        )
        with self.db.transaction() as tx:
            tx.run(
                """
                INSERT INTO tasks (id, title, description, completed, is_deleted,
                                   created_at, updated_at, sync_status, server_id, last_synced_at)
                VALUES (?, ?, ?, ?, 0, ?, ?, ?, NULL, NULL)
                """,
                (task.id, task.title, task.description, int(task.completed),
                 to_iso_string(task.created_at), to_iso_string(task.updated_at),
                 task.sync_status.value),
            )
            self.queue.enqueue(tx, task.id, SyncOperation.CREATE, SyncOperation.CREATE.serialize(task))

        logger.info(f"Created task {task.id}")
        return task

    def update_task(self, task_id: str, **updates: Any) -> Optional[Task]:
        """Update fields of a live task and queue an ``update``.

        Returns:
            The updated task, or None if it does not exist or is deleted
        """
        unknown = set(updates) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if "title" in updates and not (updates["title"] or "").strip():
            raise ValueError("Title is required")

        with self.db.transaction() as tx:
            task = self._load(tx, task_id)
            if task is None or task.is_deleted:
                return None

            if "title" in updates:
                task.title = updates["title"].strip()
            if "description" in updates and updates["description"] is not None:
                task.description = updates["description"]
            if "completed" in updates and updates["completed"] is not None:
                task.completed = bool(updates["completed"])
            task.updated_at = now_utc()
            task.sync_status = self._dirty_status(tx, task.id)

            tx.run(
                """
                UPDATE tasks
                SET title = ?, description = ?, completed = ?, updated_at = ?, sync_status = ?
                WHERE id = ?
                """,
                (task.title, task.description, int(task.completed),
                 to_iso_string(task.updated_at), task.sync_status.value, task.id),
            )
            self.queue.enqueue(tx, task.id, SyncOperation.UPDATE, SyncOperation.UPDATE.serialize(task))

        logger.info(f"Updated task {task_id}")
        return task

    def delete_task(self, task_id: str) -> bool:
        """Soft-delete a task and queue a ``delete``.

        Returns:
            True if the task was deleted, False if it does not exist
        """
        with self.db.transaction() as tx:
            task = self._load(tx, task_id)
            if task is None or task.is_deleted:
                return False

            task.is_deleted = True
            task.updated_at = now_utc()
            task.sync_status = self._dirty_status(tx, task.id)
            tx.run(
                "UPDATE tasks SET is_deleted = 1, updated_at = ?, sync_status = ? WHERE id = ?",
                (to_iso_string(task.updated_at), task.sync_status.value, task.id),
            )
            self.queue.enqueue(tx, task.id, SyncOperation.DELETE, SyncOperation.DELETE.serialize(task))

        logger.info(f"Deleted task {task_id}")
        return True

    def get_task(self, task_id: str) -> Optional[Task]:
        """Get a live task; deleted tasks are reported as missing."""
        row = self.db.get("SELECT * FROM tasks WHERE id = ?", (task_id,))
        if row is None:
            return None
        task = Task.from_row(row)
        return None if task.is_deleted else task

    def require_task(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def get_all_tasks(self) -> List[Task]:
        rows = self.db.all("SELECT * FROM tasks WHERE is_deleted = 0 ORDER BY created_at, rowid")
        return [Task.from_row(row) for row in rows]

    def get_tasks_needing_sync(self) -> List[Task]:
        rows = self.db.all(
            "SELECT * FROM tasks WHERE sync_status IN (?, ?) ORDER BY updated_at",
            (TaskSyncStatus.PENDING.value, TaskSyncStatus.ERROR.value),
        )
        return [Task.from_row(row) for row in rows]

    def counts(self) -> Dict[str, int]:
        """Number of live tasks per sync status."""
        rows = self.db.all(
            "SELECT sync_status, COUNT(*) AS count FROM tasks WHERE is_deleted = 0 GROUP BY sync_status"
        )
        counts = {status.value: 0 for status in TaskSyncStatus}
        counts.update({row["sync_status"]: row["count"] for row in rows})
        return counts

    @staticmethod
    def _dirty_status(tx: Transaction, task_id: str) -> TaskSyncStatus:
        # An earlier terminally failed item keeps the task in error
        if StatusReconciler.task_status(tx, task_id) == TaskSyncStatus.ERROR:
            return TaskSyncStatus.ERROR
        return TaskSyncStatus.PENDING

    @staticmethod
    def _load(tx: Transaction, task_id: str) -> Optional[Task]:
        row = tx.get("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return Task.from_row(row) if row else None
