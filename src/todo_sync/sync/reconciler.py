"""Applies sync outcomes back onto tasks and the queue.

This is the only writer of a task's ``sync_status``, ``server_id`` and
``last_synced_at``. Every outcome is applied in a single transaction that
covers both the task row and its queue item.
"""

import logging
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from ..database import Database, Transaction
from ..models import QueueItemStatus, SyncQueueItem, TaskSyncStatus
from ..utils.datetime import now_utc, parse_timestamp, to_iso_string
from .retry import RetryTracker


logger = logging.getLogger(__name__)

# Task fields a winning remote copy may overwrite
REMOTE_FIELDS = ("title", "description", "completed", "is_deleted", "updated_at")


class Outcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class StatusReconciler:
    """Moves tasks between pending, synced and error."""

    def __init__(self, db: Database, retry_tracker: RetryTracker):
        self.db = db
        self.retry_tracker = retry_tracker

    def apply_outcome(self, item: SyncQueueItem, outcome: Outcome,
                      server_data: Optional[Mapping[str, Any]] = None,
                      error: Union[str, Exception, None] = None) -> bool:
        """Apply the result of syncing ``item``.

        Returns:
            True if anything changed; False when the queue item no longer
            exists (or is no longer pending), which makes repeated calls
            harmless
        """
        if outcome == Outcome.SUCCESS:
            return self.mark_synced(item, server_data)
        return self.mark_failed(item, error or "Unknown sync error")

    def mark_synced(self, item: SyncQueueItem, server_data: Optional[Mapping[str, Any]] = None) -> bool:
        """Remove the confirmed item and mark its task synced.

        ``server_data`` may carry ``server_id`` and, when a remote copy won a
        conflict, the task fields to adopt. A missing server id never clears
        an existing one. The task only becomes ``synced`` once nothing else is
        queued for it; see :meth:`task_status`.
        """
        server_data = dict(server_data or {})
        server_id = server_data.get("server_id") or None

        with self.db.transaction() as tx:
            if not tx.run("DELETE FROM sync_queue WHERE id = ?", (item.id,)):
                logger.debug(f"Queue item {item.id} already reconciled")
                return False

            status = self.task_status(tx, item.task_id)

            tx.run(
                """
                UPDATE tasks
                SET sync_status = ?,
                    server_id = COALESCE(?, server_id),
                    last_synced_at = ?
                WHERE id = ?
                """,
                (status.value, server_id, to_iso_string(now_utc()), item.task_id),
            )

            adopted = self._remote_fields(server_data.get("remote_data"))
            if adopted:
                assignments = ", ".join(f"{name} = ?" for name in adopted)
                tx.run(
                    f"UPDATE tasks SET {assignments} WHERE id = ?",
                    (*adopted.values(), item.task_id),
                )

        logger.info(
            f"Sync status updated for task {item.task_id}: {status.value}"
            + (f" (server_id={server_id})" if server_id else "")
        )
        return True

    def mark_failed(self, item: SyncQueueItem, error: Union[str, Exception]) -> bool:
        """Mark the task as errored and charge the item one retry.

        The queue item stays in place; the retry tracker decides whether it
        is still eligible for the next cycle.
        """
        with self.db.transaction() as tx:
            updated = self.retry_tracker.record_failure(item, error, tx=tx)
            if updated is None:
                return False
            self.mark_task(tx, item.task_id, TaskSyncStatus.ERROR)

        logger.info(f"Sync status updated for task {item.task_id}: {TaskSyncStatus.ERROR.value}")
        return True

    @staticmethod
    def mark_task(tx: Transaction, task_id: str, status: TaskSyncStatus) -> None:
        """Set a task's sync status inside an open transaction."""
        tx.run("UPDATE tasks SET sync_status = ? WHERE id = ?", (status.value, task_id))

    @staticmethod
    def task_status(tx: Transaction, task_id: str) -> TaskSyncStatus:
        """Sync status implied by the queue items left for a task.

        A terminally failed item keeps the task in ``error`` until it is
        re-enqueued; other queued items keep it ``pending``.
        """
        rows = tx.all(
            "SELECT status, COUNT(*) AS count FROM sync_queue WHERE task_id = ? GROUP BY status",
            (task_id,),
        )
        counts = {row["status"]: row["count"] for row in rows}
        if counts.get(QueueItemStatus.FAILED.value):
            return TaskSyncStatus.ERROR
        if counts.get(QueueItemStatus.PENDING.value):
            return TaskSyncStatus.PENDING
        return TaskSyncStatus.SYNCED

    @staticmethod
    def _remote_fields(remote: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        if not isinstance(remote, Mapping):
            return {}

        adopted: Dict[str, Any] = {}
        for name in REMOTE_FIELDS:
            if name not in remote or remote[name] is None:
                continue
            value = remote[name]
            if name in ("completed", "is_deleted"):
                value = int(bool(value))
            elif name == "updated_at":
                try:
                    value = to_iso_string(parse_timestamp(value))
                except ValueError:
                    continue
            else:
                value = str(value)
            adopted[name] = value
        return adopted
