"""Persistent, order-preserving queue of local mutations.

Queue rows are only changed through the operations below: enqueue, the
selection of pending items, lookups, and manual re-enqueue of terminal
items. Retry bookkeeping lives in :mod:`todo_sync.sync.retry` and removal on
success in :mod:`todo_sync.sync.reconciler`.
"""

import logging
import uuid
from typing import List, Optional

from ..database import Database, Transaction
from ..models import QueueItemStatus, SyncOperation, SyncQueueItem
from ..utils.datetime import now_utc, to_iso_string


logger = logging.getLogger(__name__)


class SyncQueue:
    """The ``sync_queue`` table."""

    def __init__(self, db: Database):
        self.db = db

    # Writes

    def enqueue(self, tx: Transaction, task_id: str, operation: SyncOperation,
                data: str) -> SyncQueueItem:
        """Append one item inside the caller's transaction.

        Args:
            tx: Open transaction that also carries the task write
            task_id: Local task identifier
            operation: Kind of mutation
            data: Serialized task snapshot

        Returns:
            The queued item
        """
        item = SyncQueueItem(
            id=str(uuid.uuid4()),
            task_id=task_id,
            operation=operation,
            data=data,
            created_at=now_utc(),
        )
        tx.run(
            """
            INSERT INTO sync_queue (id, task_id, operation, data, retry_count, status, created_at)
            VALUES (?, ?, ?, ?, 0, ?, ?)
            """,
            (item.id, item.task_id, item.operation.value, item.data,
             QueueItemStatus.PENDING.value, to_iso_string(item.created_at)),
        )
        item.seq = tx.get("SELECT last_insert_rowid() AS seq")["seq"]
        logger.debug(f"Queued {operation.value} for task {task_id} as {item.id}")
        return item

    def add(self, task_id: str, operation: SyncOperation, data: str) -> Optional[SyncQueueItem]:
        """Enqueue in a transaction of its own; refuses unknown tasks."""
        with self.db.transaction() as tx:
            if tx.get("SELECT id FROM tasks WHERE id = ?", (task_id,)) is None:
                logger.warning(f"Not queueing {operation.value} for unknown task {task_id}")
                return None
            return self.enqueue(tx, task_id, operation, data)

    def requeue_failed(self, item_id: str) -> Optional[SyncQueueItem]:
        """Make a terminal item pending again with a fresh retry budget.

        The item is reset in place and keeps its position, so it is still
        sent before any later item of the same task. Returns None if
        ``item_id`` is not a failed item.
        """
        # Imported here to avoid a cycle; the reconciler owns task sync fields
        from .reconciler import StatusReconciler

        with self.db.transaction() as tx:
            reset = tx.run(
                """
                UPDATE sync_queue
                SET status = ?, retry_count = 0, error_message = NULL
                WHERE id = ? AND status = ?
                """,
                (QueueItemStatus.PENDING.value, item_id, QueueItemStatus.FAILED.value),
            )
            if not reset:
                return None

            item = SyncQueueItem.from_row(
                tx.get("SELECT * FROM sync_queue WHERE id = ?", (item_id,))
            )
            StatusReconciler.mark_task(tx, item.task_id, StatusReconciler.task_status(tx, item.task_id))

        logger.info(f"Re-enqueued failed item {item_id} for task {item.task_id}")
        return item

    def requeue_all_failed(self) -> List[SyncQueueItem]:
        return [
            requeued
            for requeued in (self.requeue_failed(item.id) for item in self.failed_items())
            if requeued is not None
        ]

    # Reads

    def pending_items(self) -> List[SyncQueueItem]:
        """All items eligible for sync, in enqueue order.

        Items queued behind a terminally failed item of the same task are
        held back until that item is re-enqueued.
        """
        rows = self.db.all(
            """
            SELECT * FROM sync_queue
            WHERE status = ?
              AND NOT EXISTS (
                  SELECT 1 FROM sync_queue AS earlier
                  WHERE earlier.task_id = sync_queue.task_id
                    AND earlier.status = ?
                    AND earlier.seq < sync_queue.seq
              )
            ORDER BY seq
            """,
            (QueueItemStatus.PENDING.value, QueueItemStatus.FAILED.value),
        )
        return [SyncQueueItem.from_row(row) for row in rows]

    def failed_items(self) -> List[SyncQueueItem]:
        rows = self.db.all(
            "SELECT * FROM sync_queue WHERE status = ? ORDER BY seq",
            (QueueItemStatus.FAILED.value,),
        )
        return [SyncQueueItem.from_row(row) for row in rows]

    def all_items(self) -> List[SyncQueueItem]:
        rows = self.db.all("SELECT * FROM sync_queue ORDER BY seq")
        return [SyncQueueItem.from_row(row) for row in rows]

    def get_item(self, item_id: str) -> Optional[SyncQueueItem]:
        row = self.db.get("SELECT * FROM sync_queue WHERE id = ?", (item_id,))
        return SyncQueueItem.from_row(row) if row else None

    def items_for_task(self, task_id: str) -> List[SyncQueueItem]:
        rows = self.db.all("SELECT * FROM sync_queue WHERE task_id = ? ORDER BY seq", (task_id,))
        return [SyncQueueItem.from_row(row) for row in rows]

    def count(self, status: QueueItemStatus = QueueItemStatus.PENDING) -> int:
        row = self.db.get("SELECT COUNT(*) AS count FROM sync_queue WHERE status = ?", (status.value,))
        return int(row["count"]) if row else 0

