"""Retry accounting for queue items.

Each failure is charged with one UPDATE statement, so the increment, the
error message and the terminal transition land together or not at all.
"""

import logging
from typing import Callable, Optional, Union

from ..database import Database, Transaction
from ..models import QueueItemStatus, SyncQueueItem
from .errors import PermanentFailure


logger = logging.getLogger(__name__)

PermanentFailureHandler = Callable[[SyncQueueItem, PermanentFailure], None]


class RetryTracker:
    """Charges retries and freezes items that exhaust them."""

    def __init__(self, db: Database, max_retries: int = 3,
                 on_permanent_failure: Optional[PermanentFailureHandler] = None):
        """Initialize the tracker.

        Args:
            db: Task database
            max_retries: Retry count at which an item becomes terminal
            on_permanent_failure: Optional callback for terminal transitions
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.db = db
        self.max_retries = max_retries
        self.on_permanent_failure = on_permanent_failure

    def record_failure(self, item: SyncQueueItem, error: Union[str, Exception],
                       tx: Optional[Transaction] = None) -> Optional[SyncQueueItem]:
        """Charge one retry to ``item``.

        Args:
            item: Queue item that failed
            error: Failure message or exception
            tx: Optional open transaction to join

        Returns:
            The item as persisted after the update, or None if the item is
            gone or already terminal (nothing is charged in that case)
        """
        if tx is None:
            with self.db.transaction() as own_tx:
                updated = self._charge(own_tx, item, str(error))
        else:
            updated = self._charge(tx, item, str(error))

        if updated is None:
            logger.debug(f"No pending queue item {item.id} to charge")
            return None

        if updated.status == QueueItemStatus.FAILED:
            failure = PermanentFailure(
                updated.id, updated.retry_count,
                f"Sync permanently failed for item {updated.id}: {updated.error_message}",
            )
            logger.warning(
                f"{failure} (task {updated.task_id}, "
                f"{updated.retry_count}/{self.max_retries} attempts)"
            )
            if self.on_permanent_failure is not None:
                self.on_permanent_failure(updated, failure)
        else:
            logger.info(
                f"Sync error for item {updated.id} "
                f"(retry {updated.retry_count}/{self.max_retries}): {updated.error_message}"
            )
        return updated

    def _charge(self, tx: Transaction, item: SyncQueueItem, message: str) -> Optional[SyncQueueItem]:
        changed = tx.run(
            """
            UPDATE sync_queue
            SET retry_count = retry_count + 1,
                error_message = ?,
                status = CASE WHEN retry_count + 1 >= ? THEN ? ELSE status END
            WHERE id = ? AND status = ?
            """,
            (message, self.max_retries, QueueItemStatus.FAILED.value,
             item.id, QueueItemStatus.PENDING.value),
        )
        if not changed:
            return None
        row = tx.get("SELECT * FROM sync_queue WHERE id = ?", (item.id,))
        return SyncQueueItem.from_row(row)
