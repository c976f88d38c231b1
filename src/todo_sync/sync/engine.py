"""Sync orchestration.

One call to :meth:`SyncEngine.sync` runs a full cycle: read the pending
queue, split it into batches, dispatch each batch and fold every item's
outcome back into the store. Failures of any kind end up in the returned
``SyncResult``; nothing is raised to the caller.
"""

import asyncio
import logging
from typing import List, Optional, Sequence, Set, TypeVar

from ..config import SyncSettings
from ..database import Database
from ..models import (
    ConflictSide,
    ProcessedItem,
    QueueItemStatus,
    SyncQueueItem,
    SyncResult,
    SyncStatusSummary,
)
from ..utils.datetime import parse_optional_timestamp
from .conflict import ConflictResolver
from .errors import BatchTransportError, PerItemError, SyncEngineError
from .queue import SyncQueue
from .reconciler import Outcome, StatusReconciler
from .remote import RemoteClient
from .retry import PermanentFailureHandler, RetryTracker


logger = logging.getLogger(__name__)

T = TypeVar("T")


def partition_batches(items: Sequence[T], batch_size: int) -> List[List[T]]:
    """Split ``items`` into consecutive batches of at most ``batch_size``."""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


class SyncEngine:
    """Coordinates queue, remote client, retries and status reconciliation."""

    def __init__(self, db: Database, remote: RemoteClient, batch_size: int = 10,
                 max_retries: int = 3,
                 on_permanent_failure: Optional[PermanentFailureHandler] = None):
        self.db = db
        self.remote = remote
        self.batch_size = batch_size
        self.queue = SyncQueue(db)
        self.retry_tracker = RetryTracker(db, max_retries, on_permanent_failure)
        self.reconciler = StatusReconciler(db, self.retry_tracker)
        self._cycle_lock = asyncio.Lock()
        self._cancel_requested = False
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings: SyncSettings, db: Optional[Database] = None,
                      client=None, **kwargs) -> "SyncEngine":
        """Build an engine (and its remote client) from settings."""
        db = db or Database(settings.get_db_path())
        remote = RemoteClient(
            settings.api_base_url,
            request_timeout=settings.request_timeout,
            connectivity_timeout=settings.connectivity_timeout,
            resolver=ConflictResolver(),
            client=client,
        )
        return cls(db, remote, batch_size=settings.batch_size,
                   max_retries=settings.max_retries, **kwargs)

    @property
    def resolver(self) -> ConflictResolver:
        return self.remote.resolver

    @property
    def is_running(self) -> bool:
        return self._cycle_lock.locked()

    async def aclose(self) -> None:
        await self.remote.aclose()

    # Public operations

    async def check_connectivity(self) -> bool:
        return await self.remote.check_connectivity()

    def cancel(self) -> None:
        """Stop the running cycle at the next batch boundary."""
        if self.is_running:
            self.logger.info("Cancellation requested; stopping at next batch boundary")
            self._cancel_requested = True

    async def sync(self) -> SyncResult:
        """Run one sync cycle. Never raises."""
        async with self._cycle_lock:
            self._cancel_requested = False
            result = SyncResult()
            try:
                await self._run_cycle(result)
            except SyncEngineError as e:
                self.logger.error(f"Sync cycle aborted: {e}")
                result.success = False
                result.message = str(e)
            except Exception as e:
                # Counts gathered before the failure are kept
                self.logger.exception("Unexpected error during sync cycle")
                result.success = False
                result.message = f"Unexpected sync error: {e}"
            finally:
                self._cancel_requested = False
            return result

    def status(self) -> SyncStatusSummary:
        """Counts and last sync time, without touching the network."""
        row = self.db.get("SELECT MAX(last_synced_at) AS last FROM tasks")
        return SyncStatusSummary(
            pending_count=self.queue.count(QueueItemStatus.PENDING),
            failed_count=self.queue.count(QueueItemStatus.FAILED),
            last_synced_at=parse_optional_timestamp(row["last"] if row else None),
            is_online=False,
        )

    async def status_with_connectivity(self) -> SyncStatusSummary:
        summary = self.status()
        summary.is_online = await self.check_connectivity()
        return summary

    # Cycle

    async def _run_cycle(self, result: SyncResult) -> SyncResult:
        items = self.queue.pending_items()
        if not items:
            return result.finalize()

        if not await self.check_connectivity():
            self.logger.warning(f"Remote unreachable; leaving {len(items)} items queued")
            result.offline = True
            result.message = "Remote server is unreachable"
            return result.finalize()

        batches = partition_batches(items, self.batch_size)
        self.logger.info(f"Starting sync of {len(items)} items in {len(batches)} batches")

        blocked_tasks: Set[str] = set()
        for index, batch in enumerate(batches):
            if self._cancel_requested:
                result.cancelled = True
                result.message = f"Cancelled after {index} of {len(batches)} batches"
                self.logger.info(result.message)
                break

            # Later items of a task must wait for its earlier, failed ones
            ready = [item for item in batch if item.task_id not in blocked_tasks]
            result.deferred_items += len(batch) - len(ready)
            if not ready:
                continue

            await self._process_batch(ready, result, blocked_tasks)

        result.finalize()
        self.logger.info(
            f"Sync finished: {result.synced_items} synced, {result.failed_items} failed, "
            f"{result.deferred_items} deferred"
        )
        return result

    async def _process_batch(self, batch: List[SyncQueueItem], result: SyncResult,
                             blocked_tasks: Set[str]) -> None:
        response = await self.remote.process_batch(batch)
        outcomes = response.by_client_id()

        for item in batch:
            processed = outcomes.get(item.id)
            if processed is not None and processed.succeeded:
                self.reconciler.apply_outcome(item, Outcome.SUCCESS, self._server_data(processed))
                result.synced_items += 1
                continue

            if response.failed_at_transport:
                error: Exception = BatchTransportError(response.transport_error)
            else:
                message = processed.error if processed is not None else None
                error = PerItemError(item.id, message or "Unknown sync error")

            self.reconciler.apply_outcome(item, Outcome.FAILURE, error=error)
            result.add_error(item.task_id, item.operation, str(error))
            blocked_tasks.add(item.task_id)

    @staticmethod
    def _server_data(processed: ProcessedItem) -> dict:
        data = {"server_id": processed.server_id}
        if processed.resolution == ConflictSide.REMOTE:
            data["remote_data"] = processed.resolved_data
        return data
