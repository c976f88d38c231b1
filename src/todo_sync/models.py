"""Data models for tasks, the sync queue and sync results.

This module contains the core data structures shared by the storage layer,
the sync engine and the outer surfaces (CLI and web API).
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from .utils.datetime import now_utc, parse_optional_timestamp, parse_timestamp, to_iso_string


class TaskSyncStatus(Enum):
    """Sync state of a task as seen by the user."""
    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"


class QueueItemStatus(Enum):
    """State of a queued mutation."""
    PENDING = "pending"
    FAILED = "failed"  # Terminal, needs manual re-enqueue


class ItemStatus(Enum):
    """Per-item status reported by the remote peer."""
    SUCCESS = "success"
    ERROR = "error"
    CONFLICT = "conflict"


class ConflictSide(Enum):
    LOCAL = "local"
    REMOTE = "remote"


@dataclass
class Task:
    """A task owned by the local store."""

    id: str
    title: str
    description: str = ""
    completed: bool = False
    is_deleted: bool = False
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)
    sync_status: TaskSyncStatus = TaskSyncStatus.PENDING
    server_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "completed": self.completed,
            "is_deleted": self.is_deleted,
            "created_at": to_iso_string(self.created_at),
            "updated_at": to_iso_string(self.updated_at),
            "sync_status": self.sync_status.value,
            "server_id": self.server_id,
            "last_synced_at": to_iso_string(self.last_synced_at),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Task":
        """Create from a database row."""
        return cls(
            id=row["id"],
            title=row["title"],
            description=row["description"] or "",
            completed=bool(row["completed"]),
            is_deleted=bool(row["is_deleted"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            sync_status=TaskSyncStatus(row["sync_status"]),
            server_id=row["server_id"],
            last_synced_at=parse_optional_timestamp(row["last_synced_at"]),
        )


def _full_snapshot(task: Task) -> Dict[str, Any]:
    return task.to_dict()


def _delete_snapshot(task: Task) -> Dict[str, Any]:
    return {
        "id": task.id,
        "server_id": task.server_id,
        "is_deleted": True,
        "updated_at": to_iso_string(task.updated_at),
    }


class SyncOperation(Enum):
    """Kind of mutation carried by a queue item.

    Each kind knows how to snapshot the task it applies to.
    """
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    def snapshot(self, task: Task) -> Dict[str, Any]:
        return _SNAPSHOT_BUILDERS[self](task)

    def serialize(self, task: Task) -> str:
        return json.dumps(self.snapshot(task), sort_keys=True)


_SNAPSHOT_BUILDERS: Dict[SyncOperation, Callable[[Task], Dict[str, Any]]] = {
    SyncOperation.CREATE: _full_snapshot,
    SyncOperation.UPDATE: _full_snapshot,
    SyncOperation.DELETE: _delete_snapshot,
}


@dataclass
class SyncQueueItem:
    """A mutation waiting for remote confirmation."""

    id: str
    task_id: str
    operation: SyncOperation
    data: str  # Serialized task snapshot at enqueue time
    retry_count: int = 0
    error_message: Optional[str] = None
    status: QueueItemStatus = QueueItemStatus.PENDING
    created_at: datetime = field(default_factory=now_utc)
    seq: Optional[int] = None  # Enqueue order, assigned by the store

    def payload(self) -> Dict[str, Any]:
        """Decode the stored snapshot; malformed data decodes to an empty dict."""
        try:
            decoded = json.loads(self.data) if self.data else {}
        except (TypeError, ValueError):
            return {}
        return decoded if isinstance(decoded, dict) else {}

    def to_wire(self) -> Dict[str, Any]:
        """Build the item entry of a batch request."""
        return {
            "client_id": self.id,
            "task_id": self.task_id,
            "operation": self.operation.value,
            "data": self.data,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "operation": self.operation.value,
            "data": self.data,
            "retry_count": self.retry_count,
            "error_message": self.error_message,
            "status": self.status.value,
            "created_at": to_iso_string(self.created_at),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SyncQueueItem":
        return cls(
            id=row["id"],
            task_id=row["task_id"],
            operation=SyncOperation(row["operation"]),
            data=row["data"],
            retry_count=int(row["retry_count"]),
            error_message=row["error_message"],
            status=QueueItemStatus(row["status"]),
            created_at=parse_timestamp(row["created_at"]),
            seq=row["seq"],
        )


@dataclass
class ProcessedItem:
    """Outcome of a single queue item in a batch response."""

    client_id: str
    status: ItemStatus
    server_id: Optional[str] = None
    error: Optional[str] = None
    resolved_data: Optional[Dict[str, Any]] = None
    resolution: Optional[ConflictSide] = None  # Set when a conflict was resolved locally

    @property
    def succeeded(self) -> bool:
        return self.status == ItemStatus.SUCCESS


@dataclass
class BatchResponse:
    """Always well-formed result of dispatching one batch."""

    processed_items: List[ProcessedItem] = field(default_factory=list)
    transport_error: Optional[str] = None

    @property
    def failed_at_transport(self) -> bool:
        return self.transport_error is not None

    def by_client_id(self) -> Dict[str, ProcessedItem]:
        return {item.client_id: item for item in self.processed_items}


@dataclass
class SyncError:
    """A failure recorded during a sync cycle."""

    task_id: str
    operation: SyncOperation
    error: str
    timestamp: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "operation": self.operation.value,
            "error": self.error,
            "timestamp": to_iso_string(self.timestamp),
        }


@dataclass
class SyncResult:
    """Summary of one sync cycle."""

    success: bool = True
    synced_items: int = 0
    failed_items: int = 0
    errors: List[SyncError] = field(default_factory=list)
    deferred_items: int = 0
    offline: bool = False
    cancelled: bool = False
    message: Optional[str] = None

    def add_error(self, task_id: str, operation: SyncOperation, error: str) -> None:
        self.failed_items += 1
        self.errors.append(SyncError(task_id=task_id, operation=operation, error=error))

    def finalize(self) -> "SyncResult":
        self.success = self.failed_items == 0 and not self.offline
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "synced_items": self.synced_items,
            "failed_items": self.failed_items,
            "errors": [error.to_dict() for error in self.errors],
            "deferred_items": self.deferred_items,
            "offline": self.offline,
            "cancelled": self.cancelled,
            "message": self.message,
        }


@dataclass
class SyncStatusSummary:
    pending_count: int
    failed_count: int
    last_synced_at: Optional[datetime]
    is_online: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pending_count": self.pending_count,
            "failed_count": self.failed_count,
            "last_synced_at": to_iso_string(self.last_synced_at),
            "is_online": self.is_online,
        }
