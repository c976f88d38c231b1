"""Synchronization subsystem for todo_sync."""

from .conflict import ConflictResolution, ConflictResolver
from .engine import SyncEngine, partition_batches
from .errors import (
    BatchTransportError,
    ConflictResolutionError,
    ConnectivityError,
    PerItemError,
    PermanentFailure,
    SyncEngineError,
)
from .queue import SyncQueue
from .reconciler import Outcome, StatusReconciler
from .remote import RemoteClient
from .retry import RetryTracker

__all__ = [
    "SyncEngine",
    "partition_batches",
    "SyncQueue",
    "RemoteClient",
    "ConflictResolver",
    "ConflictResolution",
    "RetryTracker",
    "StatusReconciler",
    "Outcome",
    "SyncEngineError",
    "ConnectivityError",
    "BatchTransportError",
    "PerItemError",
    "ConflictResolutionError",
    "PermanentFailure",
]
