"""Exceptions raised inside the sync engine.

None of these cross ``SyncEngine.sync()``; they are folded into the
``SyncResult`` or reported through logging.
"""


class SyncEngineError(Exception):
    """Base exception for sync engine operations."""
    pass


class ConnectivityError(SyncEngineError):
    """The remote peer is unreachable."""
    pass


class BatchTransportError(SyncEngineError):
    """A whole batch request failed at the transport level."""
    pass


class PerItemError(SyncEngineError):
    """The remote peer rejected a specific queue item."""

    def __init__(self, client_id: str, message: str):
        super().__init__(message)
        self.client_id = client_id


class ConflictResolutionError(SyncEngineError):
    """Conflict inputs could not be compared."""
    pass


class PermanentFailure(SyncEngineError):
    """A queue item exhausted its retries."""

    def __init__(self, item_id: str, retry_count: int, message: str):
        super().__init__(message)
        self.item_id = item_id
        self.retry_count = retry_count
