"""todo_sync - offline-first task manager with a queued sync engine."""

__version__ = "0.1.0"
__author__ = "Todo Sync Team"

__all__ = ["__version__"]
