"""Service layer for todo_sync."""

from .task_service import TaskNotFoundError, TaskService

__all__ = ["TaskService", "TaskNotFoundError"]
