"""Web API for todo_sync."""
