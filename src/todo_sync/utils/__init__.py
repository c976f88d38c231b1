"""Utility helpers for todo_sync."""
