"""Utility modules for tasksync."""

from .logging import EventType, LogEntry, SyncEventLogger

__all__ = [
    "EventType",
    "LogEntry",
    "SyncEventLogger",
]
