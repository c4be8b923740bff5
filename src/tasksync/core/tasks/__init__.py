"""
Task models.

This module provides the Task entity, its status/priority enums, the
read-time filter buckets, and the validated input models for creating and
patching tasks.
"""

from .models import (
    Task,
    TaskCounts,
    TaskCreate,
    TaskFilter,
    TaskPage,
    TaskPatch,
    TaskPriority,
    TaskStatus,
)

__all__ = [
    "Task",
    "TaskCounts",
    "TaskCreate",
    "TaskFilter",
    "TaskPage",
    "TaskPatch",
    "TaskPriority",
    "TaskStatus",
]
