"""
tasksync - client-side task cache synchronization engine.

Keeps one in-memory collection of tasks consistent while optimistic local
mutations, remote confirmations and a push/change feed write to it.
"""

__version__ = "0.4.0"

# Re-export core models for convenience
from tasksync.core.config.models import SyncConfig
from tasksync.core.tasks.models import Task, TaskFilter, TaskPriority, TaskStatus

__all__ = ["SyncConfig", "Task", "TaskFilter", "TaskPriority", "TaskStatus", "__version__"]
