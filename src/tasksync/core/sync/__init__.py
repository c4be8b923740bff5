"""
Keeping the task cache in sync with the remote store and the change feed.

Local writes run through the MutationCoordinator (optimistic apply, then
commit or exact rollback); feed events run through the RealtimeIngester;
TaskSyncEngine ties both to one cache.

Example:
    >>> from tasksync.core.sync import TaskSyncEngine
    >>> engine = TaskSyncEngine(remote, feed, owner_id="user-1")
    >>> await engine.start()
    >>> result = await engine.toggle_status(task_id)
    >>> if result.is_err():
    ...     print(f"Rolled back: {result.error}")
"""

from tasksync.core.sync.engine import TaskSyncEngine
from tasksync.core.sync.errors import (
    ConflictError,
    Err,
    NetworkError,
    Ok,
    RealtimeDisconnect,
    Result,
    ServerRejection,
    SyncError,
    ValidationError,
)
from tasksync.core.sync.mutations import (
    CreateFollowUp,
    CreateTask,
    DeleteTask,
    Mutation,
    MutationCoordinator,
    MutationKind,
    MutationToken,
    TogglePin,
    ToggleStatus,
    UpdateTask,
    build_mutation,
)
from tasksync.core.sync.ports import ChangeFeed, FeedEvent, FeedStatus, RemoteStore
from tasksync.core.sync.realtime import RealtimeIngester
from tasksync.core.sync.retry import RemoteCallPolicy

__all__ = [
    "TaskSyncEngine",
    "MutationCoordinator",
    "RealtimeIngester",
    "RemoteCallPolicy",
    # Mutations
    "CreateFollowUp",
    "CreateTask",
    "DeleteTask",
    "Mutation",
    "MutationKind",
    "MutationToken",
    "TogglePin",
    "ToggleStatus",
    "UpdateTask",
    "build_mutation",
    # Ports
    "ChangeFeed",
    "FeedEvent",
    "FeedStatus",
    "RemoteStore",
    # Results and errors
    "ConflictError",
    "Err",
    "NetworkError",
    "Ok",
    "RealtimeDisconnect",
    "Result",
    "ServerRejection",
    "SyncError",
    "ValidationError",
]
