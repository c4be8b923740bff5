"""
Remote store and change feed adapters.

- InMemoryRemoteStore / InMemoryChangeFeed: dict-backed backend with
  write echoes and fault injection
- HttpRemoteStore: REST client over httpx
"""

from tasksync.core.remote.http import HttpRemoteStore, classify_response
from tasksync.core.remote.memory import InMemoryChangeFeed, InMemoryRemoteStore

__all__ = [
    "HttpRemoteStore",
    "InMemoryChangeFeed",
    "InMemoryRemoteStore",
    "classify_response",
]
