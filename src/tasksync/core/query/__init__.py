"""Read-time filtering, ordering and statistics over cached tasks."""

from tasksync.core.query.view import (
    classify,
    matches,
    page_count,
    sort_key,
    statistics,
    view,
)

__all__ = ["classify", "matches", "page_count", "sort_key", "statistics", "view"]
