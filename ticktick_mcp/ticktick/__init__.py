"""TickTick Open API access."""

from .client import ListTasksResult, TickTickClient, TokenState
from .due_filters import matches_due_filter
from .registry import ClientRegistry

__all__ = ["ClientRegistry", "ListTasksResult", "TickTickClient", "TokenState", "matches_due_filter"]
