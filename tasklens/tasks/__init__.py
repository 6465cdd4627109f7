"""External task store: port, in-memory store and HTTP adapter."""

from .http_store import HttpTaskStore
from .store import InMemoryTaskStore, StoredTask, TaskCreate, TaskStore

__all__ = ["HttpTaskStore", "InMemoryTaskStore", "StoredTask", "TaskCreate", "TaskStore"]
