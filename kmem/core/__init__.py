"""Core graph engine, storage and workspace service for kmem."""

from kmem.core.errors import KmemError, NotFoundError, PersistenceError, ValidationError
from kmem.core.models import Entity, GraphDocument, Relation
from kmem.core.storage import (
    GraphStorage,
    JsonlFileStorage,
    MemoryStorage,
    SqliteTableStorage,
    create_storage,
)
from kmem.core.observability import ObservabilityLogger, LogEntry
from kmem.core.workspace import Workspace

__all__ = [
    # Errors
    "KmemError",
    "NotFoundError",
    "PersistenceError",
    "ValidationError",
    # Models
    "Entity",
    "GraphDocument",
    "Relation",
    # Storage
    "GraphStorage",
    "JsonlFileStorage",
    "MemoryStorage",
    "SqliteTableStorage",
    "create_storage",
    # Observability
    "ObservabilityLogger",
    "LogEntry",
    # Service
    "Workspace",
]
