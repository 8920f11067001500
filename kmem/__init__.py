"""
kmem - Workspace-scoped knowledge graph memory

A persistent graph of named entities (with observations) and typed, weighted
relations, kept per workspace and exposed to agents as MCP tools.

Core components:
- Workspace: load → operation → save service over a storage backend
- JsonlFileStorage / SqliteTableStorage / MemoryStorage: persistence backends
- ObservabilityLogger: SQLite operation log

Engine:
- kmem.core.entities / relations: create, search, update, delete
- kmem.core.merge, kmem.core.batch, kmem.core.temporal, kmem.core.stats
- kmem.matching: similarity scoring and duplicate detection
"""

__version__ = "0.1.0"

from kmem.core import (
    Entity,
    GraphDocument,
    Relation,
    GraphStorage,
    JsonlFileStorage,
    MemoryStorage,
    SqliteTableStorage,
    create_storage,
    ObservabilityLogger,
    LogEntry,
    Workspace,
    KmemError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from kmem.core.config import KmemConfig, load_config
from kmem.matching import DuplicateGroup, detect_duplicates, entity_similarity

__all__ = [
    "Entity",
    "GraphDocument",
    "Relation",
    "GraphStorage",
    "JsonlFileStorage",
    "MemoryStorage",
    "SqliteTableStorage",
    "create_storage",
    "ObservabilityLogger",
    "LogEntry",
    "Workspace",
    "KmemError",
    "NotFoundError",
    "PersistenceError",
    "ValidationError",
    "KmemConfig",
    "load_config",
    "DuplicateGroup",
    "detect_duplicates",
    "entity_similarity",
]
