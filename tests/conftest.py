"""
Shared pytest fixtures for kmem tests.

Provides fixtures for:
- Sample graph documents with fixed timestamps
- In-memory and on-disk storage backends
- Workspaces wired to a logger
- An MCP server configured against in-memory storage
"""

from pathlib import Path

import pytest

from kmem.core.config import KmemConfig
from kmem.core.models import Entity, GraphDocument, Relation
from kmem.core.observability import ObservabilityLogger
from kmem.core.storage import JsonlFileStorage, MemoryStorage, SqliteTableStorage
from kmem.core.workspace import Workspace
from kmem.mcp import server as mcp_server


T0 = "2024-01-01T00:00:00.000Z"
T1 = "2024-02-01T00:00:00.000Z"
T2 = "2024-03-01T00:00:00.000Z"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep KMEM_* variables from the host out of config loading."""
    import os

    for key in list(os.environ):
        if key.startswith("KMEM_"):
            monkeypatch.delenv(key)


@pytest.fixture
def alice_doc() -> GraphDocument:
    """Alice works at Acme; Bob knows Alice."""
    doc = GraphDocument()
    doc.add_entity(
        Entity(
            name="Alice",
            entity_type="person",
            observations=["Works at Acme", "Likes tea"],
            created_at=T0,
            updated_at=T0,
            created_by="u1",
        )
    )
    doc.add_entity(
        Entity(
            name="Acme",
            entity_type="organization",
            observations=["Software company"],
            created_at=T0,
            updated_at=T1,
            created_by="u2",
        )
    )
    doc.add_entity(
        Entity(
            name="Bob",
            entity_type="person",
            observations=["Plays chess"],
            created_at=T1,
            updated_at=T1,
            created_by="u1",
        )
    )
    doc.add_relation(
        Relation("Alice", "Acme", "works_at", 0.9, created_at=T0, updated_at=T0, created_by="u1")
    )
    doc.add_relation(
        Relation("Bob", "Alice", "knows", 0.5, created_at=T1, updated_at=T2, created_by="u2")
    )
    return doc


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def file_storage(tmp_path: Path) -> JsonlFileStorage:
    return JsonlFileStorage(tmp_path / "graphs")


@pytest.fixture
def sqlite_storage(tmp_path: Path) -> SqliteTableStorage:
    return SqliteTableStorage(tmp_path / "graph.db")


@pytest.fixture(params=["memory", "file", "sqlite"])
def any_storage(request, tmp_path: Path):
    """Each storage backend in turn."""
    if request.param == "memory":
        return MemoryStorage()
    if request.param == "file":
        return JsonlFileStorage(tmp_path / "graphs")
    return SqliteTableStorage(tmp_path / "graph.db")


@pytest.fixture
def logger(tmp_path: Path) -> ObservabilityLogger:
    return ObservabilityLogger(tmp_path / "logs.db")


@pytest.fixture
def workspace(memory_storage: MemoryStorage, logger: ObservabilityLogger) -> Workspace:
    return Workspace(memory_storage, "test", logger=logger)


@pytest.fixture
def mcp_storage():
    """Configure the MCP server against in-memory storage, with logging off."""
    config = KmemConfig.model_validate(
        {"storage": {"backend": "memory"}, "logging": {"enabled": False}}
    )
    storage = MemoryStorage()
    mcp_server.configure(config, storage=storage)
    yield storage
    mcp_server._config = None
    mcp_server._storage = None
    mcp_server._logger = None
