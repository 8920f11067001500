"""
Storage interface for kmem.

Defines the persistence contract the workspace service relies on and three
backends:
- JsonlFileStorage: one JSONL file per workspace
- SqliteTableStorage: tabular store, one row per entity / relation
- MemoryStorage: in-process, for tests and throwaway sessions
"""

import fcntl
import json
import os
import re
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, TYPE_CHECKING

from kmem.core.errors import PersistenceError, ValidationError
from kmem.core.models import Entity, GraphDocument, Relation

if TYPE_CHECKING:
    from kmem.core.config import KmemConfig


WORKSPACE_ID_RE = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")


def validate_workspace_id(workspace_id: str) -> str:
    """Reject workspace ids that are unsafe as file names or row keys."""
    if not isinstance(workspace_id, str) or not WORKSPACE_ID_RE.match(workspace_id):
        raise ValidationError(
            f"Invalid workspace id: {workspace_id!r}",
            hint="Use 1-64 characters from A-Z, a-z, 0-9, '_', '.', '-'",
        )
    if workspace_id in (".", ".."):
        raise ValidationError(f"Invalid workspace id: {workspace_id!r}")
    return workspace_id


def relation_row_key(from_name: str, to_name: str, relation_type: str) -> str:
    """Unambiguous text key for a relation triple (names may contain any character)."""
    return json.dumps([from_name, to_name, relation_type], ensure_ascii=False)


class GraphStorage(ABC):
    """Abstract persistence contract: whole-document load and save."""

    name = "abstract"

    # Backends that keep one record per entity/relation set this to True and
    # implement the record-level deletes below.
    supports_record_deletes = False

    @abstractmethod
    def load_graph(self, workspace_id: str) -> GraphDocument:
        """Load a workspace's document.

        Returns:
            The stored document, or an empty one if nothing is stored yet

        Raises:
            PersistenceError: If the backend fails
        """
        pass

    @abstractmethod
    def save_graph(self, workspace_id: str, doc: GraphDocument) -> None:
        """Overwrite a workspace's document.

        Raises:
            PersistenceError: If the backend fails
        """
        pass

    def delete_entity_record(self, workspace_id: str, name: str) -> None:
        """Remove one entity record (record-indexed backends only)."""
        raise NotImplementedError(f"{self.name} storage has no per-record deletes")

    def delete_relation_record(
        self, workspace_id: str, from_name: str, to_name: str, relation_type: str
    ) -> None:
        """Remove one relation record (record-indexed backends only)."""
        raise NotImplementedError(f"{self.name} storage has no per-record deletes")

    def list_workspaces(self) -> List[str]:
        return []


class MemoryStorage(GraphStorage):
    """Keeps documents in a dict. Saved documents are copied."""

    name = "memory"

    def __init__(self):
        self._docs: Dict[str, GraphDocument] = {}
        self.save_count = 0

    def load_graph(self, workspace_id: str) -> GraphDocument:
        validate_workspace_id(workspace_id)
        doc = self._docs.get(workspace_id)
        return doc.copy() if doc else GraphDocument()

    def save_graph(self, workspace_id: str, doc: GraphDocument) -> None:
        validate_workspace_id(workspace_id)
        self._docs[workspace_id] = doc.copy()
        self.save_count += 1

    def list_workspaces(self) -> List[str]:
        return sorted(self._docs)


class JsonlFileStorage(GraphStorage):
    """One `memory-<workspace>.jsonl` file per workspace under root.

    Each line is an entity or a relation as JSON; a file with unreadable lines
    fails to load with PersistenceError. Writes go to a temp file
    that replaces the original, under an exclusive lock on a sidecar file.
    """

    name = "file"

    def __init__(self, root: Path):
        self.root = Path(root).expanduser()

    def _get_path(self, workspace_id: str) -> Path:
        return self.root / f"memory-{validate_workspace_id(workspace_id)}.jsonl"

    def load_graph(self, workspace_id: str) -> GraphDocument:
        path = self._get_path(workspace_id)
        if not path.exists():
            return GraphDocument()

        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Failed to read {path}: {e}")

        doc, skipped = GraphDocument.from_jsonl(content)
        if skipped:
            # Saving a partial load would drop these lines.
            raise PersistenceError(
                f"{path} has {len(skipped)} unreadable line(s)",
                details={"path": str(path), "lines": [line[:200] for line in skipped[:10]]},
                hint="Repair or remove the listed lines; the file was not modified",
            )
        return doc

    def save_graph(self, workspace_id: str, doc: GraphDocument) -> None:
        path = self._get_path(workspace_id)
        tmp_path = path.with_suffix(".jsonl.tmp")
        lock_path = path.with_suffix(".lock")

        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with open(lock_path, "w") as lock:
                fcntl.flock(lock.fileno(), fcntl.LOCK_EX)
                try:
                    with open(tmp_path, "w", encoding="utf-8") as f:
                        f.write(doc.to_jsonl())
                    os.replace(tmp_path, path)
                finally:
                    fcntl.flock(lock.fileno(), fcntl.LOCK_UN)
        except OSError as e:
            raise PersistenceError(f"Failed to write {path}: {e}")

    def list_workspaces(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(
            p.name[len("memory-"):-len(".jsonl")]
            for p in self.root.glob("memory-*.jsonl")
        )


class SqliteTableStorage(GraphStorage):
    """Tabular backend: entities and relations tables partitioned by workspace.

    Entities are keyed by (workspace, name); relations by (workspace, row_key)
    with row_key = JSON array [from, to, relationType]. save_graph upserts rows, so rows
    for removed entities/relations must be deleted through the record-level
    methods.
    """

    name = "sqlite"
    supports_record_deletes = True

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create tables if they don't exist."""
        try:
            with self._connect() as conn:
                conn.executescript("""
                    CREATE TABLE IF NOT EXISTS entities (
                        workspace TEXT NOT NULL,
                        name TEXT NOT NULL,
                        entity_type TEXT NOT NULL,
                        observations JSON NOT NULL,
                        created_at TEXT,
                        updated_at TEXT,
                        created_by TEXT,
                        metadata JSON,
                        position INTEGER NOT NULL DEFAULT 0,
                        PRIMARY KEY (workspace, name)
                    );

                    CREATE TABLE IF NOT EXISTS relations (
                        workspace TEXT NOT NULL,
                        row_key TEXT NOT NULL,
                        from_name TEXT NOT NULL,
                        to_name TEXT NOT NULL,
                        relation_type TEXT NOT NULL,
                        strength REAL NOT NULL,
                        created_at TEXT,
                        updated_at TEXT,
                        created_by TEXT,
                        metadata JSON,
                        position INTEGER NOT NULL DEFAULT 0,
                        PRIMARY KEY (workspace, row_key)
                    );

                    CREATE INDEX IF NOT EXISTS idx_entities_updated ON entities(workspace, updated_at);
                    CREATE INDEX IF NOT EXISTS idx_relations_updated ON relations(workspace, updated_at);
                """)
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to initialize {self.db_path}: {e}")

    def load_graph(self, workspace_id: str) -> GraphDocument:
        validate_workspace_id(workspace_id)
        doc = GraphDocument()

        try:
            with self._connect() as conn:
                for row in conn.execute(
                    "SELECT * FROM entities WHERE workspace = ? ORDER BY position, rowid",
                    (workspace_id,),
                ):
                    doc.add_entity(
                        Entity(
                            name=row["name"],
                            entity_type=row["entity_type"],
                            observations=json.loads(row["observations"] or "[]"),
                            created_at=row["created_at"],
                            updated_at=row["updated_at"],
                            created_by=row["created_by"],
                            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
                        )
                    )

                for row in conn.execute(
                    "SELECT * FROM relations WHERE workspace = ? ORDER BY position, rowid",
                    (workspace_id,),
                ):
                    doc.add_relation(
                        Relation(
                            from_name=row["from_name"],
                            to_name=row["to_name"],
                            relation_type=row["relation_type"],
                            strength=row["strength"],
                            created_at=row["created_at"],
                            updated_at=row["updated_at"],
                            created_by=row["created_by"],
                            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
                        )
                    )
        except (sqlite3.Error, json.JSONDecodeError) as e:
            raise PersistenceError(f"Failed to load workspace '{workspace_id}': {e}")

        return doc

    def save_graph(self, workspace_id: str, doc: GraphDocument) -> None:
        validate_workspace_id(workspace_id)

        entity_rows = [
            (
                workspace_id,
                e.name,
                e.entity_type,
                json.dumps(e.observations, ensure_ascii=False),
                e.created_at,
                e.updated_at,
                e.created_by,
                json.dumps(e.metadata, default=str) if e.metadata else None,
                position,
            )
            for position, e in enumerate(doc.entities.values())
        ]
        relation_rows = [
            (
                workspace_id,
                relation_row_key(*r.key),
                r.from_name,
                r.to_name,
                r.relation_type,
                r.strength,
                r.created_at,
                r.updated_at,
                r.created_by,
                json.dumps(r.metadata, default=str) if r.metadata else None,
                position,
            )
            for position, r in enumerate(doc.relations.values())
        ]

        try:
            with self._connect() as conn:
                conn.executemany(
                    "INSERT OR REPLACE INTO entities VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    entity_rows,
                )
                conn.executemany(
                    "INSERT OR REPLACE INTO relations VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    relation_rows,
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to save workspace '{workspace_id}': {e}")

    def delete_entity_record(self, workspace_id: str, name: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    "DELETE FROM entities WHERE workspace = ? AND name = ?",
                    (workspace_id, name),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to delete entity '{name}': {e}")

    def delete_relation_record(
        self, workspace_id: str, from_name: str, to_name: str, relation_type: str
    ) -> None:
        row_key = relation_row_key(from_name, to_name, relation_type)
        try:
            with self._connect() as conn:
                conn.execute(
                    "DELETE FROM relations WHERE workspace = ? AND row_key = ?",
                    (workspace_id, row_key),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to delete relation '{row_key}': {e}")

    def clear_workspace(self, workspace_id: str) -> None:
        validate_workspace_id(workspace_id)
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM entities WHERE workspace = ?", (workspace_id,))
                conn.execute("DELETE FROM relations WHERE workspace = ?", (workspace_id,))
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to clear workspace '{workspace_id}': {e}")

    def list_workspaces(self) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT workspace FROM entities UNION SELECT workspace FROM relations"
            ).fetchall()
        return sorted(row[0] for row in rows)


STORAGE_BACKENDS = ("file", "sqlite", "memory")


def create_storage(config: "KmemConfig") -> GraphStorage:
    """Build the backend named by config.storage.backend."""
    backend = config.storage.backend
    if backend == "file":
        return JsonlFileStorage(config.storage.path)
    if backend == "sqlite":
        return SqliteTableStorage(Path(config.storage.path).expanduser() / "graph.db")
    if backend == "memory":
        return MemoryStorage()
    raise ValidationError(f"Unknown storage backend: {backend}. Available: {list(STORAGE_BACKENDS)}")


__all__ = [
    "GraphStorage",
    "MemoryStorage",
    "JsonlFileStorage",
    "SqliteTableStorage",
    "STORAGE_BACKENDS",
    "create_storage",
    "relation_row_key",
    "validate_workspace_id",
]
