"""
ObservabilityLogger - Phase-based operation log for graph workspaces.

Every load, save and graph operation is recorded as a structured row in a
SQLite database so sessions can be replayed and failures inspected later.
"""

import json
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass
class LogEntry:
    """A log entry from the observability database."""

    id: int
    ts: str
    session: str
    phase: str
    data: Dict[str, Any] = field(default_factory=dict)


def _row_to_entry(row: sqlite3.Row) -> LogEntry:
    return LogEntry(
        id=row["id"],
        ts=row["ts"],
        session=row["session"],
        phase=row["phase"],
        data=json.loads(row["data"]),
    )


class ObservabilityLogger:
    """Phase-based logging for workspace operations.

    Phases:
    - load: A workspace document was read from storage
    - save: A workspace document was written to storage
    - mutate: A single graph mutation (create, update, delete)
    - query: A read-only operation
    - batch: A batch of operations and its success/failure counts
    - merge: An entity merge
    - error: Errors and the operation that raised them
    """

    PHASES = ["load", "save", "mutate", "query", "batch", "merge", "error"]

    def __init__(self, db_path: Path):
        """Initialize logger with database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        self.session_id = self._new_session()

    def _init_db(self) -> None:
        """Create tables if they don't exist."""
        with sqlite3.connect(self.db_path) as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    ts TEXT NOT NULL DEFAULT (datetime('now')),
                    session TEXT NOT NULL,
                    phase TEXT NOT NULL,
                    data JSON NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_session ON logs(session);
                CREATE INDEX IF NOT EXISTS idx_phase ON logs(phase);
                CREATE INDEX IF NOT EXISTS idx_ts ON logs(ts);

                CREATE VIEW IF NOT EXISTS errors AS
                SELECT id, ts, session,
                       json_extract(data, '$.error_type') as error_type,
                       json_extract(data, '$.operation') as operation,
                       json_extract(data, '$.workspace') as workspace,
                       data
                FROM logs WHERE phase = 'error';

                CREATE VIEW IF NOT EXISTS operations AS
                SELECT id, ts, session, phase,
                       json_extract(data, '$.operation') as operation,
                       json_extract(data, '$.workspace') as workspace,
                       json_extract(data, '$.user_id') as user_id
                FROM logs WHERE phase IN ('mutate', 'query', 'batch', 'merge');
            """)

    def _new_session(self) -> str:
        return f"session_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"

    def new_session(self) -> str:
        """Start a new session and return its ID."""
        self.session_id = self._new_session()
        return self.session_id

    def log(self, phase: str, data: Dict[str, Any]) -> None:
        """Log a phase with structured data.

        Args:
            phase: One of PHASES
            data: Structured data for the log entry

        Raises:
            ValueError: If phase is unknown
        """
        if phase not in self.PHASES:
            raise ValueError(f"Invalid phase: {phase}. Must be one of {self.PHASES}")

        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO logs (session, phase, data)
                VALUES (?, ?, ?)
                """,
                (self.session_id, phase, json.dumps(data, default=str)),
            )

    # Convenience methods

    def log_load(self, workspace: str, backend: str, entity_count: int, relation_count: int) -> None:
        self.log(
            "load",
            {
                "workspace": workspace,
                "backend": backend,
                "entity_count": entity_count,
                "relation_count": relation_count,
            },
        )

    def log_save(
        self,
        workspace: str,
        backend: str,
        entity_count: int,
        relation_count: int,
        deleted_records: int = 0,
    ) -> None:
        self.log(
            "save",
            {
                "workspace": workspace,
                "backend": backend,
                "entity_count": entity_count,
                "relation_count": relation_count,
                "deleted_records": deleted_records,
            },
        )

    def log_mutation(
        self,
        workspace: str,
        operation: str,
        user_id: Optional[str] = None,
        summary: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log a graph mutation.

        Args:
            workspace: Workspace id
            operation: Operation name (create_entities, delete_entity, ...)
            user_id: Acting user, if any
            summary: Small dict describing the effect (names, counts)
        """
        self.log(
            "mutate",
            {
                "workspace": workspace,
                "operation": operation,
                "user_id": user_id,
                "summary": summary or {},
            },
        )

    def log_query(self, workspace: str, operation: str, params: Dict[str, Any], result_count: int) -> None:
        self.log(
            "query",
            {
                "workspace": workspace,
                "operation": operation,
                "params": params,
                "result_count": result_count,
            },
        )

    def log_batch(
        self,
        workspace: str,
        operation_count: int,
        successful: int,
        failed: int,
        errors: List[str],
        user_id: Optional[str] = None,
    ) -> None:
        self.log(
            "batch",
            {
                "workspace": workspace,
                "operation": "execute_batch_operations",
                "user_id": user_id,
                "operation_count": operation_count,
                "successful": successful,
                "failed": failed,
                "errors": errors,
            },
        )

    def log_merge(
        self,
        workspace: str,
        target: str,
        sources: List[str],
        strategy: str,
        relations_rewired: int,
        user_id: Optional[str] = None,
    ) -> None:
        self.log(
            "merge",
            {
                "workspace": workspace,
                "operation": "merge_entities",
                "user_id": user_id,
                "target": target,
                "sources": sources,
                "strategy": strategy,
                "relations_rewired": relations_rewired,
            },
        )

    def log_error(
        self,
        error_type: str,
        operation: Optional[str] = None,
        workspace: Optional[str] = None,
        details: Optional[Dict] = None,
        message: Optional[str] = None,
    ) -> None:
        """Log an error and the operation that raised it.

        Args:
            error_type: Exception class name
            operation: Optional operation name
            workspace: Optional workspace id
            details: Optional additional details
            message: Optional error message
        """
        data: Dict[str, Any] = {
            "error_type": error_type,
        }
        if operation:
            data["operation"] = operation
        if workspace:
            data["workspace"] = workspace
        if details:
            data["details"] = details
        if message:
            data["message"] = message

        self.log("error", data)

    # Query methods

    def get_session(self, session_id: Optional[str] = None) -> List[LogEntry]:
        """Get all logs for a session (defaults to the current one)."""
        session_id = session_id or self.session_id

        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                "SELECT * FROM logs WHERE session = ? ORDER BY id",
                (session_id,),
            ).fetchall()

            return [_row_to_entry(row) for row in rows]

    def get_errors(self, since: Optional[str] = None, limit: int = 100) -> List[LogEntry]:
        """Get error logs.

        Args:
            since: Optional timestamp ('YYYY-MM-DD HH:MM:SS') to filter from
            limit: Maximum results

        Returns:
            List of error LogEntry objects, newest first
        """
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row

            if since:
                rows = conn.execute(
                    """
                    SELECT * FROM logs
                    WHERE phase = 'error' AND ts >= ?
                    ORDER BY id DESC LIMIT ?
                    """,
                    (since, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM logs
                    WHERE phase = 'error'
                    ORDER BY id DESC LIMIT ?
                    """,
                    (limit,),
                ).fetchall()

            return [_row_to_entry(row) for row in rows]

    def get_workspace_activity(self, workspace: str, limit: int = 100) -> List[LogEntry]:
        """Get the most recent log entries for a workspace, newest first."""
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                """
                SELECT * FROM logs
                WHERE json_extract(data, '$.workspace') = ?
                ORDER BY id DESC LIMIT ?
                """,
                (workspace, limit),
            ).fetchall()

            return [_row_to_entry(row) for row in rows]

    def get_session_summary(self, session_id: Optional[str] = None) -> Dict[str, Any]:
        """Get summary statistics for a session.

        Args:
            session_id: Session ID (defaults to current session)

        Returns:
            Dictionary with phase counts, operation counts and error count
        """
        session_id = session_id or self.session_id

        with sqlite3.connect(self.db_path) as conn:
            phase_counts = {}
            for row in conn.execute(
                """
                SELECT phase, COUNT(*) as count
                FROM logs WHERE session = ?
                GROUP BY phase
                """,
                (session_id,),
            ):
                phase_counts[row[0]] = row[1]

            operation_counts = {}
            for row in conn.execute(
                """
                SELECT json_extract(data, '$.operation') as operation, COUNT(*) as count
                FROM logs
                WHERE session = ? AND phase IN ('mutate', 'query', 'batch', 'merge')
                GROUP BY json_extract(data, '$.operation')
                """,
                (session_id,),
            ):
                if row[0]:
                    operation_counts[row[0]] = row[1]

            return {
                "session_id": session_id,
                "phase_counts": phase_counts,
                "operation_counts": operation_counts,
                "error_count": phase_counts.get("error", 0),
                "total_logs": sum(phase_counts.values()),
            }

    def latest_session(self) -> Optional[str]:
        """Return the id of the most recently logged session other than the current one."""
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT session FROM logs WHERE session != ? ORDER BY id DESC LIMIT 1",
                (self.session_id,),
            ).fetchone()
        return row[0] if row else None


def create_logger(config) -> Optional[ObservabilityLogger]:
    """Build a logger from KmemConfig, or None when logging is disabled."""
    if not config.logging.enabled:
        return None
    return ObservabilityLogger(config.log_db_path)
