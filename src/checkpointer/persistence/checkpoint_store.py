"""Checkpoint metadata store.

Purpose:
-------
Persists one row per checkpoint: scope, provenance (description, user
command, source), lifecycle status, the tools executed while it was active
and timing. Status changes are validated by the session manager; this store
only writes them.

Usage:
-----
```python
store = CheckpointStore(".checkpoints/checkpoints.db")

checkpoint = store.create(scope_id=42, description="Add Email field")
store.append_tool(checkpoint.id, "saveFields")
store.update_status(checkpoint.id, CheckpointStatus.HISTORICAL, finished_at=utc_now())

history = store.list_by_scope(scope_id=42)
```
"""

import json
import sqlite3
import uuid
from collections.abc import Iterable, Sequence
from pathlib import Path
from types import TracebackType

import structlog

from ..models.checkpoint import Checkpoint, CheckpointSource, CheckpointStatus
from ..utils.timestamps import utc_now
from .schema import connect, placeholders

logger = structlog.get_logger(__name__)


class CheckpointStore:
    """
    SQLite-based store for checkpoint metadata.

    Features:
    - Newest-first listings scoped by object and/or application
    - Chronological range selection for restores
    - Cascading delete of checkpoints and their undo-log entries
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize CheckpointStore.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.conn: sqlite3.Connection = connect(self.db_path)

        logger.debug("CheckpointStore initialized", db_path=str(self.db_path))

    def create(
        self,
        scope_id: int,
        description: str,
        user_command: str | None = None,
        source: CheckpointSource = CheckpointSource.LLM,
        application_id: int | None = None,
    ) -> Checkpoint:
        """
        Create a new active checkpoint.

        Args:
            scope_id: Owning object/workflow id
            description: Checkpoint description
            user_command: Command that triggered it
            source: LLM, MCP or API
            application_id: Optional application scope

        Returns:
            The created checkpoint
        """
        checkpoint = Checkpoint(
            id=uuid.uuid4().hex,
            scope_id=scope_id,
            application_id=application_id,
            description=description,
            user_command=user_command,
            source=CheckpointSource(source),
            status=CheckpointStatus.ACTIVE,
            created_at=utc_now(),
        )

        self.conn.execute(
            """
            INSERT INTO checkpoints (
                id, scope_id, application_id, description, user_command,
                source, status, tools_executed, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                checkpoint.id,
                checkpoint.scope_id,
                checkpoint.application_id,
                checkpoint.description,
                checkpoint.user_command,
                checkpoint.source.value,
                checkpoint.status.value,
                json.dumps(checkpoint.tools_executed),
                checkpoint.created_at,
            ),
        )
        self.conn.commit()

        logger.debug("Checkpoint created", checkpoint_id=checkpoint.id, scope_id=scope_id)
        return checkpoint

    def get(self, checkpoint_id: str) -> Checkpoint | None:
        """
        Get a checkpoint by id.

        Args:
            checkpoint_id: Checkpoint identifier

        Returns:
            Checkpoint or None
        """
        cursor = self.conn.execute("SELECT * FROM checkpoints WHERE id = ?", (checkpoint_id,))
        row = cursor.fetchone()
        return self._row_to_checkpoint(row) if row else None

    def update_status(
        self,
        checkpoint_id: str,
        status: CheckpointStatus,
        finished_at: str | None = None,
        changes_count: int | None = None,
    ) -> None:
        """
        Write a new status.

        Args:
            checkpoint_id: Checkpoint identifier
            status: New status
            finished_at: Completion timestamp (kept as is when None)
            changes_count: Undo-log entry count (kept as is when None)
        """
        self.conn.execute(
            """
            UPDATE checkpoints
            SET status = ?,
                finished_at = COALESCE(?, finished_at),
                changes_count = COALESCE(?, changes_count)
            WHERE id = ?
            """,
            (CheckpointStatus(status).value, finished_at, changes_count, checkpoint_id),
        )
        self.conn.commit()

    def append_tool(self, checkpoint_id: str, tool_name: str) -> None:
        """
        Append a tool name to tools_executed.

        Args:
            checkpoint_id: Checkpoint identifier
            tool_name: Tool that ran
        """
        cursor = self.conn.execute(
            "SELECT tools_executed FROM checkpoints WHERE id = ?", (checkpoint_id,)
        )
        row = cursor.fetchone()
        if not row:
            logger.warning("Tool recorded for unknown checkpoint", checkpoint_id=checkpoint_id)
            return

        tools = self._parse_tools(row["tools_executed"])
        tools.append(tool_name)

        self.conn.execute(
            "UPDATE checkpoints SET tools_executed = ? WHERE id = ?",
            (json.dumps(tools), checkpoint_id),
        )
        self.conn.commit()

    def mark_gap(self, checkpoint_id: str) -> None:
        """
        Flag a checkpoint as having lost a capture.

        Args:
            checkpoint_id: Checkpoint identifier
        """
        self.conn.execute(
            """
            UPDATE checkpoints
            SET has_gaps = 1, capture_failures = capture_failures + 1
            WHERE id = ?
            """,
            (checkpoint_id,),
        )
        self.conn.commit()

    def list_by_scope(
        self,
        scope_id: int | None = None,
        application_id: int | None = None,
        statuses: Iterable[CheckpointStatus] | None = None,
        limit: int | None = None,
    ) -> list[Checkpoint]:
        """
        List checkpoints newest first.

        Args:
            scope_id: Restrict to an object/workflow
            application_id: Restrict to an application
            statuses: Restrict to these statuses
            limit: Maximum number of checkpoints

        Returns:
            Checkpoints ordered by created_at descending
        """
        clauses: list[str] = []
        values: list[object] = []

        if scope_id is not None:
            clauses.append("scope_id = ?")
            values.append(scope_id)
        if application_id is not None:
            clauses.append("application_id = ?")
            values.append(application_id)
        if statuses is not None:
            status_values = [CheckpointStatus(s).value for s in statuses]
            clauses.append(f"status IN ({placeholders(len(status_values))})")
            values.extend(status_values)

        query = "SELECT * FROM checkpoints"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, seq DESC"
        if limit is not None:
            query += " LIMIT ?"
            values.append(limit)

        cursor = self.conn.execute(query, values)
        return [self._row_to_checkpoint(row) for row in cursor.fetchall()]

    def list_from(
        self,
        target: Checkpoint,
        statuses: Iterable[CheckpointStatus],
    ) -> list[Checkpoint]:
        """
        List checkpoints of the target's scope created at or after it, newest first.

        Checkpoints sharing the target's timestamp are ordered by insertion
        sequence, so the target itself is always included when its status
        matches.

        Args:
            target: Boundary checkpoint
            statuses: Restrict to these statuses

        Returns:
            Checkpoints ordered by created_at descending
        """
        status_values = [CheckpointStatus(s).value for s in statuses]
        cursor = self.conn.execute(
            f"""
            SELECT * FROM checkpoints
            WHERE scope_id = ?
              AND status IN ({placeholders(len(status_values))})
              AND (
                created_at > ?
                OR (created_at = ? AND seq >= (SELECT seq FROM checkpoints WHERE id = ?))
              )
            ORDER BY created_at DESC, seq DESC
            """,
            (target.scope_id, *status_values, target.created_at, target.created_at, target.id),
        )
        return [self._row_to_checkpoint(row) for row in cursor.fetchall()]

    def delete_cascade(self, checkpoint_ids: Sequence[str]) -> int:
        """
        Delete checkpoints; their undo-log entries go with them.

        Args:
            checkpoint_ids: Checkpoints to delete

        Returns:
            Number of checkpoints deleted
        """
        if not checkpoint_ids:
            return 0

        cursor = self.conn.execute(
            f"DELETE FROM checkpoints WHERE id IN ({placeholders(len(checkpoint_ids))})",
            list(checkpoint_ids),
        )
        self.conn.commit()
        return cursor.rowcount

    def delete_by_scope(
        self,
        scope_id: int | None = None,
        application_id: int | None = None,
    ) -> int:
        """
        Delete every checkpoint of a scope (all checkpoints when unscoped).

        Args:
            scope_id: Object/workflow to clear
            application_id: Application to clear

        Returns:
            Number of checkpoints deleted
        """
        ids = [cp.id for cp in self.list_by_scope(scope_id, application_id)]
        return self.delete_cascade(ids)

    def _parse_tools(self, raw: str | None) -> list[str]:
        if not raw:
            return []
        try:
            tools = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Malformed tools_executed column, resetting", raw=raw)
            return []
        return [str(t) for t in tools] if isinstance(tools, list) else []

    def _row_to_checkpoint(self, row: sqlite3.Row) -> Checkpoint:
        """
        Convert SQLite row to Checkpoint.

        Args:
            row: SQLite row object.

        Returns:
            Checkpoint object.
        """
        return Checkpoint(
            id=row["id"],
            scope_id=row["scope_id"],
            application_id=row["application_id"],
            description=row["description"] or "",
            user_command=row["user_command"],
            source=CheckpointSource(row["source"]),
            status=CheckpointStatus(row["status"]),
            tools_executed=self._parse_tools(row["tools_executed"]),
            created_at=row["created_at"],
            finished_at=row["finished_at"],
            changes_count=row["changes_count"],
            has_gaps=bool(row["has_gaps"]),
            capture_failures=row["capture_failures"],
        )

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()

    def __enter__(self) -> "CheckpointStore":
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Context manager exit."""
        self.close()
