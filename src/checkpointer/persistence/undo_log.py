"""Undo log for reversing captured mutations.

Purpose:
-------
The UndoLog records every row mutation made while a checkpoint session is
open, with enough state to reverse it:
- insert -> delete the row by primary_key
- update -> write previous_data back
- delete -> re-insert previous_data

Entries are append-only. The only column written after the fact is
applied_at, set when a rollback or restore has reverted the entry, so a
restore interrupted part way can be resumed without reverting twice.

Ordering:
--------
Entries are ordered by created_at, with the autoincrement id breaking ties
between entries written within the same microsecond.

Usage:
-----
```python
undo_log = UndoLogStore(".checkpoints/checkpoints.db")

undo_log.append(
    checkpoint_id=checkpoint.id,
    scope_id=42,
    operation=UndoOperation.UPDATE,
    table_name="Objects",
    primary_key={"id": 42},
    previous_data={"id": 42, "name": "Old"},
)

entries = undo_log.get_by_checkpoints([checkpoint.id])
```
"""

import json
import sqlite3
from collections.abc import Sequence
from pathlib import Path
from types import TracebackType
from typing import Any

import structlog

from ..models.undo import UndoLogEntry, UndoOperation
from ..utils.exceptions import CaptureError
from ..utils.timestamps import utc_now
from .schema import connect, placeholders

logger = structlog.get_logger(__name__)


class UndoLogStore:
    """
    SQLite-based append-only undo log.

    Features:
    - Whole-row before-state for updates and deletes
    - Batch fetch for many checkpoints in one query
    - Applied markers for resumable replay
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize UndoLogStore.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.conn: sqlite3.Connection = connect(self.db_path)

    def append(
        self,
        checkpoint_id: str,
        scope_id: int,
        operation: UndoOperation,
        table_name: str,
        primary_key: dict[str, Any],
        previous_data: dict[str, Any] | None = None,
    ) -> UndoLogEntry:
        """
        Append an entry to the undo log.

        Args:
            checkpoint_id: Owning checkpoint
            scope_id: Owning scope
            operation: insert, update or delete
            table_name: Entity table
            primary_key: Row identifier, at least {"id": ...}
            previous_data: Row snapshot before the mutation

        Returns:
            The stored entry with its id

        Raises:
            CaptureError: If the entry cannot be reversed (missing snapshot or
                primary key) or cannot be written
        """
        operation = UndoOperation(operation)

        if not primary_key or primary_key.get("id") is None:
            raise CaptureError(
                "primary_key must contain an id", table_name=table_name, row_id=None
            )
        if operation != UndoOperation.INSERT and previous_data is None:
            raise CaptureError(
                f"{operation.value} entry requires previous_data",
                table_name=table_name,
                row_id=primary_key.get("id"),
            )

        entry = UndoLogEntry(
            id=None,
            checkpoint_id=checkpoint_id,
            scope_id=scope_id,
            operation=operation,
            table_name=table_name,
            primary_key=dict(primary_key),
            previous_data=dict(previous_data) if previous_data is not None else None,
            created_at=utc_now(),
        )

        try:
            cursor = self.conn.execute(
                """
                INSERT INTO undo_log (
                    checkpoint_id, scope_id, operation, table_name,
                    primary_key, previous_data, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.checkpoint_id,
                    entry.scope_id,
                    entry.operation.value,
                    entry.table_name,
                    json.dumps(entry.primary_key),
                    json.dumps(entry.previous_data) if entry.previous_data is not None else None,
                    entry.created_at,
                ),
            )
            self.conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            self.conn.rollback()
            raise CaptureError(
                f"Failed to append undo-log entry: {e}",
                table_name=table_name,
                row_id=primary_key.get("id"),
                original_error=e,
            ) from e

        entry.id = cursor.lastrowid
        assert entry.id is not None, "INSERT should always set lastrowid"
        return entry

    def get_by_checkpoint(
        self, checkpoint_id: str, include_applied: bool = False
    ) -> list[UndoLogEntry]:
        """
        Get a checkpoint's entries, most recent first.

        Args:
            checkpoint_id: Checkpoint identifier
            include_applied: Also return entries already reverted

        Returns:
            Entries ordered by created_at descending

        Raises:
            CaptureError: If a stored entry is malformed
        """
        query = "SELECT * FROM undo_log WHERE checkpoint_id = ?"
        if not include_applied:
            query += " AND applied_at IS NULL"
        query += " ORDER BY created_at DESC, id DESC"

        cursor = self.conn.execute(query, (checkpoint_id,))
        return [self._row_to_entry(row) for row in cursor.fetchall()]

    def get_by_checkpoints(
        self,
        checkpoint_ids: Sequence[str],
        include_applied: bool = True,
        strict: bool = True,
    ) -> list[UndoLogEntry]:
        """
        Batch-fetch entries for many checkpoints in one query.

        Args:
            checkpoint_ids: Checkpoints to fetch
            include_applied: Also return entries already reverted
            strict: Raise on malformed entries; when False they are logged
                and left out

        Returns:
            Entries ordered by (checkpoint_id, created_at desc)

        Raises:
            CaptureError: If strict and a stored entry is malformed
        """
        if not checkpoint_ids:
            return []

        query = (
            f"SELECT * FROM undo_log WHERE checkpoint_id IN ({placeholders(len(checkpoint_ids))})"
        )
        if not include_applied:
            query += " AND applied_at IS NULL"
        query += " ORDER BY checkpoint_id, created_at DESC, id DESC"

        cursor = self.conn.execute(query, list(checkpoint_ids))

        entries: list[UndoLogEntry] = []
        for row in cursor.fetchall():
            try:
                entries.append(self._row_to_entry(row))
            except CaptureError as e:
                if strict:
                    raise
                logger.warning(
                    "Skipping malformed undo-log entry",
                    entry_id=row["id"],
                    checkpoint_id=row["checkpoint_id"],
                    error=str(e),
                )
        return entries

    def count(self, checkpoint_id: str) -> int:
        """
        Count a checkpoint's entries.

        Args:
            checkpoint_id: Checkpoint identifier

        Returns:
            Number of entries
        """
        cursor = self.conn.execute(
            "SELECT COUNT(*) AS count FROM undo_log WHERE checkpoint_id = ?", (checkpoint_id,)
        )
        return int(cursor.fetchone()["count"])

    def count_by_scope(self, scope_id: int) -> int:
        """Count entries belonging to a scope."""
        cursor = self.conn.execute(
            "SELECT COUNT(*) AS count FROM undo_log WHERE scope_id = ?", (scope_id,)
        )
        return int(cursor.fetchone()["count"])

    def mark_applied(self, entry_id: int) -> str:
        """
        Record that an entry's inverse has been applied.

        Args:
            entry_id: Entry identifier

        Returns:
            The applied_at timestamp written
        """
        applied_at = utc_now()
        self.conn.execute(
            "UPDATE undo_log SET applied_at = ? WHERE id = ?",
            (applied_at, entry_id),
        )
        self.conn.commit()
        return applied_at

    def _row_to_entry(self, row: sqlite3.Row) -> UndoLogEntry:
        """
        Convert SQLite row to UndoLogEntry.

        Args:
            row: SQLite row

        Returns:
            UndoLogEntry object

        Raises:
            CaptureError: If primary_key/previous_data JSON is malformed
        """
        try:
            primary_key = json.loads(row["primary_key"])
            previous_data = (
                json.loads(row["previous_data"]) if row["previous_data"] is not None else None
            )
            operation = UndoOperation(row["operation"])
        except (json.JSONDecodeError, ValueError) as e:
            raise CaptureError(
                f"Malformed undo-log entry {row['id']}: {e}",
                table_name=row["table_name"],
                original_error=e,
            ) from e

        if not isinstance(primary_key, dict):
            raise CaptureError(
                f"Malformed undo-log entry {row['id']}: primary_key is not an object",
                table_name=row["table_name"],
            )

        return UndoLogEntry(
            id=row["id"],
            checkpoint_id=row["checkpoint_id"],
            scope_id=row["scope_id"],
            operation=operation,
            table_name=row["table_name"],
            primary_key=primary_key,
            previous_data=previous_data,
            created_at=row["created_at"],
            applied_at=row["applied_at"],
        )

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()

    def __enter__(self) -> "UndoLogStore":
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
