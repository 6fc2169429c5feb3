"""Undo Applier - Write undo-log entries back to the entity store.

Applies the inverse of recorded mutations.

Operation Inversion:
-------------------
Recorded Operation  ->  Inverse
INSERT              ->  DELETE the row by primary key
UPDATE              ->  UPDATE the row to its full previous snapshot
DELETE              ->  INSERT the previous snapshot, keeping its original id

Entries are replayed newest first. Each entry is marked applied as soon as
its inverse succeeds, so a replay that fails part way leaves an exact record
of what was and was not reverted, and replaying the same entries again only
touches the pending ones.

Usage:
-----
```python
applier = UndoApplier(entity_store, undo_log)
entries = applier.collect([checkpoint.id])
applied = applier.replay(entries)
```
"""

import time
from collections.abc import Sequence

import structlog

from ..models.snapshots import validate_snapshot
from ..models.undo import UndoLogEntry, UndoOperation
from ..observability.metrics import MetricsCollector, get_global_collector
from ..persistence.undo_log import UndoLogStore
from ..store.entity_store import EntityStore
from ..utils.exceptions import CaptureError, RestoreError

logger = structlog.get_logger(__name__)


def replay_order(entries: Sequence[UndoLogEntry]) -> list[UndoLogEntry]:
    """
    Sort entries newest first across checkpoints.

    Args:
        entries: Entries in any order

    Returns:
        Entries ordered by (created_at, id) descending
    """
    return sorted(entries, key=lambda e: (e.created_at, e.id or 0), reverse=True)


class UndoApplier:
    """
    Apply inverses of undo-log entries.

    Features:
    - Snapshot validation before write-back
    - Deleted rows re-created with their original ids
    - Per-entry applied markers for resumable replay
    """

    def __init__(
        self,
        entity_store: EntityStore,
        undo_log: UndoLogStore,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Initialize UndoApplier.

        Args:
            entity_store: Store holding the rule rows
            undo_log: Undo log to mark applied entries in
            metrics: Metrics collector (global collector when None)
        """
        self.entity_store = entity_store
        self.undo_log = undo_log
        self.metrics = metrics or get_global_collector()

    def collect(self, checkpoint_ids: Sequence[str]) -> list[UndoLogEntry]:
        """
        Load the not-yet-applied entries of checkpoints in replay order.

        Args:
            checkpoint_ids: Checkpoints to revert

        Returns:
            Entries newest first across all checkpoints

        Raises:
            RestoreError: If a stored entry is malformed
        """
        try:
            entries = self.undo_log.get_by_checkpoints(checkpoint_ids, include_applied=False)
        except CaptureError as e:
            raise RestoreError(
                f"Cannot load undo log: {e}", original_error=e
            ) from e
        return replay_order(entries)

    def apply(self, entry: UndoLogEntry) -> None:
        """
        Apply the inverse of one entry.

        Args:
            entry: Entry to revert

        Raises:
            SnapshotValidationError: If the stored snapshot is not a valid row
            NotFoundError: If the row to delete/update no longer exists
        """
        row_id = entry.row_id
        if row_id is None:
            raise RestoreError(f"Undo-log entry {entry.id} has no row id", failed_entry=entry)

        if entry.operation == UndoOperation.INSERT:
            self.entity_store.delete(entry.table_name, row_id)
            return

        if entry.previous_data is None:
            raise RestoreError(
                f"Undo-log entry {entry.id} has no previous data", failed_entry=entry
            )

        validate_snapshot(entry.table_name, entry.previous_data)
        row = {**entry.previous_data, "id": row_id}

        if entry.operation == UndoOperation.UPDATE:
            self.entity_store.update(entry.table_name, row)
        else:
            self.entity_store.insert(entry.table_name, row)

    def replay(self, entries: Sequence[UndoLogEntry]) -> int:
        """
        Apply entries in the given order, marking each one applied.

        Args:
            entries: Entries newest first

        Returns:
            Number of entries applied

        Raises:
            RestoreError: On the first entry whose inverse fails, carrying the
                applied and pending entries
        """
        started = time.monotonic()
        applied: list[UndoLogEntry] = []

        for index, entry in enumerate(entries):
            if entry.is_applied:
                continue
            try:
                self.apply(entry)
            except Exception as e:
                pending = list(entries[index:])
                logger.error(
                    "Undo replay failed",
                    entry_id=entry.id,
                    table=entry.table_name,
                    operation=entry.operation.value,
                    row_id=entry.row_id,
                    applied=len(applied),
                    pending=len(pending),
                    error=str(e),
                )
                self.metrics.count_replay("applied", len(applied))
                self.metrics.count_replay("failed", 1)
                raise RestoreError(
                    f"Failed to revert {entry.operation.value} on "
                    f"{entry.table_name} row {entry.row_id}: {e}",
                    applied=applied,
                    pending=pending,
                    failed_entry=entry,
                    original_error=e,
                ) from e

            assert entry.id is not None, "Stored entries always have an id"
            entry.applied_at = self.undo_log.mark_applied(entry.id)
            applied.append(entry)

            logger.debug(
                "Reverted entry",
                entry_id=entry.id,
                table=entry.table_name,
                operation=entry.operation.value,
                row_id=entry.row_id,
            )

        self.metrics.count_replay("applied", len(applied))
        self.metrics.record_replay_latency((time.monotonic() - started) * 1000)
        return len(applied)
