"""Unit tests for Undo log persistence."""

import pytest

from src.checkpointer.models.undo import UndoOperation
from src.checkpointer.utils.exceptions import CaptureError


class TestUndoLogStore:
    """Test UndoLogStore class."""

    @pytest.fixture(autouse=True)
    def setup_method(self, checkpoint_store, undo_log):
        """Set up test fixtures."""
        self.undo_log = undo_log
        self.checkpoint = checkpoint_store.create(42, "desc")
        self.other = checkpoint_store.create(42, "other")

    def test_append_insert(self):
        """Test appending an insert entry."""
        entry = self.undo_log.append(
            self.checkpoint.id, 42, UndoOperation.INSERT, "Fields", {"id": 5}
        )

        assert entry.id > 0
        assert entry.operation == UndoOperation.INSERT
        assert entry.previous_data is None
        assert entry.row_id == 5
        assert entry.is_applied is False

    def test_append_update_keeps_snapshot(self):
        """Test snapshots are stored exactly."""
        snapshot = {"id": 42, "name": "Old", "hasWorkflow": True, "model": {"a": [1, 2]}}
        self.undo_log.append(
            self.checkpoint.id, 42, UndoOperation.UPDATE, "Objects", {"id": 42}, snapshot
        )

        [entry] = self.undo_log.get_by_checkpoint(self.checkpoint.id)
        assert entry.previous_data == snapshot
        assert entry.primary_key == {"id": 42}

    def test_append_accepts_string_operation(self):
        """Test operation given as its string value."""
        entry = self.undo_log.append(
            self.checkpoint.id, 42, "delete", "Views", {"id": 1}, {"id": 1}
        )

        assert entry.operation == UndoOperation.DELETE

    def test_append_requires_primary_key(self):
        """Test entries without a row id are rejected."""
        with pytest.raises(CaptureError, match="primary_key"):
            self.undo_log.append(self.checkpoint.id, 42, UndoOperation.INSERT, "Fields", {})

    @pytest.mark.parametrize("operation", [UndoOperation.UPDATE, UndoOperation.DELETE])
    def test_append_requires_snapshot(self, operation):
        """Test updates and deletes need previous_data."""
        with pytest.raises(CaptureError, match="previous_data"):
            self.undo_log.append(self.checkpoint.id, 42, operation, "Fields", {"id": 1})

    def test_append_unknown_checkpoint(self):
        """Test the foreign key rejects entries of unknown checkpoints."""
        with pytest.raises(CaptureError) as exc_info:
            self.undo_log.append("missing", 42, UndoOperation.INSERT, "Fields", {"id": 1})

        assert exc_info.value.original_error is not None

    def test_get_by_checkpoint_newest_first(self):
        """Test entries come back most recent first."""
        first = self.undo_log.append(self.checkpoint.id, 42, "insert", "Fields", {"id": 1})
        second = self.undo_log.append(self.checkpoint.id, 42, "insert", "Fields", {"id": 2})

        entries = self.undo_log.get_by_checkpoint(self.checkpoint.id)

        assert [e.id for e in entries] == [second.id, first.id]

    def test_get_by_checkpoint_skips_applied(self):
        """Test applied entries are hidden unless requested."""
        first = self.undo_log.append(self.checkpoint.id, 42, "insert", "Fields", {"id": 1})
        second = self.undo_log.append(self.checkpoint.id, 42, "insert", "Fields", {"id": 2})

        applied_at = self.undo_log.mark_applied(second.id)

        assert applied_at
        assert [e.id for e in self.undo_log.get_by_checkpoint(self.checkpoint.id)] == [first.id]
        everything = self.undo_log.get_by_checkpoint(self.checkpoint.id, include_applied=True)
        assert [e.is_applied for e in everything] == [True, False]

    def test_get_by_checkpoints_single_batch(self):
        """Test batch fetch groups by checkpoint, newest first within each."""
        a1 = self.undo_log.append(self.checkpoint.id, 42, "insert", "Fields", {"id": 1})
        b1 = self.undo_log.append(self.other.id, 42, "insert", "Views", {"id": 2})
        a2 = self.undo_log.append(self.checkpoint.id, 42, "insert", "Fields", {"id": 3})

        entries = self.undo_log.get_by_checkpoints([self.checkpoint.id, self.other.id])

        grouped = {}
        for entry in entries:
            grouped.setdefault(entry.checkpoint_id, []).append(entry.id)
        assert grouped[self.checkpoint.id] == [a2.id, a1.id]
        assert grouped[self.other.id] == [b1.id]

    def test_get_by_checkpoints_empty(self):
        """Test batch fetch for no checkpoints."""
        assert self.undo_log.get_by_checkpoints([]) == []

    def test_malformed_entry_strict(self):
        """Test malformed stored JSON surfaces as CaptureError."""
        entry = self.undo_log.append(self.checkpoint.id, 42, "insert", "Fields", {"id": 1})
        self.undo_log.conn.execute(
            "UPDATE undo_log SET primary_key = ? WHERE id = ?", ("{not json", entry.id)
        )
        self.undo_log.conn.commit()

        with pytest.raises(CaptureError, match="Malformed"):
            self.undo_log.get_by_checkpoint(self.checkpoint.id)

    def test_malformed_entry_lenient(self):
        """Test lenient batch fetch drops malformed entries."""
        bad = self.undo_log.append(self.checkpoint.id, 42, "insert", "Fields", {"id": 1})
        good = self.undo_log.append(self.checkpoint.id, 42, "insert", "Fields", {"id": 2})
        self.undo_log.conn.execute(
            "UPDATE undo_log SET primary_key = ? WHERE id = ?", ("[1, 2]", bad.id)
        )
        self.undo_log.conn.commit()

        entries = self.undo_log.get_by_checkpoints([self.checkpoint.id], strict=False)

        assert [e.id for e in entries] == [good.id]

    def test_count(self):
        """Test counting entries per checkpoint and scope."""
        self.undo_log.append(self.checkpoint.id, 42, "insert", "Fields", {"id": 1})
        self.undo_log.append(self.checkpoint.id, 42, "insert", "Fields", {"id": 2})

        assert self.undo_log.count(self.checkpoint.id) == 2
        assert self.undo_log.count(self.other.id) == 0
        assert self.undo_log.count_by_scope(42) == 2
