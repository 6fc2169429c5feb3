"""Unit tests for row snapshot validation."""

import pytest

from src.checkpointer.models.snapshots import FieldRow, ObjectRow, ViewRow, validate_snapshot
from src.checkpointer.utils.exceptions import SnapshotValidationError


class TestValidateSnapshot:
    """Test validate_snapshot function."""

    def test_field_snapshot(self):
        """Test a Fields snapshot validates to FieldRow."""
        snapshot = validate_snapshot("Fields", {"id": 3, "name": "email", "objectid": 42})

        assert isinstance(snapshot, FieldRow)
        assert snapshot.objectid == 42

    def test_dispatch_by_table(self):
        """Test the table name picks the model."""
        view = validate_snapshot("Views", {"id": 1, "name": "Grid", "objectid": 2})

        assert isinstance(view, ViewRow)
        assert isinstance(validate_snapshot("Objects", {"id": 1, "name": "Customer"}), ObjectRow)

    def test_extra_columns_allowed(self):
        """Test unknown columns pass through."""
        snapshot = validate_snapshot(
            "Views", {"id": 1, "name": "Grid", "objectid": 2, "model": {"cols": []}}
        )

        assert snapshot.model_dump()["model"] == {"cols": []}
        assert "table" not in snapshot.model_dump()

    def test_missing_owner(self):
        """Test a Fields snapshot without objectid is rejected."""
        with pytest.raises(SnapshotValidationError) as exc_info:
            validate_snapshot("Fields", {"id": 3, "name": "email"})

        assert exc_info.value.table_name == "Fields"

    def test_missing_id(self):
        """Test snapshots must carry their id."""
        with pytest.raises(SnapshotValidationError):
            validate_snapshot("Themes", {"name": "Dark"})

    def test_unknown_table(self):
        """Test snapshots of unknown tables are rejected."""
        with pytest.raises(SnapshotValidationError):
            validate_snapshot("Users", {"id": 1, "name": "x"})

    @pytest.mark.parametrize("data", [None, [1, 2], "row"])
    def test_not_a_dict(self, data):
        """Test non-object snapshots are rejected."""
        with pytest.raises(SnapshotValidationError, match="expected object"):
            validate_snapshot("Views", data)
