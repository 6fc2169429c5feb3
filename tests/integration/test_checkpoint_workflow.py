"""Integration tests for checkpoint sessions, history and restore."""

from unittest.mock import patch

import pytest

from src.checkpointer.models.checkpoint import CheckpointStatus
from src.checkpointer.models.results import CaptureOutcome
from src.checkpointer.utils.exceptions import RestoreError


def test_create_field_then_restore(service, customer_object):
    """Test adding a field, reading it back from history and restoring it away."""
    # Agent session adds an email field
    started = service.begin(42, description="Add email field", source="LLM")
    service.run_tool("saveFields", {"fields": [{"name": "email", "objectid": 42, "type": "Email"}]})
    assert service.commit()["success"] is True

    # History lists the field as created
    [entry] = service.get_history(42)
    assert entry["id"] == started["checkpoint_id"]
    assert entry["updated_rules"] == [{"name": "email", "type": "Field", "operation": "Create"}]

    # Restore to the checkpoint removes it again
    outcome = service.restore(started["checkpoint_id"])

    assert outcome["success"] is True
    assert service.entity_store.find("Fields", objectid=42) == []
    [entry] = service.get_history(42)
    assert entry["status"] == "rolled_back"
    assert entry["updated_rules"] == []


def test_rename_rolled_back(service, customer_object):
    """Test an aborted session leaves the object as it was."""
    before = service.entity_store.get("Objects", 42)

    service.begin(42, description="Rename customer")
    service.run_tool("saveObject", {"id": 42, "name": "Client", "hasWorkflow": False})
    assert service.entity_store.get("Objects", 42)["name"] == "Client"

    outcome = service.rollback()

    assert outcome["success"] is True
    assert service.entity_store.get("Objects", 42) == before


def test_delete_round_trip(service, grid_view, name_field):
    """Test deleted rows come back with the same id and data."""
    view_before = service.entity_store.get("Views", 7)
    field_before = service.entity_store.get("Fields", 3)

    started = service.begin(42, description="Clean up")
    service.run_tool("deleteView", {"id": 7})
    service.run_tool("deleteField", {"id": 3})
    service.commit()

    assert service.entity_store.get("Views", 7) is None

    service.restore(started["checkpoint_id"])

    assert service.entity_store.get("Views", 7) == view_before
    assert service.entity_store.get("Fields", 3) == field_before


def test_lost_capture_marks_gap(service, grid_view):
    """Test a race on the natural key leaves the checkpoint marked incomplete."""
    started = service.begin(42)

    # Lookup misses the existing "Grid" view, so the save updates a row it never snapshotted
    with patch.object(service.capture, "_lookup", return_value=None):
        result = service.run_tool("saveView", {"name": "Grid", "objectid": 42, "type": "Kanban"})
    service.commit()

    assert result.captures[0].outcome == CaptureOutcome.LOST
    [entry] = service.get_history(42)
    assert entry["has_gaps"] is True
    assert entry["capture_failures"] == 1
    assert service.undo_log.count(started["checkpoint_id"]) == 0


def test_restore_across_sessions(service, customer_object, order_object):
    """Test restoring to the middle of a scope's history."""
    # Three sessions on object 42, one on object 43
    service.begin(42)
    service.run_tool("saveView", {"name": "Board", "objectid": 42})
    service.commit()

    second = service.begin(42)
    service.run_tool("saveFields", {"fields": [{"name": "email", "objectid": 42}]})
    service.commit()

    service.begin(43)
    service.run_tool("saveFields", {"fields": [{"name": "total", "objectid": 43}]})
    service.commit()

    service.begin(42)
    service.run_tool("saveObject", {"id": 42, "name": "Client"})
    service.run_tool("deleteView", {"id": service.entity_store.find_one("Views")["id"]})
    service.commit()

    outcome = service.restore(second["checkpoint_id"])

    # Scope 42 is back to just after the first session
    assert outcome["success"] is True
    assert len(outcome["rolled_back_checkpoints"]) == 2
    assert outcome["applied_entries"] == 3
    assert service.entity_store.get("Objects", 42)["name"] == "Customer"
    assert [v["name"] for v in service.entity_store.find("Views", objectid=42)] == ["Board"]
    assert service.entity_store.find("Fields", objectid=42) == []

    # Scope 43 is untouched
    assert service.entity_store.find_one("Fields", name="total") is not None
    statuses = [cp["status"] for cp in service.get_history(43)]
    assert statuses == ["historical"]


def test_partial_restore_resumes(service, customer_object):
    """Test a restore interrupted by an outside change can be finished later."""
    started = service.begin(42)
    service.run_tool("saveFields", {"fields": [{"name": "email", "objectid": 42}]})
    service.run_tool("saveObject", {"id": 42, "name": "Client"})
    service.commit()

    # Someone removes the field outside any session
    email = service.entity_store.find_one("Fields", name="email")
    service.entity_store.delete("Fields", email["id"])

    outcome = service.restore(started["checkpoint_id"])

    assert outcome["success"] is False
    assert outcome["applied"] == 1
    assert outcome["pending"] == 1
    assert service.entity_store.get("Objects", 42)["name"] == "Customer"

    # Put the field back and resume
    service.entity_store.insert("Fields", email)
    outcome = service.restore(started["checkpoint_id"])

    assert outcome["success"] is True
    assert outcome["applied_entries"] == 1
    assert service.entity_store.find("Fields", objectid=42) == []
    [entry] = service.get_history(42)
    assert entry["status"] == "rolled_back"


def test_checkout_with_application(service, customer_object, order_object):
    """Test checkout groups an application save and its linked objects."""
    service.begin(42, description="Build CRM")
    service.run_tool("saveApplication", {"name": "CRM", "workflowIds": [42, 43]})
    service.run_tool("saveView", {"name": "Board", "objectid": 42})
    service.commit()

    summary = service.get_checkout(42)

    assert summary["total_changes"] == 4
    assert [r["name"] for r in summary["application_category"]["rules"]] == ["CRM"]
    assert [g["object_name"] for g in summary["object_groups"]] == ["Customer", "Order"]
    customer = summary["object_groups"][0]
    assert [c["category"] for c in customer["categories"]] == ["workflow", "ui"]

    # Undoing the session unlinks the objects again
    service.restore(service.manager.get_checkpoint_history(42)[0].id)

    assert service.entity_store.get("Objects", 42)["applicationid"] is None
    assert service.entity_store.get("Objects", 43)["applicationid"] is None
    assert service.entity_store.find("Applications") == []


def test_delete_all_by_scope(service, customer_object, order_object):
    """Test deleting one scope's checkpoints drops only their undo log."""
    for scope_id in (42, 43):
        service.begin(scope_id)
        service.run_tool("saveView", {"name": f"View {scope_id}", "objectid": scope_id})
        service.commit()

    outcome = service.delete_all(scope_id=42)

    assert outcome["deleted"] == 1
    assert service.undo_log.count_by_scope(42) == 0
    assert service.undo_log.count_by_scope(43) == 1
    # Rules themselves are kept
    assert service.entity_store.find_one("Views", name="View 42") is not None


def test_mcp_tool_calls(service, customer_object):
    """Test stand-alone tool calls get their own checkpoints and can be restored."""
    service.run_tool("saveView", {"name": "Board", "objectid": 42})
    service.run_tool("saveObject", {"id": 42, "name": "Client"})

    history = service.manager.get_checkpoint_history(42)
    assert [cp.description for cp in history] == ["MCP Tool: saveObject", "MCP Tool: saveView"]
    assert all(cp.status == CheckpointStatus.HISTORICAL for cp in history)

    service.restore(history[-1].id)

    assert service.entity_store.get("Objects", 42)["name"] == "Customer"
    assert service.entity_store.find("Views") == []


def test_failed_rollback_reported(service, customer_object):
    """Test a rollback that cannot finish raises and a later restore finishes it."""
    service.begin(42)
    service.run_tool("saveFields", {"fields": [{"name": "email", "objectid": 42}]})
    email = service.entity_store.find_one("Fields", name="email")
    service.entity_store.delete("Fields", email["id"])

    with pytest.raises(RestoreError) as exc_info:
        service.manager.rollback()

    assert exc_info.value.applied == []
    assert [e.table_name for e in exc_info.value.pending] == ["Fields"]

    # The checkpoint is closed and a later session starts cleanly
    assert service.manager.get_active_checkpoints(42) == []
    service.begin(42)
    service.run_tool("saveObject", {"id": 42, "name": "Client"})
    service.commit()

    # Restoring reports failure while the field is still missing
    first = service.manager.get_checkpoint_history(42)[-1]
    outcome = service.restore(first.id)
    assert outcome["success"] is False
    assert outcome["pending"] == 1
    assert service.entity_store.get("Objects", 42)["name"] == "Customer"

    # With the field back the restore completes
    service.entity_store.insert("Fields", email)
    outcome = service.restore(first.id)

    assert outcome["success"] is True
    assert service.entity_store.find("Fields", objectid=42) == []
    assert [cp["status"] for cp in service.get_history(42)] == ["rolled_back", "rolled_back"]
