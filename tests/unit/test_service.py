"""Unit tests for the checkpoint service."""

import pytest

from src.checkpointer.service import CheckpointService, _scope_from_params
from src.checkpointer.utils.exceptions import NotFoundError, UnknownToolError


class TestSessionCommands:
    """Test begin/commit/rollback/restore/delete responses."""

    @pytest.fixture(autouse=True)
    def setup_method(self, service, customer_object):
        """Set up test fixtures."""
        self.service = service

    def test_begin(self):
        """Test begin response shape."""
        started = self.service.begin(42, description="Add email")

        assert set(started) == {"checkpoint_id", "description", "started_at"}
        assert started["description"] == "Add email"

    def test_commit(self):
        """Test commit responses with and without a session."""
        assert self.service.commit() == {
            "success": False,
            "message": "No active checkpoint session to commit",
        }

        self.service.begin(42)
        assert self.service.commit() == {
            "success": True,
            "message": "Checkpoint committed successfully",
        }

    def test_rollback(self):
        """Test rollback reverts and reports success."""
        self.service.begin(42)
        self.service.tools["saveObject"].execute({"id": 42, "name": "Client"})

        outcome = self.service.rollback()

        assert outcome["success"] is True
        assert self.service.entity_store.get("Objects", 42)["name"] == "Customer"
        assert self.service.rollback()["success"] is False

    def test_rollback_failure(self):
        """Test a failed rollback is reported with its progress."""
        self.service.begin(42)
        result = self.service.tools["saveFields"].execute(
            {"fields": [{"name": "email", "objectid": 42}]}
        )
        self.service.entity_store.delete("Fields", result.result["ids"][0])

        outcome = self.service.rollback()

        assert outcome["success"] is False
        assert outcome["applied"] == 0
        assert outcome["pending"] == 1

    def test_restore(self):
        """Test restore success response."""
        started = self.service.begin(42)
        self.service.tools["saveObject"].execute({"id": 42, "name": "Client"})
        self.service.commit()

        outcome = self.service.restore(started["checkpoint_id"])

        assert outcome["success"] is True
        assert outcome["rolled_back_checkpoints"] == [started["checkpoint_id"]]
        assert outcome["applied_entries"] == 1
        assert self.service.entity_store.get("Objects", 42)["name"] == "Customer"

    def test_restore_unknown(self):
        """Test restoring an unknown checkpoint is reported, not raised."""
        outcome = self.service.restore("missing")

        assert outcome == {"success": False, "message": "Checkpoint not found: missing"}

    def test_delete(self):
        """Test delete responses."""
        started = self.service.begin(42)
        self.service.commit()

        assert self.service.delete(started["checkpoint_id"])["success"] is True
        assert self.service.delete(started["checkpoint_id"])["success"] is False

    def test_delete_all(self):
        """Test delete_all reports the count."""
        for _ in range(2):
            self.service.begin(42)
            self.service.commit()

        outcome = self.service.delete_all(scope_id=42)

        assert outcome == {"success": True, "message": "Deleted 2 checkpoint(s)", "deleted": 2}


class TestQueries:
    """Test status and history queries."""

    @pytest.fixture(autouse=True)
    def setup_method(self, service, customer_object):
        """Set up test fixtures."""
        self.service = service

    def test_status(self):
        """Test status lists active checkpoints by source."""
        started = self.service.begin(42, source="MCP")

        report = self.service.get_status(42)

        assert report["active_session"]["id"] == started["checkpoint_id"]
        assert report["summary"] == {"total": 1, "by_source": {"LLM": 0, "MCP": 1, "API": 0}}
        assert report["active_checkpoints"][0]["status"] == "active"

    def test_status_without_session(self):
        """Test status with nothing open."""
        report = self.service.get_status()

        assert report["active_session"] is None
        assert report["summary"]["total"] == 0

    def test_history(self):
        """Test history entries carry their updated rules."""
        self.service.begin(42)
        self.service.tools["saveFields"].execute({"fields": [{"name": "email", "objectid": 42}]})
        self.service.commit()

        [entry] = self.service.get_history(42)

        assert entry["status"] == "historical"
        assert entry["changes_count"] == 1
        assert entry["updated_rules"] == [{"name": "email", "type": "Field", "operation": "Create"}]

    def test_get_rule(self):
        """Test resolving a checkout rule id."""
        self.service.begin(42)
        self.service.tools["saveObject"].execute({"id": 42, "name": "Client"})
        self.service.commit()
        checkout = self.service.get_checkout(42)
        rule_id = checkout["object_groups"][0]["categories"][0]["rules"][0]["id"]

        assert self.service.get_rule(rule_id, "Objects")["name"] == "Client"


class TestRunTool:
    """Test run_tool wrapping single calls in checkpoints."""

    @pytest.fixture(autouse=True)
    def setup_method(self, service, customer_object):
        """Set up test fixtures."""
        self.service = service

    def test_mutating_tool_gets_own_checkpoint(self):
        """Test a mutating call outside a session is committed on its own."""
        params = {"fields": [{"name": "email", "objectid": 42}]}

        result = self.service.run_tool("saveFields", params)

        assert len(result.captures) == 1
        [checkpoint] = self.service.manager.get_checkpoint_history(42)
        assert checkpoint.description == "MCP Tool: saveFields"
        assert checkpoint.source.value == "MCP"
        assert checkpoint.user_command.startswith("MCP saveFields(")
        assert checkpoint.tools_executed == ["saveFields"]
        assert self.service.manager.context is None

    def test_failing_tool_rolls_back(self):
        """Test a failing call rolls its checkpoint back and re-raises."""
        with pytest.raises(NotFoundError):
            self.service.run_tool("saveView", {"id": 999, "name": "Ghost"}, scope_id=42)

        [checkpoint] = self.service.manager.get_checkpoint_history(42)
        assert checkpoint.status.value == "rolled_back"
        assert self.service.manager.context is None

    def test_failing_batch_leaves_no_rows(self):
        """Test rows saved before a batch call fails are removed with its checkpoint."""
        params = {"fields": [{"name": "email", "objectid": 42}, {"id": 999, "name": "ghost"}]}

        with pytest.raises(NotFoundError):
            self.service.run_tool("saveFields", params, scope_id=42)

        [checkpoint] = self.service.manager.get_checkpoint_history(42)
        assert checkpoint.status.value == "rolled_back"
        assert self.service.entity_store.find("Fields", objectid=42) == []

    def test_read_only_tool_has_no_checkpoint(self):
        """Test read-only calls never open a checkpoint."""
        result = self.service.run_tool("listObjects")

        assert len(result.result["objects"]) == 1
        assert self.service.manager.get_checkpoint_history() == []

    def test_open_session_is_reused(self):
        """Test calls inside an open session are captured into it."""
        started = self.service.begin(42)

        self.service.run_tool("saveObject", {"id": 42, "name": "Client"})

        assert self.service.manager.context.checkpoint_id == started["checkpoint_id"]
        assert self.service.undo_log.count(started["checkpoint_id"]) == 1

    def test_unknown_tool(self):
        """Test unknown tool names raise UnknownToolError."""
        with pytest.raises(UnknownToolError):
            self.service.run_tool("dropDatabase")

    @pytest.mark.parametrize(
        "params,expected",
        [
            ({"objectid": 42}, 42),
            ({"id": 7}, 7),
            ({"fields": [{"objectid": 43}]}, 43),
            ({"name": "x"}, 0),
            ({"id": True}, 0),
        ],
    )
    def test_scope_from_params(self, params, expected):
        """Test the scope guess for tool calls."""
        assert _scope_from_params(params) == expected


class TestServiceResources:
    """Test construction and cleanup."""

    def test_context_manager(self, config):
        """Test the service closes its stores."""
        with CheckpointService.from_config(config) as service:
            service.begin(1)
            service.commit()

        assert config.storage.db_path.exists()
        assert config.storage.entity_db_path.exists()

    def test_metrics_disabled(self, config):
        """Test disabling metrics selects the null backend."""
        config.metrics.enabled = False

        with CheckpointService.from_config(config) as service:
            assert service.metrics.get_summary() == {}
