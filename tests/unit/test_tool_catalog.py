"""Unit tests for the rule tool catalog."""

import pytest

from src.checkpointer.constants import MUTATING_TOOLS, READ_ONLY_TOOLS
from src.checkpointer.tools.catalog import create_rule_tools
from src.checkpointer.utils.exceptions import NotFoundError, ToolValidationError


class TestCatalog:
    """Test catalog composition."""

    def test_tool_names(self, entity_store):
        """Test every tool is present and flagged correctly."""
        tools = create_rule_tools(entity_store)

        assert set(tools) == MUTATING_TOOLS | READ_ONLY_TOOLS
        assert {name for name, tool in tools.items() if tool.mutating} == MUTATING_TOOLS

    def test_tool_is_immutable(self, entity_store):
        """Test Tool is a frozen dataclass."""
        tool = create_rule_tools(entity_store)["saveView"]

        with pytest.raises(AttributeError):
            tool.name = "other"


class TestSaveTools:
    """Test upsert behaviour of the save tools."""

    @pytest.fixture(autouse=True)
    def setup_method(self, entity_store):
        """Set up test fixtures."""
        self.store = entity_store
        self.tools = create_rule_tools(entity_store)
        self.store.insert("Objects", {"id": 42, "name": "Customer", "hasWorkflow": True})

    def test_create_object(self):
        """Test createObject inserts with defaults."""
        result = self.tools["createObject"].execute({"name": "Invoice"})

        assert result["created"] is True
        row = self.store.get("Objects", result["id"])
        assert row == {
            "id": result["id"],
            "name": "Invoice",
            "applicationid": None,
            "hasWorkflow": False,
        }

    def test_create_object_requires_name(self):
        """Test createObject rejects a missing name."""
        with pytest.raises(ToolValidationError) as exc_info:
            self.tools["createObject"].execute({})

        assert exc_info.value.tool_name == "createObject"

    def test_save_object_merges_columns(self):
        """Test saveObject only overwrites given columns."""
        result = self.tools["saveObject"].execute({"id": 42, "name": "Client"})

        assert result == {"id": 42, "name": "Client", "created": False}
        assert self.store.get("Objects", 42) == {"id": 42, "name": "Client", "hasWorkflow": True}

    def test_save_object_unknown_id(self):
        """Test saveObject on a missing row."""
        with pytest.raises(NotFoundError):
            self.tools["saveObject"].execute({"id": 999, "name": "Ghost"})

    def test_save_fields_batch(self):
        """Test saveFields inserts each field in order."""
        result = self.tools["saveFields"].execute(
            {
                "fields": [
                    {"name": "email", "objectid": 42, "type": "Email"},
                    {"name": "phone", "objectid": 42},
                ]
            }
        )

        assert [f["name"] for f in result["fields"]] == ["email", "phone"]
        assert all(f["created"] for f in result["fields"])
        assert result["ids"] == [f["id"] for f in result["fields"]]
        assert self.store.get("Fields", result["ids"][0])["type"] == "Email"

    def test_save_fields_upserts_on_natural_key(self):
        """Test a field without id updates the same-named field of the object."""
        existing = self.store.insert("Fields", {"name": "email", "objectid": 42, "type": "Text"})

        result = self.tools["saveFields"].execute(
            {"fields": [{"name": "email", "objectid": 42, "type": "Email"}]}
        )

        assert result["fields"][0] == {"id": existing["id"], "name": "email", "created": False}
        assert self.store.get("Fields", existing["id"])["type"] == "Email"

    def test_save_fields_requires_owner(self):
        """Test new fields need an objectid."""
        with pytest.raises(ToolValidationError, match="objectid"):
            self.tools["saveFields"].execute({"fields": [{"name": "email"}]})

    def test_save_fields_rejects_empty_batch(self):
        """Test saveFields needs at least one field."""
        with pytest.raises(ToolValidationError):
            self.tools["saveFields"].execute({"fields": []})

    def test_intent_is_not_stored(self):
        """Test the capture hint never reaches the row."""
        result = self.tools["saveView"].execute(
            {"name": "Grid", "objectid": 42, "intent": "insert", "model": {"cols": []}}
        )

        row = self.store.get("Views", result["id"])
        assert "intent" not in row
        assert row["model"] == {"cols": []}

    def test_save_view_requires_name(self):
        """Test saving without id or name."""
        with pytest.raises(ToolValidationError, match="name is required"):
            self.tools["saveView"].execute({"objectid": 42})

    def test_save_application_links_objects(self):
        """Test saveApplication sets applicationid on its workflows."""
        result = self.tools["saveApplication"].execute({"name": "CRM", "workflowIds": [42]})

        assert result["created"] is True
        assert result["linked_objects"] == [42]
        assert "workflowIds" not in self.store.get("Applications", result["id"])
        assert self.store.get("Objects", 42)["applicationid"] == result["id"]

    def test_save_application_unknown_workflow(self):
        """Test nothing is written when a linked object is missing."""
        with pytest.raises(NotFoundError):
            self.tools["saveApplication"].execute({"name": "CRM", "workflowIds": [42, 999]})

        assert self.store.find("Applications") == []

    def test_save_theme_and_decision_table(self):
        """Test the remaining save tools."""
        theme = self.tools["saveTheme"].execute({"name": "Dark", "applicationid": 1})
        table = self.tools["saveDecisionTable"].execute({"name": "Pricing", "objectid": 42})

        assert self.store.get("Themes", theme["id"])["applicationid"] == 1
        assert self.store.get("DecisionTables", table["id"])["objectid"] == 42


class TestDeleteAndReadTools:
    """Test delete and read-only tools."""

    @pytest.fixture(autouse=True)
    def setup_method(self, entity_store):
        """Set up test fixtures."""
        self.store = entity_store
        self.tools = create_rule_tools(entity_store)
        self.store.insert("Objects", {"id": 42, "name": "Customer", "applicationid": 5})
        self.store.insert("Objects", {"id": 43, "name": "Order", "applicationid": None})
        self.store.insert("Views", {"id": 7, "name": "Grid", "objectid": 42})
        self.store.insert("Fields", {"id": 3, "name": "name", "objectid": 42})
        self.store.insert("Applications", {"id": 5, "name": "CRM"})

    @pytest.mark.parametrize(
        "tool_name,table,row_id",
        [("deleteView", "Views", 7), ("deleteField", "Fields", 3), ("deleteObject", "Objects", 43)],
    )
    def test_delete(self, tool_name, table, row_id):
        """Test delete tools remove the row."""
        result = self.tools[tool_name].execute({"id": row_id})

        assert result == {"id": row_id, "deleted": True}
        assert self.store.get(table, row_id) is None

    def test_delete_missing(self):
        """Test deleting a missing row."""
        with pytest.raises(NotFoundError):
            self.tools["deleteTheme"].execute({"id": 1})

    def test_delete_requires_id(self):
        """Test delete tools validate their id."""
        with pytest.raises(ToolValidationError):
            self.tools["deleteView"].execute({"id": "seven"})

    def test_list_objects(self):
        """Test listing objects with and without application filter."""
        assert len(self.tools["listObjects"].execute()["objects"]) == 2
        scoped = self.tools["listObjects"].execute({"applicationid": 5})["objects"]
        assert [o["id"] for o in scoped] == [42]

    def test_list_fields_and_views(self):
        """Test listing rules of an object."""
        fields = self.tools["listFields"].execute({"objectid": 42})["fields"]
        views = self.tools["listViews"].execute({"objectid": 42})["views"]

        assert [f["id"] for f in fields] == [3]
        assert [v["id"] for v in views] == [7]

    def test_get_object_and_application(self):
        """Test single-row lookups."""
        assert self.tools["getObject"].execute({"id": 42})["name"] == "Customer"
        assert self.tools["getApplication"].execute({"id": 5})["name"] == "CRM"

        with pytest.raises(NotFoundError):
            self.tools["getObject"].execute({"id": 999})
