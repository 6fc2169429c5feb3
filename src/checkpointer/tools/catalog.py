"""Rule tool catalog.

The mutating tools an agent calls to edit rules, plus a handful of read-only
lookups. Every tool takes a parameter dict, validates it with a Pydantic
model and works on the entity store directly; checkpoint capture is layered
on top by `MutationCapture`, the tools themselves know nothing about it.

Save tools upsert: a row with an `id` updates that row, a row without one
updates the row matching its natural key (name plus owner) or inserts a new
row. Results report the row id and whether the row was `created`, which is
what capture uses to detect a lost insert/update race.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..constants import (
    APPLICATIONS_TABLE,
    DECISION_TABLES_TABLE,
    FIELDS_TABLE,
    MUTATING_TOOLS,
    NATURAL_KEYS,
    OBJECTS_TABLE,
    THEMES_TABLE,
    VIEWS_TABLE,
)
from ..store.entity_store import EntityStore, Row
from ..utils.exceptions import NotFoundError, ToolValidationError

logger = structlog.get_logger(__name__)


# -----------------------------------------------------------------------------
# Parameter Models
# -----------------------------------------------------------------------------


class RuleInput(BaseModel):
    """Common shape of a saved rule row. Unlisted columns pass through."""

    model_config = ConfigDict(extra="allow")

    id: int | None = None
    name: str | None = Field(None, min_length=1)
    # Insert/update hint for capture; never stored
    intent: Literal["insert", "update"] | None = None


class CreateObjectInput(RuleInput):
    name: str = Field(..., min_length=1)
    applicationid: int | None = None
    hasWorkflow: bool = False


class ObjectInput(RuleInput):
    id: int
    applicationid: int | None = None
    hasWorkflow: bool | None = None


class FieldInput(RuleInput):
    objectid: int | None = None
    type: str | None = None


class SaveFieldsInput(BaseModel):
    fields: list[FieldInput] = Field(..., min_length=1)


class ViewInput(RuleInput):
    objectid: int | None = None


class ApplicationInput(RuleInput):
    workflowIds: list[int] = Field(default_factory=list)


class ThemeInput(RuleInput):
    applicationid: int | None = None


class DecisionTableInput(RuleInput):
    objectid: int | None = None


class IdInput(BaseModel):
    id: int


class ObjectScopeInput(BaseModel):
    objectid: int


class ListObjectsInput(BaseModel):
    applicationid: int | None = None


# -----------------------------------------------------------------------------
# Tool
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Tool:
    """
    A named operation over the entity store.

    Attributes:
        name: Tool name as called by agents
        description: One-line description
        handler: Callable taking the parameter dict
        mutating: Whether the tool writes rows
    """

    name: str
    description: str
    handler: Callable[[dict[str, Any]], Any]
    mutating: bool

    def execute(self, params: dict[str, Any] | None = None) -> Any:
        """Run the tool with a parameter dict."""
        return self.handler(params or {})


def _parse(model: type[BaseModel], params: dict[str, Any], tool_name: str) -> Any:
    try:
        return model.model_validate(params)
    except ValidationError as e:
        raise ToolValidationError(f"Invalid parameters for {tool_name}: {e}", tool_name) from e


def _row_data(item: BaseModel, exclude: frozenset[str] = frozenset()) -> Row:
    """Columns to write: explicitly given values, without the capture hint."""
    return item.model_dump(exclude_unset=True, exclude={"intent", *exclude})


class RuleTools:
    """
    Implementations of the rule tools over one entity store.

    Usage:
        tools = RuleTools(store).catalog()
        tools["saveView"].execute({"name": "Grid", "objectid": 42})
    """

    def __init__(self, store: EntityStore) -> None:
        """
        Initialize RuleTools.

        Args:
            store: Entity store the tools read and write
        """
        self.store = store

    def catalog(self) -> dict[str, Tool]:
        """
        Build the tool catalog.

        Returns:
            Tools keyed by name
        """
        specs: list[tuple[str, str, Callable[[dict[str, Any]], Any]]] = [
            ("createObject", "Create an object (workflow)", self.create_object),
            ("saveObject", "Update an object by id", self.save_object),
            ("deleteObject", "Delete an object", self.delete_object),
            ("saveFields", "Create or update a batch of fields", self.save_fields),
            ("deleteField", "Delete a field", self.delete_field),
            ("saveView", "Create or update a view", self.save_view),
            ("deleteView", "Delete a view", self.delete_view),
            ("saveApplication", "Create or update an application", self.save_application),
            ("deleteApplication", "Delete an application", self.delete_application),
            ("saveTheme", "Create or update a theme", self.save_theme),
            ("deleteTheme", "Delete a theme", self.delete_theme),
            ("saveDecisionTable", "Create or update a decision table", self.save_decision_table),
            ("deleteDecisionTable", "Delete a decision table", self.delete_decision_table),
            ("listObjects", "List objects, optionally of one application", self.list_objects),
            ("getObject", "Get an object by id", self.get_object),
            ("listFields", "List the fields of an object", self.list_fields),
            ("listViews", "List the views of an object", self.list_views),
            ("getApplication", "Get an application by id", self.get_application),
        ]
        return {
            name: Tool(name, description, handler, mutating=name in MUTATING_TOOLS)
            for name, description, handler in specs
        }

    # -------------------------------------------------------------------------
    # Shared write paths
    # -------------------------------------------------------------------------

    def _save(
        self,
        table: str,
        item: RuleInput,
        tool_name: str,
        exclude: frozenset[str] = frozenset(),
    ) -> dict[str, Any]:
        """
        Upsert one row.

        Args:
            table: Entity table
            item: Validated row input
            tool_name: Calling tool, for error messages
            exclude: Input fields that are not row columns

        Returns:
            {"id", "name", "created"}
        """
        data = _row_data(item, exclude)

        if item.id is not None:
            existing = self.store.get(table, item.id)
            if existing is None:
                raise NotFoundError(table, item.id)
            row = self.store.update(table, {**existing, **data})
            return {"id": row["id"], "name": row.get("name"), "created": False}

        if data.get("name") is None:
            raise ToolValidationError(f"{tool_name}: name is required without an id", tool_name)

        criteria = {column: data.get(column) for column in NATURAL_KEYS[table]}
        existing = self.store.find_one(table, **criteria)
        if existing is not None:
            row = self.store.update(table, {**existing, **data})
            return {"id": row["id"], "name": row.get("name"), "created": False}

        row = self.store.insert(table, data)
        return {"id": row["id"], "name": row.get("name"), "created": True}

    def _delete(self, table: str, params: dict[str, Any], tool_name: str) -> dict[str, Any]:
        item = _parse(IdInput, params, tool_name)
        self.store.delete(table, item.id)
        return {"id": item.id, "deleted": True}

    def _require_owner(self, item: RuleInput, column: str, tool_name: str) -> None:
        if item.id is None and getattr(item, column) is None:
            raise ToolValidationError(f"{tool_name}: {column} is required", tool_name)

    # -------------------------------------------------------------------------
    # Objects
    # -------------------------------------------------------------------------

    def create_object(self, params: dict[str, Any]) -> dict[str, Any]:
        item = _parse(CreateObjectInput, params, "createObject")
        data = item.model_dump(exclude={"intent", "id"})
        row = self.store.insert(OBJECTS_TABLE, data)
        logger.debug("Object created", object_id=row["id"], name=row["name"])
        return {"id": row["id"], "name": row["name"], "created": True}

    def save_object(self, params: dict[str, Any]) -> dict[str, Any]:
        item = _parse(ObjectInput, params, "saveObject")
        return self._save(OBJECTS_TABLE, item, "saveObject")

    def delete_object(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._delete(OBJECTS_TABLE, params, "deleteObject")

    # -------------------------------------------------------------------------
    # Fields
    # -------------------------------------------------------------------------

    def save_fields(self, params: dict[str, Any]) -> dict[str, Any]:
        """
        Save a batch of fields in order.

        Returns:
            {"fields": [{"id", "name", "created"}, ...], "ids": [...]}
        """
        batch = _parse(SaveFieldsInput, params, "saveFields")
        for item in batch.fields:
            self._require_owner(item, "objectid", "saveFields")

        saved = [self._save(FIELDS_TABLE, item, "saveFields") for item in batch.fields]
        return {"fields": saved, "ids": [row["id"] for row in saved]}

    def delete_field(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._delete(FIELDS_TABLE, params, "deleteField")

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def save_view(self, params: dict[str, Any]) -> dict[str, Any]:
        item = _parse(ViewInput, params, "saveView")
        self._require_owner(item, "objectid", "saveView")
        return self._save(VIEWS_TABLE, item, "saveView")

    def delete_view(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._delete(VIEWS_TABLE, params, "deleteView")

    # -------------------------------------------------------------------------
    # Applications
    # -------------------------------------------------------------------------

    def save_application(self, params: dict[str, Any]) -> dict[str, Any]:
        """
        Save an application and link the objects listed in workflowIds to it.

        Every linked object is checked before anything is written.
        """
        item = _parse(ApplicationInput, params, "saveApplication")

        linked = self.store.get_many(OBJECTS_TABLE, item.workflowIds)
        missing = [oid for oid in item.workflowIds if oid not in linked]
        if missing:
            raise NotFoundError(OBJECTS_TABLE, missing[0])

        result = self._save(
            APPLICATIONS_TABLE, item, "saveApplication", exclude=frozenset({"workflowIds"})
        )

        for object_id in item.workflowIds:
            row = linked[object_id]
            self.store.update(OBJECTS_TABLE, {**row, "applicationid": result["id"]})

        result["linked_objects"] = list(item.workflowIds)
        return result

    def delete_application(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._delete(APPLICATIONS_TABLE, params, "deleteApplication")

    # -------------------------------------------------------------------------
    # Themes
    # -------------------------------------------------------------------------

    def save_theme(self, params: dict[str, Any]) -> dict[str, Any]:
        item = _parse(ThemeInput, params, "saveTheme")
        return self._save(THEMES_TABLE, item, "saveTheme")

    def delete_theme(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._delete(THEMES_TABLE, params, "deleteTheme")

    # -------------------------------------------------------------------------
    # Decision tables
    # -------------------------------------------------------------------------

    def save_decision_table(self, params: dict[str, Any]) -> dict[str, Any]:
        item = _parse(DecisionTableInput, params, "saveDecisionTable")
        self._require_owner(item, "objectid", "saveDecisionTable")
        return self._save(DECISION_TABLES_TABLE, item, "saveDecisionTable")

    def delete_decision_table(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._delete(DECISION_TABLES_TABLE, params, "deleteDecisionTable")

    # -------------------------------------------------------------------------
    # Read-only
    # -------------------------------------------------------------------------

    def list_objects(self, params: dict[str, Any]) -> dict[str, Any]:
        item = _parse(ListObjectsInput, params, "listObjects")
        if item.applicationid is None:
            return {"objects": self.store.find(OBJECTS_TABLE)}
        return {"objects": self.store.find(OBJECTS_TABLE, applicationid=item.applicationid)}

    def get_object(self, params: dict[str, Any]) -> Row:
        item = _parse(IdInput, params, "getObject")
        row = self.store.get(OBJECTS_TABLE, item.id)
        if row is None:
            raise NotFoundError(OBJECTS_TABLE, item.id)
        return row

    def list_fields(self, params: dict[str, Any]) -> dict[str, Any]:
        item = _parse(ObjectScopeInput, params, "listFields")
        return {"fields": self.store.find(FIELDS_TABLE, objectid=item.objectid)}

    def list_views(self, params: dict[str, Any]) -> dict[str, Any]:
        item = _parse(ObjectScopeInput, params, "listViews")
        return {"views": self.store.find(VIEWS_TABLE, objectid=item.objectid)}

    def get_application(self, params: dict[str, Any]) -> Row:
        item = _parse(IdInput, params, "getApplication")
        row = self.store.get(APPLICATIONS_TABLE, item.id)
        if row is None:
            raise NotFoundError(APPLICATIONS_TABLE, item.id)
        return row


def create_rule_tools(store: EntityStore) -> dict[str, Tool]:
    """
    Build the rule tool catalog over a store.

    Args:
        store: Entity store

    Returns:
        Tools keyed by name
    """
    return RuleTools(store).catalog()
