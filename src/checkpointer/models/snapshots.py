"""Row snapshot models with a Pydantic v2 discriminated union.

Undo-log entries store whole-row snapshots as JSON. Before a snapshot is
written back to the entity store it is validated against the schema of the
table it came from, so a truncated or foreign blob is rejected instead of
being inserted blindly.

The discriminator is the table name; snapshots themselves do not carry it,
so `validate_snapshot` injects it before validation. Extra columns are
allowed: the models pin the identifying and owning columns only.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..constants import (
    APPLICATIONS_TABLE,
    DECISION_TABLES_TABLE,
    FIELDS_TABLE,
    OBJECTS_TABLE,
    THEMES_TABLE,
    VIEWS_TABLE,
)
from ..utils.exceptions import SnapshotValidationError


class RowSnapshotBase(BaseModel):
    """Columns every rule row has."""

    model_config = ConfigDict(extra="allow")

    id: int
    name: str


class FieldRow(RowSnapshotBase):
    """Snapshot of a Fields row."""

    table: Literal["Fields"] = Field(FIELDS_TABLE, exclude=True)
    objectid: int
    type: str | None = None


class ViewRow(RowSnapshotBase):
    """Snapshot of a Views row."""

    table: Literal["Views"] = Field(VIEWS_TABLE, exclude=True)
    objectid: int


class ObjectRow(RowSnapshotBase):
    """Snapshot of an Objects row."""

    table: Literal["Objects"] = Field(OBJECTS_TABLE, exclude=True)
    applicationid: int | None = None
    hasWorkflow: bool | None = None


class ApplicationRow(RowSnapshotBase):
    """Snapshot of an Applications row."""

    table: Literal["Applications"] = Field(APPLICATIONS_TABLE, exclude=True)


class ThemeRow(RowSnapshotBase):
    """Snapshot of a Themes row."""

    table: Literal["Themes"] = Field(THEMES_TABLE, exclude=True)
    applicationid: int | None = None


class DecisionTableRow(RowSnapshotBase):
    """Snapshot of a DecisionTables row."""

    table: Literal["DecisionTables"] = Field(DECISION_TABLES_TABLE, exclude=True)
    objectid: int


RowSnapshot = Annotated[
    FieldRow | ViewRow | ObjectRow | ApplicationRow | ThemeRow | DecisionTableRow,
    Field(discriminator="table"),
]

_SNAPSHOT_ADAPTER: TypeAdapter[Any] = TypeAdapter(RowSnapshot)


def validate_snapshot(table_name: str, data: dict[str, Any]) -> RowSnapshotBase:
    """
    Validate a row snapshot against its table schema.

    Args:
        table_name: Table the snapshot belongs to
        data: Snapshot as stored in the undo log

    Returns:
        Validated snapshot model

    Raises:
        SnapshotValidationError: If the snapshot is not a dict or does not
            match the table's schema (unknown tables included)
    """
    if not isinstance(data, dict):
        raise SnapshotValidationError(table_name, f"expected object, got {type(data).__name__}")

    try:
        return _SNAPSHOT_ADAPTER.validate_python({**data, "table": table_name})
    except ValidationError as e:
        raise SnapshotValidationError(table_name, str(e)) from e
