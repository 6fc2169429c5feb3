"""Undo-log entry model."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..constants import OPERATION_DISPLAY_NAMES


class UndoOperation(str, Enum):
    """Kind of mutation an undo-log entry reverses."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"

    @property
    def display_name(self) -> str:
        """Human-readable verb (Create/Update/Delete)."""
        return OPERATION_DISPLAY_NAMES[self.value]


@dataclass
class UndoLogEntry:
    """
    A single reversible mutation record.

    Attributes:
        id: Sequence number (None until appended)
        checkpoint_id: Owning checkpoint
        scope_id: Owning scope, denormalised for cascade by scope
        operation: insert, update or delete
        table_name: Entity table the mutation touched
        primary_key: Structured row identifier, at least {"id": int}
        previous_data: Row snapshot before the mutation (None for inserts)
        created_at: ISO timestamp
        applied_at: ISO timestamp the inverse was applied, if it was
    """

    id: int | None
    checkpoint_id: str
    scope_id: int
    operation: UndoOperation
    table_name: str
    primary_key: dict[str, Any]
    previous_data: dict[str, Any] | None
    created_at: str
    applied_at: str | None = None

    @property
    def row_id(self) -> int | None:
        """Row id from the primary key, if it has one."""
        value = self.primary_key.get("id")
        return int(value) if value is not None else None

    @property
    def is_applied(self) -> bool:
        """Whether a rollback/restore already reverted this entry."""
        return self.applied_at is not None
