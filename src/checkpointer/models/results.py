"""Result types for capture, restore and history projection."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from .checkpoint import Checkpoint


class CaptureOutcome(str, Enum):
    """What happened to the undo information for one mutated row."""

    CAPTURED = "captured"  # Entry appended, change is reversible
    SKIPPED = "skipped"  # Nothing to record (no session, row did not exist)
    LOST = "lost"  # Entry could not be recorded, reversibility degraded


@dataclass
class CaptureResult:
    """
    Outcome of capturing a single row mutation.

    Attributes:
        outcome: Captured, skipped or lost
        table_name: Entity table
        row_id: Affected row id, if known
        operation: insert/update/delete, if determined
        entry_id: Undo-log entry id when captured
        reason: Why the capture was skipped or lost
    """

    outcome: CaptureOutcome
    table_name: str
    row_id: int | None = None
    operation: str | None = None
    entry_id: int | None = None
    reason: str | None = None


@dataclass
class ToolCallResult:
    """
    Result of a wrapped tool call.

    Attributes:
        tool_name: Tool that ran
        result: Whatever the underlying tool returned
        captures: One capture result per mutated row, in input order
    """

    tool_name: str
    result: Any
    captures: list[CaptureResult] = field(default_factory=list)

    @property
    def has_gaps(self) -> bool:
        """True if any row's undo information was lost."""
        return any(c.outcome == CaptureOutcome.LOST for c in self.captures)


@dataclass
class RestoreResult:
    """
    Result of a restore.

    Attributes:
        target_checkpoint_id: Checkpoint restored to
        rolled_back_checkpoint_ids: Checkpoints whose changes were reverted, newest first
        applied_entries: Number of undo-log entries applied
    """

    target_checkpoint_id: str
    rolled_back_checkpoint_ids: list[str] = field(default_factory=list)
    applied_entries: int = 0


@dataclass
class UpdatedRule:
    """A rule touched by a checkpoint, as shown in history."""

    name: str
    type: str
    operation: str


@dataclass
class CheckpointHistory:
    """
    A checkpoint augmented with the rules it touched.

    Attributes:
        checkpoint: The checkpoint
        updated_rules: Rules touched, newest entry first
    """

    checkpoint: Checkpoint
    updated_rules: list[UpdatedRule] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Flatten into the history response shape."""
        data = self.checkpoint.to_dict()
        data["updated_rules"] = [asdict(rule) for rule in self.updated_rules]
        return data


@dataclass
class RuleChange:
    """
    A de-duplicated rule change for the checkout view.

    Attributes:
        id: "<checkpoint_id>-<table>-<row_id>"
        name: Resolved rule name
        type: Rule type (Field type for fields)
        category: data/ui/workflow/decision/app/theme
        operation: Create/Update/Delete
        checkpoint_id: Checkpoint of the most recent touch
        checkpoint_description: Its description
        checkpoint_created_at: Its creation timestamp
        checkpoint_source: Its source
    """

    id: str
    name: str
    type: str
    category: str
    operation: str
    checkpoint_id: str
    checkpoint_description: str
    checkpoint_created_at: str
    checkpoint_source: str


@dataclass
class CategoryGroup:
    """Rule changes of one category."""

    category: str
    category_name: str
    rules: list[RuleChange] = field(default_factory=list)


@dataclass
class ObjectGroup:
    """Rule changes owned by one object, split by category."""

    object_id: int
    object_name: str
    has_workflow: bool
    categories: list[CategoryGroup] = field(default_factory=list)
    total_changes: int = 0


@dataclass
class CheckoutSummary:
    """
    Aggregated, de-duplicated changes across a scope's checkpoints.

    Attributes:
        object_groups: Per-object groups sorted by object name
        application_category: Application-level changes, if any
        theme_category: Theme changes, if any
        total_changes: Number of distinct rules changed
        total_checkpoints: Number of checkpoints aggregated
    """

    object_groups: list[ObjectGroup] = field(default_factory=list)
    application_category: CategoryGroup | None = None
    theme_category: CategoryGroup | None = None
    total_changes: int = 0
    total_checkpoints: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return asdict(self)

