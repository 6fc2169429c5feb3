"""Data models for the rule checkpoint engine."""

from .checkpoint import (
    ALLOWED_TRANSITIONS,
    Checkpoint,
    CheckpointSource,
    CheckpointStatus,
    SessionContext,
    can_transition,
)
from .results import (
    CaptureOutcome,
    CaptureResult,
    CategoryGroup,
    CheckoutSummary,
    CheckpointHistory,
    ObjectGroup,
    RestoreResult,
    RuleChange,
    ToolCallResult,
    UpdatedRule,
)
from .snapshots import RowSnapshot, validate_snapshot
from .undo import UndoLogEntry, UndoOperation

__all__ = [
    # Checkpoints
    "Checkpoint",
    "CheckpointSource",
    "CheckpointStatus",
    "SessionContext",
    "ALLOWED_TRANSITIONS",
    "can_transition",
    # Undo log
    "UndoLogEntry",
    "UndoOperation",
    # Snapshots
    "RowSnapshot",
    "validate_snapshot",
    # Results
    "CaptureOutcome",
    "CaptureResult",
    "ToolCallResult",
    "RestoreResult",
    "UpdatedRule",
    "CheckpointHistory",
    "RuleChange",
    "CategoryGroup",
    "ObjectGroup",
    "CheckoutSummary",
]
