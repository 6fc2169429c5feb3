"""Custom exceptions for the rule checkpoint engine.

Exception Hierarchy:
-------------------
CheckpointError (base)
├── SessionStateError         # commit/rollback with no session, illegal status transition
├── CaptureError              # pre-state snapshot unreadable, stored JSON malformed
├── RestoreError              # reverse-apply step failed (carries applied/pending entries)
│   └── SnapshotValidationError   # previous_data does not match the table schema
├── NotFoundError             # unknown checkpoint id / rule id
└── ToolError (base for mutation catalog errors)
    ├── UnknownToolError      # tool name not in the catalog
    └── ToolValidationError   # tool parameters rejected

Usage Guidelines:
----------------
1. SessionStateError is recovered locally by the session manager for
   commit/rollback without a session (logged, returns False). It is raised
   for illegal status transitions.

2. CaptureError never escapes MutationCapture: the wrapped mutation still
   runs, the lost entry is reported as a CaptureResult with outcome LOST and
   the checkpoint is flagged with has_gaps.

3. RestoreError is raised to the caller. Entries applied before the failure
   stay applied; `applied` and `pending` say exactly how far replay got.

4. ToolError and its subclasses propagate unchanged; nothing is captured for
   a tool call that failed.
"""

from typing import Any


class CheckpointError(Exception):
    """Base exception for all checkpoint engine errors."""

    pass


class SessionStateError(CheckpointError):
    """Raised when a session operation is not valid in the current state."""

    def __init__(
        self,
        message: str,
        checkpoint_id: str | None = None,
        current_status: str | None = None,
        target_status: str | None = None,
    ) -> None:
        """
        Initialize SessionStateError.

        Args:
            message: Error message.
            checkpoint_id: Checkpoint the operation targeted, if any.
            current_status: Status the checkpoint was in.
            target_status: Status the operation tried to move it to.
        """
        super().__init__(message)
        self.checkpoint_id = checkpoint_id
        self.current_status = current_status
        self.target_status = target_status


class CaptureError(CheckpointError):
    """Raised when the information needed to reverse a mutation cannot be captured."""

    def __init__(
        self,
        message: str,
        table_name: str | None = None,
        row_id: int | None = None,
        original_error: Exception | None = None,
    ) -> None:
        """
        Initialize CaptureError.

        Args:
            message: Error message.
            table_name: Entity table the capture targeted.
            row_id: Row id the capture targeted, if known.
            original_error: Underlying exception.
        """
        super().__init__(message)
        self.table_name = table_name
        self.row_id = row_id
        self.original_error = original_error


class RestoreError(CheckpointError):
    """
    Raised when replaying undo-log entries fails part way.

    Replay is not transactional across entries: everything listed in
    `applied` has been written back to the entity store, everything in
    `pending` has not.
    """

    def __init__(
        self,
        message: str,
        applied: list[Any] | None = None,
        pending: list[Any] | None = None,
        failed_entry: Any = None,
        original_error: Exception | None = None,
    ) -> None:
        """
        Initialize RestoreError.

        Args:
            message: Error message.
            applied: Entries whose inverse was applied before the failure.
            pending: Entries not applied (the failing entry first).
            failed_entry: The entry whose inverse raised.
            original_error: Underlying exception.
        """
        super().__init__(message)
        self.applied = applied or []
        self.pending = pending or []
        self.failed_entry = failed_entry
        self.original_error = original_error


class SnapshotValidationError(RestoreError):
    """Raised when a stored row snapshot does not match its table schema."""

    def __init__(self, table_name: str, errors: str) -> None:
        """
        Initialize SnapshotValidationError.

        Args:
            table_name: Table the snapshot belongs to.
            errors: Validation error details.
        """
        super().__init__(f"Invalid {table_name} snapshot: {errors}")
        self.table_name = table_name
        self.errors = errors


class NotFoundError(CheckpointError):
    """Raised when a checkpoint or rule cannot be found."""

    def __init__(self, resource_type: str, identifier: str | int) -> None:
        """
        Initialize NotFoundError.

        Args:
            resource_type: Kind of thing that wasn't found (checkpoint, Fields, ...).
            identifier: Identifier used for the lookup.
        """
        super().__init__(f"{resource_type} not found: {identifier}")
        self.resource_type = resource_type
        self.identifier = identifier


class ToolError(CheckpointError):
    """Base exception for mutation catalog errors."""

    def __init__(self, message: str, tool_name: str | None = None) -> None:
        """
        Initialize ToolError.

        Args:
            message: Error message.
            tool_name: Name of the tool that failed.
        """
        super().__init__(message)
        self.tool_name = tool_name


class UnknownToolError(ToolError):
    """Raised when a tool name is not part of the catalog."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Unknown tool: {tool_name}", tool_name=tool_name)


class ToolValidationError(ToolError):
    """Raised when tool parameters are rejected."""

    pass
