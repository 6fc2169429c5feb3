"""Utility functions and exceptions."""

from .exceptions import (
    CaptureError,
    CheckpointError,
    NotFoundError,
    RestoreError,
    SessionStateError,
    SnapshotValidationError,
    ToolError,
    ToolValidationError,
    UnknownToolError,
)
from .timestamps import utc_now

__all__ = [
    "CheckpointError",
    "SessionStateError",
    "CaptureError",
    "RestoreError",
    "SnapshotValidationError",
    "NotFoundError",
    "ToolError",
    "UnknownToolError",
    "ToolValidationError",
    "utc_now",
]
