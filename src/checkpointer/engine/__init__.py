"""Checkpoint engine: capture, sessions, replay, restore and history."""

from .capture import CAPTURE_SPECS, CapturedTool, MutationCapture, wrap_tools
from .history import HistoryProjector, parse_rule_id
from .restore import RestoreEngine
from .session import CheckpointSessionManager
from .undo import UndoApplier, replay_order

__all__ = [
    "CAPTURE_SPECS",
    "CapturedTool",
    "MutationCapture",
    "wrap_tools",
    "HistoryProjector",
    "parse_rule_id",
    "RestoreEngine",
    "CheckpointSessionManager",
    "UndoApplier",
    "replay_order",
]
