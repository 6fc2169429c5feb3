"""Persistence layer for checkpoints and the undo log."""

from .checkpoint_store import CheckpointStore
from .schema import connect, initialize_schema
from .undo_log import UndoLogStore

__all__ = ["CheckpointStore", "UndoLogStore", "connect", "initialize_schema"]
