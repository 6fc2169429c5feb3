"""Rule Checkpoint - Undo log and point-in-time restore for rule edits."""

__version__ = "0.1.0"

from .config import EngineConfig  # noqa: E402
from .service import CheckpointService  # noqa: E402

__all__ = ["CheckpointService", "EngineConfig", "__version__"]
