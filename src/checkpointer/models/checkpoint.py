"""Checkpoint models and status state machine."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class CheckpointStatus(str, Enum):
    """Lifecycle status of a checkpoint."""

    ACTIVE = "active"
    HISTORICAL = "historical"  # Written by commit
    COMMITTED = "committed"  # Accepted synonym of HISTORICAL
    ROLLED_BACK = "rolled_back"


class CheckpointSource(str, Enum):
    """Who opened the checkpoint."""

    LLM = "LLM"
    MCP = "MCP"
    API = "API"


# Allowed status transitions. Anything not listed raises SessionStateError.
ALLOWED_TRANSITIONS: dict[CheckpointStatus, frozenset[CheckpointStatus]] = {
    CheckpointStatus.ACTIVE: frozenset(
        {
            CheckpointStatus.HISTORICAL,
            CheckpointStatus.COMMITTED,
            CheckpointStatus.ROLLED_BACK,
        }
    ),
    CheckpointStatus.HISTORICAL: frozenset({CheckpointStatus.ROLLED_BACK}),
    CheckpointStatus.COMMITTED: frozenset({CheckpointStatus.ROLLED_BACK}),
    CheckpointStatus.ROLLED_BACK: frozenset(),
}

# Statuses whose changes are live in the entity store and can be restored over.
# Active covers checkpoints left open by an interrupted process.
RESTORABLE_STATUSES: tuple[CheckpointStatus, ...] = (
    CheckpointStatus.ACTIVE,
    CheckpointStatus.HISTORICAL,
    CheckpointStatus.COMMITTED,
)

# Statuses shown in history listings
FINISHED_STATUSES: tuple[CheckpointStatus, ...] = (
    CheckpointStatus.HISTORICAL,
    CheckpointStatus.COMMITTED,
    CheckpointStatus.ROLLED_BACK,
)


def can_transition(current: CheckpointStatus, target: CheckpointStatus) -> bool:
    """
    Check whether a status transition is allowed.

    Args:
        current: Status the checkpoint is in.
        target: Status to move to.

    Returns:
        True if the transition is part of the lifecycle.
    """
    return target in ALLOWED_TRANSITIONS[current]


@dataclass
class Checkpoint:
    """
    A named, time-bounded grouping of mutations.

    Attributes:
        id: UUID hex identifier
        scope_id: Owning object/workflow id
        application_id: Optional application the checkpoint belongs to
        description: Free-text description
        user_command: Command that triggered the checkpoint
        source: LLM, MCP or API
        status: Lifecycle status
        tools_executed: Tool names invoked while active, in order
        created_at: ISO timestamp the session began
        finished_at: ISO timestamp of commit/rollback
        changes_count: Undo-log entries recorded at commit
        has_gaps: True once a capture was lost for this checkpoint
        capture_failures: Number of lost captures
    """

    id: str
    scope_id: int
    description: str
    source: CheckpointSource
    status: CheckpointStatus
    created_at: str
    application_id: int | None = None
    user_command: str | None = None
    tools_executed: list[str] = field(default_factory=list)
    finished_at: str | None = None
    changes_count: int = 0
    has_gaps: bool = False
    capture_failures: int = 0

    @property
    def is_active(self) -> bool:
        """Whether the checkpoint still accepts undo-log entries."""
        return self.status == CheckpointStatus.ACTIVE

    @property
    def started_at(self) -> str:
        """Alias of created_at."""
        return self.created_at

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to a JSON-friendly dictionary.

        Returns:
            Dictionary with enum values flattened to strings.
        """
        data = asdict(self)
        data["source"] = self.source.value
        data["status"] = self.status.value
        return data


@dataclass(frozen=True)
class SessionContext:
    """
    Explicit binding of an open session, handed to MutationCapture.

    Attributes:
        checkpoint_id: Checkpoint receiving undo-log entries
        scope_id: Owning object/workflow id
        application_id: Optional application scope
    """

    checkpoint_id: str
    scope_id: int
    application_id: int | None = None
