"""Checkpoint status transitions."""

import structlog

from ..models.checkpoint import Checkpoint, CheckpointStatus, can_transition
from ..observability.metrics import MetricsCollector
from ..persistence.checkpoint_store import CheckpointStore
from ..utils.exceptions import SessionStateError

logger = structlog.get_logger(__name__)


def transition(
    store: CheckpointStore,
    checkpoint: Checkpoint,
    target: CheckpointStatus,
    metrics: MetricsCollector,
    finished_at: str | None = None,
    changes_count: int | None = None,
) -> Checkpoint:
    """
    Move a checkpoint to a new status and persist it.

    Args:
        store: Checkpoint store
        checkpoint: Checkpoint to move (updated in place)
        target: New status
        metrics: Metrics collector
        finished_at: Completion timestamp to record
        changes_count: Entry count to record

    Returns:
        The updated checkpoint

    Raises:
        SessionStateError: If the lifecycle does not allow the move
    """
    current = checkpoint.status
    if not can_transition(current, target):
        raise SessionStateError(
            f"Cannot move checkpoint from {current.value} to {target.value}",
            checkpoint_id=checkpoint.id,
            current_status=current.value,
            target_status=target.value,
        )

    store.update_status(
        checkpoint.id, target, finished_at=finished_at, changes_count=changes_count
    )
    checkpoint.status = target
    if finished_at is not None:
        checkpoint.finished_at = finished_at
    if changes_count is not None:
        checkpoint.changes_count = changes_count

    metrics.count_transition(current.value, target.value)
    logger.info(
        "Checkpoint transition",
        checkpoint_id=checkpoint.id,
        from_status=current.value,
        to_status=target.value,
    )
    return checkpoint
