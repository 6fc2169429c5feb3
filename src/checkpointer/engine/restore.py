"""Restore Engine - Return a scope to its state before a checkpoint.

Restoring to checkpoint X reverts X and every later committed checkpoint of
X's scope: their not-yet-applied undo-log entries are replayed newest first
across all of them, then each is marked rolled back. Checkpoints still active
but bound to no session (left by an interrupted process) are included; the
caller rolls back its own open session first. Already rolled-back
checkpoints are left alone.

A restore that fails part way raises `RestoreError`; the entries applied so
far stay marked, so running the same restore again picks up where it
stopped.
"""

import structlog

from ..models.checkpoint import RESTORABLE_STATUSES, CheckpointStatus
from ..models.results import RestoreResult
from ..observability.metrics import MetricsCollector
from ..persistence.checkpoint_store import CheckpointStore
from ..utils.exceptions import NotFoundError
from ..utils.timestamps import utc_now
from .lifecycle import transition
from .undo import UndoApplier

logger = structlog.get_logger(__name__)


class RestoreEngine:
    """Point-in-time restore over committed checkpoints."""

    def __init__(
        self,
        checkpoint_store: CheckpointStore,
        applier: UndoApplier,
        metrics: MetricsCollector,
    ) -> None:
        """
        Initialize RestoreEngine.

        Args:
            checkpoint_store: Checkpoint persistence
            applier: Applies undo-log entries
            metrics: Metrics collector
        """
        self.checkpoint_store = checkpoint_store
        self.applier = applier
        self.metrics = metrics

    def restore_to_checkpoint(self, checkpoint_id: str) -> RestoreResult:
        """
        Revert the target checkpoint and everything after it in its scope.

        Args:
            checkpoint_id: Checkpoint to restore to

        Returns:
            RestoreResult listing the rolled-back checkpoints

        Raises:
            NotFoundError: If the checkpoint does not exist
            RestoreError: If replay fails part way
        """
        target = self.checkpoint_store.get(checkpoint_id)
        if target is None:
            raise NotFoundError("Checkpoint", checkpoint_id)

        selected = self.checkpoint_store.list_from(target, RESTORABLE_STATUSES)
        selected_ids = [cp.id for cp in selected]

        logger.info(
            "Restoring to checkpoint",
            checkpoint_id=checkpoint_id,
            scope_id=target.scope_id,
            checkpoints=len(selected_ids),
        )

        entries = self.applier.collect(selected_ids)
        applied = self.applier.replay(entries)

        finished_at = utc_now()
        for checkpoint in selected:
            transition(
                self.checkpoint_store,
                checkpoint,
                CheckpointStatus.ROLLED_BACK,
                self.metrics,
                finished_at=finished_at,
            )

        logger.info(
            "Restore complete",
            checkpoint_id=checkpoint_id,
            rolled_back=len(selected_ids),
            reverted=applied,
        )
        return RestoreResult(
            target_checkpoint_id=checkpoint_id,
            rolled_back_checkpoint_ids=selected_ids,
            applied_entries=applied,
        )
