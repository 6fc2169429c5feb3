"""Checkpoint Session Manager - Open, commit and roll back checkpoint sessions.

Exactly one checkpoint is active per process at a time: the one bound to
the open session. It is the target of every undo-log entry captured while
it is open; callers hand its `SessionContext` to `MutationCapture`
explicitly. The manager's lock is held across every session change and
every captured tool call. The SQLite stores behind it belong to
the thread that opened them, so a manager is driven from that one thread.

Lifecycle:
---------
    begin -> ACTIVE --commit--> HISTORICAL --restore--> ROLLED_BACK
                    \\--rollback----------------------> ROLLED_BACK
                    \\--failed rollback--> HISTORICAL --restore--> ROLLED_BACK

Beginning while a session is open rolls the open one back first. Commit and
rollback without a session are logged and return False. A rollback that
fails part way closes the session and leaves its checkpoint historical, so
restoring to it finishes the revert.
"""

import threading

import structlog

from ..config import SessionConfig
from ..models.checkpoint import (
    FINISHED_STATUSES,
    Checkpoint,
    CheckpointSource,
    CheckpointStatus,
    SessionContext,
)
from ..models.results import RestoreResult
from ..observability.logger import add_context, clear_context
from ..observability.metrics import MetricsCollector, get_global_collector
from ..persistence.checkpoint_store import CheckpointStore
from ..persistence.undo_log import UndoLogStore
from ..utils.exceptions import NotFoundError, RestoreError
from ..utils.timestamps import utc_now
from .lifecycle import transition
from .restore import RestoreEngine
from .undo import UndoApplier

logger = structlog.get_logger(__name__)


class CheckpointSessionManager:
    """
    Owns the active checkpoint session.

    Features:
    - Single active session, guarded by a re-entrant lock
    - Validated status transitions
    - Rollback by replaying the session's undo log newest first
    - History listing, restore and deletion by scope
    """

    def __init__(
        self,
        checkpoint_store: CheckpointStore,
        undo_log: UndoLogStore,
        applier: UndoApplier,
        config: SessionConfig | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Initialize CheckpointSessionManager.

        Args:
            checkpoint_store: Checkpoint persistence
            undo_log: Undo log persistence
            applier: Applies undo-log entries to the entity store
            config: Session defaults
            metrics: Metrics collector (global collector when None)
        """
        self.checkpoint_store = checkpoint_store
        self.undo_log = undo_log
        self.applier = applier
        self.config = config or SessionConfig()
        self.metrics = metrics or get_global_collector()
        self.restore_engine = RestoreEngine(checkpoint_store, applier, self.metrics)

        self._lock = threading.RLock()
        self._active: Checkpoint | None = None

    @property
    def lock(self) -> threading.RLock:
        """Lock serializing session changes with captured tool calls."""
        return self._lock

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    def begin(
        self,
        scope_id: int,
        description: str | None = None,
        user_command: str | None = None,
        source: CheckpointSource | str | None = None,
        application_id: int | None = None,
    ) -> Checkpoint:
        """
        Open a new checkpoint session.

        Args:
            scope_id: Object/workflow the session's changes belong to
            description: Free-text description (configured default when None)
            user_command: Command that triggered the session
            source: LLM, MCP or API (configured default when None)
            application_id: Optional application scope

        Returns:
            The new active checkpoint

        Raises:
            RestoreError: If an open session had to be rolled back and that failed
        """
        with self._lock:
            if self._active is not None:
                logger.warning(
                    "Rolling back open session before starting a new one",
                    previous_checkpoint_id=self._active.id,
                    scope_id=scope_id,
                )
                self.metrics.count_session_warning("nested_begin")
                self.rollback()

            checkpoint = self.checkpoint_store.create(
                scope_id=scope_id,
                description=description or self.config.default_description,
                user_command=user_command,
                source=CheckpointSource(source or self.config.default_source),
                application_id=application_id,
            )
            self._active = checkpoint
            add_context(checkpoint_id=checkpoint.id, scope_id=scope_id)

            logger.info(
                "Checkpoint session started",
                checkpoint_id=checkpoint.id,
                scope_id=scope_id,
                source=checkpoint.source.value,
            )
            return checkpoint

    def commit(self) -> bool:
        """
        Commit the active session.

        Returns:
            True if a session was committed, False if none was open
        """
        with self._lock:
            checkpoint = self._active
            if checkpoint is None:
                logger.warning("No active checkpoint session to commit")
                self.metrics.count_session_warning("commit_without_session")
                return False

            changes = self.undo_log.count(checkpoint.id)
            transition(
                self.checkpoint_store,
                checkpoint,
                CheckpointStatus.HISTORICAL,
                self.metrics,
                finished_at=utc_now(),
                changes_count=changes,
            )
            self._end_session()

            logger.info("Checkpoint committed", checkpoint_id=checkpoint.id, changes=changes)
            return True

    def rollback(self) -> bool:
        """
        Revert every change of the active session and close it.

        Returns:
            True if a session was rolled back, False if none was open

        Raises:
            RestoreError: If an inverse fails; the session is closed and the
                checkpoint becomes historical with the applied entries marked,
                so restoring to it later finishes the revert
        """
        with self._lock:
            checkpoint = self._active
            if checkpoint is None:
                logger.warning("No active checkpoint session to roll back")
                self.metrics.count_session_warning("rollback_without_session")
                return False

            try:
                entries = self.applier.collect([checkpoint.id])
                applied = self.applier.replay(entries)
            except RestoreError as e:
                logger.error(
                    "Rollback failed part way",
                    checkpoint_id=checkpoint.id,
                    applied=len(e.applied),
                    pending=len(e.pending),
                )
                transition(
                    self.checkpoint_store,
                    checkpoint,
                    CheckpointStatus.HISTORICAL,
                    self.metrics,
                    finished_at=utc_now(),
                    changes_count=self.undo_log.count(checkpoint.id),
                )
                self._end_session()
                raise

            transition(
                self.checkpoint_store,
                checkpoint,
                CheckpointStatus.ROLLED_BACK,
                self.metrics,
                finished_at=utc_now(),
            )
            self._end_session()

            logger.info("Checkpoint rolled back", checkpoint_id=checkpoint.id, reverted=applied)
            return True

    def _end_session(self) -> None:
        self._active = None
        clear_context("checkpoint_id", "scope_id")

    # -------------------------------------------------------------------------
    # Session state
    # -------------------------------------------------------------------------

    def get_active_session(self) -> Checkpoint | None:
        """
        Current active checkpoint, as stored.

        Returns:
            The active checkpoint or None
        """
        with self._lock:
            if self._active is None:
                return None
            return self.checkpoint_store.get(self._active.id) or self._active

    @property
    def context(self) -> SessionContext | None:
        """Binding of the open session for MutationCapture, or None."""
        with self._lock:
            if self._active is None:
                return None
            return SessionContext(
                checkpoint_id=self._active.id,
                scope_id=self._active.scope_id,
                application_id=self._active.application_id,
            )

    def record_tool(self, tool_name: str, context: SessionContext | None = None) -> None:
        """
        Append a tool name to the session's tools_executed.

        Args:
            tool_name: Tool that ran
            context: Session the call ran in (the open session when None)
        """
        context = context or self.context
        if context is None:
            return
        self.checkpoint_store.append_tool(context.checkpoint_id, tool_name)
        with self._lock:
            if self._active is not None and self._active.id == context.checkpoint_id:
                self._active.tools_executed.append(tool_name)

    def record_capture_gap(self, context: SessionContext | None = None) -> None:
        """
        Flag the session's checkpoint as having lost a capture.

        Args:
            context: Session the capture belonged to (the open session when None)
        """
        context = context or self.context
        if context is None:
            return
        self.checkpoint_store.mark_gap(context.checkpoint_id)
        with self._lock:
            if self._active is not None and self._active.id == context.checkpoint_id:
                self._active.has_gaps = True
                self._active.capture_failures += 1

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def get_active_checkpoints(
        self, scope_id: int | None = None, application_id: int | None = None
    ) -> list[Checkpoint]:
        """Checkpoints still in status active, newest first."""
        return self.checkpoint_store.list_by_scope(
            scope_id, application_id, statuses=[CheckpointStatus.ACTIVE]
        )

    def get_checkpoint_history(
        self,
        scope_id: int | None = None,
        application_id: int | None = None,
        limit: int | None = None,
    ) -> list[Checkpoint]:
        """
        Finished checkpoints, newest first.

        Args:
            scope_id: Restrict to an object/workflow
            application_id: Restrict to an application
            limit: Maximum number returned (configured limit when None)

        Returns:
            Committed and rolled-back checkpoints
        """
        return self.checkpoint_store.list_by_scope(
            scope_id,
            application_id,
            statuses=FINISHED_STATUSES,
            limit=limit or self.config.history_limit,
        )

    def restore_to_checkpoint(self, checkpoint_id: str) -> RestoreResult:
        """
        Restore the checkpoint's scope to the state just before it.

        An open session is rolled back first.

        Args:
            checkpoint_id: Checkpoint to restore to

        Returns:
            RestoreResult

        Raises:
            NotFoundError: If the checkpoint does not exist
            RestoreError: If replay fails part way
        """
        with self._lock:
            if self._active is not None:
                logger.warning(
                    "Rolling back open session before restore",
                    checkpoint_id=self._active.id,
                    target_checkpoint_id=checkpoint_id,
                )
                self.rollback()
            return self.restore_engine.restore_to_checkpoint(checkpoint_id)

    def delete_checkpoint(self, checkpoint_id: str) -> None:
        """
        Delete a checkpoint and its undo-log entries. Entity rows are untouched.

        Args:
            checkpoint_id: Checkpoint to delete

        Raises:
            NotFoundError: If the checkpoint does not exist
        """
        with self._lock:
            if self.checkpoint_store.get(checkpoint_id) is None:
                raise NotFoundError("Checkpoint", checkpoint_id)

            if self._active is not None and self._active.id == checkpoint_id:
                logger.warning(
                    "Deleting the open session's checkpoint", checkpoint_id=checkpoint_id
                )
                self._end_session()

            self.checkpoint_store.delete_cascade([checkpoint_id])
            logger.info("Checkpoint deleted", checkpoint_id=checkpoint_id)

    def delete_all_checkpoints(
        self, scope_id: int | None = None, application_id: int | None = None
    ) -> int:
        """
        Delete every checkpoint of a scope (all checkpoints when unscoped).

        Args:
            scope_id: Object/workflow to clear
            application_id: Application to clear

        Returns:
            Number of checkpoints deleted
        """
        with self._lock:
            active = self._active
            if active is not None and (
                (scope_id is None or active.scope_id == scope_id)
                and (application_id is None or active.application_id == application_id)
            ):
                logger.warning("Deleting the open session's checkpoint", checkpoint_id=active.id)
                self._end_session()

            deleted = self.checkpoint_store.delete_by_scope(scope_id, application_id)
            logger.info(
                "Checkpoints deleted",
                scope_id=scope_id,
                application_id=application_id,
                deleted=deleted,
            )
            return deleted
