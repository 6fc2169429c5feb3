"""Checkpoint Service - Command surface over the checkpoint engine.

Returns plain dictionaries shaped for JSON responses. Session commands that
can fail soft (commit, rollback, restore, delete) report
`{"success": bool, "message": str}`; unknown ids are reported the same way
rather than raised.
"""

import json
from collections import Counter
from pathlib import Path
from types import TracebackType
from typing import Any

import structlog

from .config import EngineConfig
from .constants import MCP_COMMAND_EXCERPT
from .engine.capture import CapturedTool, MutationCapture, wrap_tools
from .engine.history import HistoryProjector
from .engine.session import CheckpointSessionManager
from .engine.undo import UndoApplier
from .models.checkpoint import CheckpointSource
from .models.results import ToolCallResult
from .observability.metrics import MetricsCollector
from .persistence.checkpoint_store import CheckpointStore
from .persistence.undo_log import UndoLogStore
from .store.entity_store import EntityStore, SQLiteEntityStore
from .tools.catalog import create_rule_tools
from .utils.exceptions import NotFoundError, RestoreError, UnknownToolError

logger = structlog.get_logger(__name__)


class CheckpointService:
    """
    Wire stores, capture, session manager and projector together.

    Usage:
        with CheckpointService.from_config(config) as service:
            service.begin(scope_id=42, description="Add email field")
            service.tools["saveFields"].execute({"fields": [...]})
            service.commit()
    """

    def __init__(
        self,
        entity_store: EntityStore,
        checkpoint_store: CheckpointStore,
        undo_log: UndoLogStore,
        config: EngineConfig | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Initialize CheckpointService.

        Args:
            entity_store: Store holding the rule rows
            checkpoint_store: Checkpoint persistence
            undo_log: Undo log persistence (same database as checkpoint_store)
            config: Engine configuration
            metrics: Metrics collector
        """
        self.config = config or EngineConfig()
        self.metrics = metrics or MetricsCollector(
            self.config.metrics.backend if self.config.metrics.enabled else "none"
        )
        self.entity_store = entity_store
        self.checkpoint_store = checkpoint_store
        self.undo_log = undo_log

        self.applier = UndoApplier(entity_store, undo_log, self.metrics)
        self.manager = CheckpointSessionManager(
            checkpoint_store, undo_log, self.applier, self.config.session, self.metrics
        )
        self.capture = MutationCapture(
            entity_store,
            undo_log,
            self.manager,
            self.metrics,
            lookup_natural_keys=self.config.capture.lookup_natural_keys,
        )
        self.projector = HistoryProjector(
            checkpoint_store, undo_log, entity_store, self.config.session.history_limit
        )
        self.tools: dict[str, CapturedTool] = wrap_tools(
            create_rule_tools(entity_store), self.capture, lambda: self.manager.context
        )

    @classmethod
    def from_config(
        cls, config: EngineConfig, entity_store: EntityStore | None = None
    ) -> "CheckpointService":
        """
        Open stores at the configured paths.

        Args:
            config: Engine configuration
            entity_store: Rule store to use instead of the configured SQLite file

        Returns:
            CheckpointService instance
        """
        db_path = Path(config.storage.db_path)
        return cls(
            entity_store=entity_store or SQLiteEntityStore(config.storage.entity_db_path),
            checkpoint_store=CheckpointStore(db_path),
            undo_log=UndoLogStore(db_path),
            config=config,
        )

    # -------------------------------------------------------------------------
    # Session commands
    # -------------------------------------------------------------------------

    def begin(
        self,
        scope_id: int,
        description: str | None = None,
        user_command: str | None = None,
        source: CheckpointSource | str | None = None,
        application_id: int | None = None,
    ) -> dict[str, Any]:
        """
        Open a checkpoint session.

        Returns:
            {"checkpoint_id", "description", "started_at"}
        """
        checkpoint = self.manager.begin(
            scope_id,
            description=description,
            user_command=user_command,
            source=source,
            application_id=application_id,
        )
        return {
            "checkpoint_id": checkpoint.id,
            "description": checkpoint.description,
            "started_at": checkpoint.started_at,
        }

    def commit(self) -> dict[str, Any]:
        """Commit the open session."""
        if self.manager.commit():
            return {"success": True, "message": "Checkpoint committed successfully"}
        return {"success": False, "message": "No active checkpoint session to commit"}

    def rollback(self) -> dict[str, Any]:
        """Roll back the open session."""
        try:
            rolled_back = self.manager.rollback()
        except RestoreError as e:
            return {
                "success": False,
                "message": f"Rollback failed: {e}",
                "applied": len(e.applied),
                "pending": len(e.pending),
            }
        if rolled_back:
            return {"success": True, "message": "Checkpoint rolled back successfully"}
        return {"success": False, "message": "No active checkpoint session to roll back"}

    def restore(self, checkpoint_id: str) -> dict[str, Any]:
        """Restore a scope to the state before a checkpoint."""
        try:
            result = self.manager.restore_to_checkpoint(checkpoint_id)
        except NotFoundError as e:
            return {"success": False, "message": str(e)}
        except RestoreError as e:
            return {
                "success": False,
                "message": f"Restore failed: {e}",
                "applied": len(e.applied),
                "pending": len(e.pending),
            }
        return {
            "success": True,
            "message": f"Restored to checkpoint {checkpoint_id}",
            "rolled_back_checkpoints": result.rolled_back_checkpoint_ids,
            "applied_entries": result.applied_entries,
        }

    def delete(self, checkpoint_id: str) -> dict[str, Any]:
        """Delete a checkpoint and its undo-log entries."""
        try:
            self.manager.delete_checkpoint(checkpoint_id)
        except NotFoundError as e:
            return {"success": False, "message": str(e)}
        return {"success": True, "message": "Checkpoint deleted successfully"}

    def delete_all(
        self, scope_id: int | None = None, application_id: int | None = None
    ) -> dict[str, Any]:
        """Delete every checkpoint of a scope."""
        deleted = self.manager.delete_all_checkpoints(scope_id, application_id)
        return {"success": True, "message": f"Deleted {deleted} checkpoint(s)", "deleted": deleted}

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_status(
        self, scope_id: int | None = None, application_id: int | None = None
    ) -> dict[str, Any]:
        """
        Active session and active checkpoints of a scope.

        Returns:
            {"active_session", "active_checkpoints", "summary": {"total", "by_source"}}
        """
        session = self.manager.get_active_session()
        active = self.manager.get_active_checkpoints(scope_id, application_id)
        by_source = Counter(cp.source.value for cp in active)
        return {
            "active_session": session.to_dict() if session else None,
            "active_checkpoints": [cp.to_dict() for cp in active],
            "summary": {
                "total": len(active),
                "by_source": {s.value: by_source.get(s.value, 0) for s in CheckpointSource},
            },
        }

    def get_history(
        self,
        scope_id: int | None = None,
        application_id: int | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Finished checkpoints with their updated rules, newest first."""
        return [
            history.to_dict()
            for history in self.projector.get_history_with_changes(scope_id, application_id, limit)
        ]

    def get_checkout(
        self, scope_id: int | None = None, application_id: int | None = None
    ) -> dict[str, Any]:
        """De-duplicated rule changes grouped by object and category."""
        return self.projector.get_checkout(scope_id, application_id).to_dict()

    def get_rule(self, rule_id: str, table_name: str) -> dict[str, Any]:
        """Current row of a rule change id."""
        return self.projector.get_rule(rule_id, table_name)

    # -------------------------------------------------------------------------
    # Tools
    # -------------------------------------------------------------------------

    def run_tool(
        self,
        name: str,
        params: dict[str, Any] | None = None,
        scope_id: int | None = None,
        application_id: int | None = None,
        source: CheckpointSource | str = CheckpointSource.MCP,
    ) -> ToolCallResult:
        """
        Run one tool, in its own checkpoint unless a session is already open.

        A mutating tool run outside a session gets a checkpoint described
        "MCP Tool: <name>" that is committed when the tool succeeds and
        rolled back when it raises.

        Args:
            name: Tool name
            params: Tool parameters
            scope_id: Scope for the checkpoint (the params' objectid when None)
            application_id: Application scope
            source: Source recorded on the checkpoint

        Returns:
            ToolCallResult

        Raises:
            UnknownToolError: If the tool is not in the catalog
            ToolError: If the tool rejects its parameters
        """
        tool = self.tools.get(name)
        if tool is None:
            raise UnknownToolError(name)

        params = params or {}
        if not tool.mutating or self.manager.context is not None:
            return tool.execute(params)

        scope = scope_id if scope_id is not None else _scope_from_params(params)
        args = json.dumps(params, default=str)[:MCP_COMMAND_EXCERPT]
        self.manager.begin(
            scope,
            description=f"MCP Tool: {name}",
            user_command=f"MCP {name}({args})",
            source=source,
            application_id=application_id,
        )
        try:
            result = tool.execute(params)
        except Exception:
            logger.warning("Tool failed, rolling back its checkpoint", tool=name)
            self.manager.rollback()
            raise

        self.manager.commit()
        return result

    # -------------------------------------------------------------------------
    # Resources
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close all stores."""
        self.undo_log.close()
        self.checkpoint_store.close()
        close = getattr(self.entity_store, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> "CheckpointService":
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Context manager exit."""
        self.close()


def _scope_from_params(params: dict[str, Any]) -> int:
    """Best scope guess for a tool call: its objectid, else its id, else 0."""
    for key in ("objectid", "id"):
        value = params.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    fields = params.get("fields")
    if isinstance(fields, list) and fields and isinstance(fields[0], dict):
        value = fields[0].get("objectid")
        if isinstance(value, int):
            return value
    return 0
