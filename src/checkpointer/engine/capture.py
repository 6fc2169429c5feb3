"""Mutation Capture - Record undo information around tool calls.

Wraps the mutating rule tools so that, while a checkpoint session is open,
every row they write gets an undo-log entry:

Tool kind           Before the call               After the call
------------------  ----------------------------  ------------------------------
create              nothing                       INSERT entry for returned id
save (upsert)       decide insert vs update,      INSERT entry for returned id,
                    snapshot the row on update    or UPDATE entry with snapshot
delete              snapshot the row              DELETE entry with snapshot

Insert vs update is decided per row: an explicit `id` wins (the tools always
update a row they are given the id of), then an explicit `intent` parameter,
then a lookup on the row's natural key (name plus owner id). The tools report
`created` per row, so a lookup that raced with a concurrent insert is
detected and reported instead of leaving an insert entry that would delete
someone else's row. A batch row repeating the natural key of a row inserted
earlier in the same call needs no entry of its own.

Capturing never blocks the mutation. Every row yields a `CaptureResult`;
rows whose undo information could not be recorded come back LOST and flag
the checkpoint with `has_gaps`. When a tool raises part way through a batch,
the rows it already wrote are found by re-reading each planned row and are
recorded before the error propagates, so rolling the session back still
removes them.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from ..constants import (
    APPLICATIONS_TABLE,
    DECISION_TABLES_TABLE,
    FIELDS_TABLE,
    NATURAL_KEYS,
    OBJECTS_TABLE,
    THEMES_TABLE,
    VIEWS_TABLE,
)
from ..models.checkpoint import SessionContext
from ..models.results import CaptureOutcome, CaptureResult, ToolCallResult
from ..models.undo import UndoOperation
from ..observability.metrics import MetricsCollector, get_global_collector
from ..persistence.undo_log import UndoLogStore
from ..store.entity_store import EntityStore, Row
from ..tools.catalog import Tool
from ..utils.exceptions import CaptureError

if TYPE_CHECKING:
    from .session import CheckpointSessionManager

logger = structlog.get_logger(__name__)


class CaptureKind(str, Enum):
    """How a tool writes its rows."""

    CREATE = "create"
    SAVE = "save"
    DELETE = "delete"


@dataclass(frozen=True)
class CaptureSpec:
    """
    Capture rules for one mutating tool.

    Attributes:
        table: Entity table the tool writes
        kind: Create, save (upsert) or delete
        batch_param: Parameter holding a list of rows (also the result key)
        linked_param: Parameter listing ids of rows the tool also updates
        linked_table: Table of the linked rows
    """

    table: str
    kind: CaptureKind
    batch_param: str | None = None
    linked_param: str | None = None
    linked_table: str | None = None


CAPTURE_SPECS: dict[str, CaptureSpec] = {
    "createObject": CaptureSpec(OBJECTS_TABLE, CaptureKind.CREATE),
    "saveObject": CaptureSpec(OBJECTS_TABLE, CaptureKind.SAVE),
    "deleteObject": CaptureSpec(OBJECTS_TABLE, CaptureKind.DELETE),
    "saveFields": CaptureSpec(FIELDS_TABLE, CaptureKind.SAVE, batch_param="fields"),
    "deleteField": CaptureSpec(FIELDS_TABLE, CaptureKind.DELETE),
    "saveView": CaptureSpec(VIEWS_TABLE, CaptureKind.SAVE),
    "deleteView": CaptureSpec(VIEWS_TABLE, CaptureKind.DELETE),
    "saveApplication": CaptureSpec(
        APPLICATIONS_TABLE,
        CaptureKind.SAVE,
        linked_param="workflowIds",
        linked_table=OBJECTS_TABLE,
    ),
    "deleteApplication": CaptureSpec(APPLICATIONS_TABLE, CaptureKind.DELETE),
    "saveTheme": CaptureSpec(THEMES_TABLE, CaptureKind.SAVE),
    "deleteTheme": CaptureSpec(THEMES_TABLE, CaptureKind.DELETE),
    "saveDecisionTable": CaptureSpec(DECISION_TABLES_TABLE, CaptureKind.SAVE),
    "deleteDecisionTable": CaptureSpec(DECISION_TABLES_TABLE, CaptureKind.DELETE),
}


@dataclass
class PlannedRow:
    """
    What capture decided about one row before the tool ran.

    Attributes:
        table_name: Entity table
        operation: Expected operation
        row_id: Row id when known up front
        snapshot: Row before the mutation (updates and deletes)
        lost_reason: Set when the snapshot could not be read
        natural_key: Lookup criteria of an inserted row
        key_checked: The natural key was looked up and free before the call
        repeats_insert: Row repeats an insert planned earlier in the batch
    """

    table_name: str
    operation: UndoOperation
    row_id: int | None = None
    snapshot: Row | None = None
    lost_reason: str | None = None
    natural_key: dict[str, Any] | None = None
    key_checked: bool = False
    repeats_insert: bool = False


class MutationCapture:
    """
    Record undo-log entries for mutating tool calls.

    Features:
    - Per-row insert/update decision with lookup race detection
    - Batch tools captured one entry per row, in input order
    - Lost captures reported, never raised
    """

    def __init__(
        self,
        entity_store: EntityStore,
        undo_log: UndoLogStore,
        recorder: "CheckpointSessionManager",
        metrics: MetricsCollector | None = None,
        lookup_natural_keys: bool = True,
    ) -> None:
        """
        Initialize MutationCapture.

        Args:
            entity_store: Store the tools write to (read for snapshots)
            undo_log: Undo log to append entries to
            recorder: Session manager receiving tool names and capture gaps
            metrics: Metrics collector (global collector when None)
            lookup_natural_keys: Decide insert vs update for id-less rows by
                looking them up by name and owner
        """
        self.entity_store = entity_store
        self.undo_log = undo_log
        self.recorder = recorder
        self.metrics = metrics or get_global_collector()
        self.lookup_natural_keys = lookup_natural_keys

    def run(
        self,
        tool: Tool,
        params: dict[str, Any] | None,
        context: SessionContext | None,
    ) -> ToolCallResult:
        """
        Run a tool, capturing undo information when a session is open.

        Args:
            tool: Tool to run
            params: Tool parameters
            context: Open session, or None to run uncaptured

        Returns:
            ToolCallResult with the tool's result and one capture per row

        Raises:
            Whatever the tool raises, after recording the rows it wrote
        """
        params = params or {}
        spec = CAPTURE_SPECS.get(tool.name)

        if context is None or not tool.mutating or spec is None:
            return ToolCallResult(tool.name, tool.execute(params))

        items = self._items(spec, params)
        plans = self._plan_batch(spec, items)
        linked = self._plan_linked(spec, params)

        try:
            result = tool.execute(params)
        except Exception as e:
            captures = [self._reconcile(plan, context) for plan in [*plans, *linked]]
            self.recorder.record_tool(tool.name, context)
            logger.warning(
                "Tool failed, recorded the rows it wrote",
                tool=tool.name,
                error=str(e),
                captured=sum(1 for c in captures if c.outcome == CaptureOutcome.CAPTURED),
                lost=sum(1 for c in captures if c.outcome == CaptureOutcome.LOST),
            )
            raise

        captures = [
            self._record(plan, row_result, context)
            for plan, row_result in zip(plans, self._row_results(spec, result, len(items)))
        ]
        captures.extend(self._record(plan, None, context) for plan in linked)

        self.recorder.record_tool(tool.name, context)

        logger.debug(
            "Tool call captured",
            tool=tool.name,
            captured=sum(1 for c in captures if c.outcome == CaptureOutcome.CAPTURED),
            lost=sum(1 for c in captures if c.outcome == CaptureOutcome.LOST),
        )
        return ToolCallResult(tool.name, result, captures)

    # -------------------------------------------------------------------------
    # Planning
    # -------------------------------------------------------------------------

    def _items(self, spec: CaptureSpec, params: dict[str, Any]) -> list[dict[str, Any]]:
        if spec.batch_param is None:
            return [params]
        rows = params.get(spec.batch_param)
        if not isinstance(rows, list):
            return []
        return [row if isinstance(row, dict) else {} for row in rows]

    def _plan_batch(
        self, spec: CaptureSpec, items: list[dict[str, Any]]
    ) -> list[PlannedRow]:
        """Plan rows in input order; later rows see the inserts planned before them."""
        plans: list[PlannedRow] = []
        inserted: list[dict[str, Any]] = []
        for item in items:
            plan = self._plan(spec, item)
            key = plan.natural_key
            if plan.operation == UndoOperation.INSERT and key is not None:
                if key in inserted:
                    plan.repeats_insert = True
                else:
                    inserted.append(key)
            plans.append(plan)
        return plans

    def _plan(self, spec: CaptureSpec, item: dict[str, Any]) -> PlannedRow:
        """Decide the operation for one row and snapshot it if needed."""
        table = spec.table
        row_id = _as_int(item.get("id"))

        if spec.kind == CaptureKind.CREATE:
            return PlannedRow(table, UndoOperation.INSERT, natural_key=_natural_key(table, item))

        if spec.kind == CaptureKind.DELETE:
            return self._snapshot_plan(table, UndoOperation.DELETE, row_id)

        # The tools update the row of a given id, whatever the intent says
        if row_id is not None:
            return self._snapshot_plan(table, UndoOperation.UPDATE, row_id)

        key = _natural_key(table, item)
        intent = item.get("intent")
        if intent == "insert" or (intent != "update" and not self.lookup_natural_keys):
            return PlannedRow(table, UndoOperation.INSERT, natural_key=key)

        try:
            existing = self._lookup(table, item)
        except Exception as e:
            return PlannedRow(
                table, UndoOperation.UPDATE, lost_reason=f"natural-key lookup failed: {e}"
            )

        if existing is None:
            return PlannedRow(table, UndoOperation.INSERT, natural_key=key, key_checked=True)
        return PlannedRow(table, UndoOperation.UPDATE, existing["id"], existing)

    def _plan_linked(self, spec: CaptureSpec, params: dict[str, Any]) -> list[PlannedRow]:
        if spec.linked_param is None or spec.linked_table is None:
            return []
        ids = params.get(spec.linked_param) or []
        if not isinstance(ids, list):
            return []
        return [
            self._snapshot_plan(spec.linked_table, UndoOperation.UPDATE, _as_int(row_id))
            for row_id in ids
        ]

    def _snapshot_plan(
        self, table: str, operation: UndoOperation, row_id: int | None
    ) -> PlannedRow:
        plan = PlannedRow(table, operation, row_id)
        if row_id is None:
            return plan
        try:
            plan.snapshot = self.entity_store.get(table, row_id)
        except Exception as e:
            plan.lost_reason = f"snapshot read failed: {e}"
        return plan

    def _lookup(self, table: str, item: dict[str, Any]) -> Row | None:
        criteria = _natural_key(table, item)
        if criteria is None:
            return None
        return self.entity_store.find_one(table, **criteria)

    def _row_results(
        self, spec: CaptureSpec, result: Any, count: int
    ) -> list[dict[str, Any] | None]:
        """Per-row results aligned with the input rows."""
        if spec.batch_param is None:
            return [result if isinstance(result, dict) else None]

        rows: list[Any] = []
        if isinstance(result, dict):
            rows = result.get(spec.batch_param) or [{"id": i} for i in result.get("ids") or []]
        aligned = [row if isinstance(row, dict) else None for row in rows[:count]]
        return aligned + [None] * (count - len(aligned))

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def _record(
        self,
        plan: PlannedRow,
        row_result: dict[str, Any] | None,
        context: SessionContext,
    ) -> CaptureResult:
        """Turn a plan plus the tool's per-row result into an undo-log entry."""
        table = plan.table_name
        returned_id = _as_int(row_result.get("id")) if row_result else None
        created = row_result.get("created") if row_result else None

        if plan.lost_reason:
            return self._lost(context, plan, plan.row_id, plan.lost_reason)

        if plan.repeats_insert:
            return self._skipped(table, plan, "row inserted earlier in the same call")

        if plan.operation == UndoOperation.INSERT:
            if created is False:
                return self._lost(
                    context, plan, returned_id, "row already existed when written, no snapshot"
                )
            if returned_id is None:
                return self._lost(context, plan, None, "tool returned no id for inserted row")
            return self._append(context, UndoOperation.INSERT, table, returned_id, None)

        if plan.operation == UndoOperation.UPDATE and created is True and returned_id is not None:
            # Row vanished between snapshot and write; the tool inserted it
            return self._append(context, UndoOperation.INSERT, table, returned_id, None)

        if plan.snapshot is None or plan.row_id is None:
            return self._skipped(table, plan, "row did not exist before the call")

        return self._append(context, plan.operation, table, plan.row_id, plan.snapshot)

    def _reconcile(self, plan: PlannedRow, context: SessionContext) -> CaptureResult:
        """Record one planned row of a tool call that raised, if the row was written."""
        table = plan.table_name

        if plan.lost_reason:
            return self._lost(context, plan, plan.row_id, plan.lost_reason)
        if plan.repeats_insert:
            return self._skipped(table, plan, "row inserted earlier in the same call")

        try:
            if plan.operation == UndoOperation.INSERT:
                if plan.natural_key is None:
                    return self._skipped(table, plan, "rows without a name are never inserted")
                current = self.entity_store.find_one(table, **plan.natural_key)
            elif plan.snapshot is None or plan.row_id is None:
                return self._skipped(table, plan, "row did not exist before the call")
            else:
                current = self.entity_store.get(table, plan.row_id)
        except Exception as e:
            return self._lost(context, plan, plan.row_id, f"re-read after tool failure: {e}")

        if plan.operation == UndoOperation.INSERT:
            if current is None:
                return self._skipped(table, plan, "tool failed before writing the row")
            if not plan.key_checked:
                return self._lost(
                    context, plan, current["id"], "tool failed, row may have existed before"
                )
            return self._append(context, UndoOperation.INSERT, table, current["id"], None)

        if current == plan.snapshot:
            return self._skipped(table, plan, "tool failed before writing the row")
        return self._append(context, plan.operation, table, plan.row_id, plan.snapshot)

    def _append(
        self,
        context: SessionContext,
        operation: UndoOperation,
        table: str,
        row_id: int,
        snapshot: Row | None,
    ) -> CaptureResult:
        try:
            entry = self.undo_log.append(
                checkpoint_id=context.checkpoint_id,
                scope_id=context.scope_id,
                operation=operation,
                table_name=table,
                primary_key={"id": row_id},
                previous_data=snapshot,
            )
        except CaptureError as e:
            plan = PlannedRow(table, operation, row_id)
            return self._lost(context, plan, row_id, str(e))

        self.metrics.count_capture(CaptureOutcome.CAPTURED.value, table)
        return CaptureResult(
            CaptureOutcome.CAPTURED,
            table,
            row_id=row_id,
            operation=operation.value,
            entry_id=entry.id,
        )

    def _skipped(self, table: str, plan: PlannedRow, reason: str) -> CaptureResult:
        logger.debug("Capture skipped", table=table, row_id=plan.row_id, reason=reason)
        self.metrics.count_capture(CaptureOutcome.SKIPPED.value, table)
        return CaptureResult(
            CaptureOutcome.SKIPPED,
            table,
            row_id=plan.row_id,
            operation=plan.operation.value,
            reason=reason,
        )

    def _lost(
        self,
        context: SessionContext,
        plan: PlannedRow,
        row_id: int | None,
        reason: str,
    ) -> CaptureResult:
        logger.warning(
            "Capture lost",
            checkpoint_id=context.checkpoint_id,
            table=plan.table_name,
            row_id=row_id,
            operation=plan.operation.value,
            reason=reason,
        )
        self.metrics.count_capture(CaptureOutcome.LOST.value, plan.table_name)
        self.recorder.record_capture_gap(context)
        return CaptureResult(
            CaptureOutcome.LOST,
            plan.table_name,
            row_id=row_id,
            operation=plan.operation.value,
            reason=reason,
        )


def _natural_key(table: str, item: dict[str, Any]) -> dict[str, Any] | None:
    """Lookup criteria for a row by name and owner; None without a name."""
    criteria = {column: item.get(column) for column in NATURAL_KEYS[table]}
    if criteria.get("name") is None:
        return None
    return criteria


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class CapturedTool:
    """
    A tool bound to capture and a session lookup.

    Attributes:
        tool: Underlying tool
        capture: Capture layer
        context_provider: Returns the open session at call time, if any
    """

    tool: Tool
    capture: MutationCapture
    context_provider: Callable[[], SessionContext | None]

    @property
    def name(self) -> str:
        return self.tool.name

    @property
    def mutating(self) -> bool:
        return self.tool.mutating

    def execute(self, params: dict[str, Any] | None = None) -> ToolCallResult:
        """Run the tool inside whatever session is open right now."""
        # Session changes wait until the call and its undo entries are done
        with self.capture.recorder.lock:
            return self.capture.run(self.tool, params, self.context_provider())


def wrap_tools(
    tools: dict[str, Tool],
    capture: MutationCapture,
    context_provider: Callable[[], SessionContext | None],
) -> dict[str, CapturedTool]:
    """
    Bind every tool of a catalog to capture.

    Args:
        tools: Tool catalog
        capture: Capture layer
        context_provider: Session lookup evaluated per call

    Returns:
        Wrapped tools keyed by name
    """
    return {name: CapturedTool(tool, capture, context_provider) for name, tool in tools.items()}
