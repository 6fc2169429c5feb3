"""History Projector - Human-readable views over checkpoints and their changes.

Two projections:

- history: each finished checkpoint with the rules it touched
  (`{name, type, operation}`), newest entry first
- checkout: every rule touched across a scope's checkpoints, de-duplicated
  by `(table, id)` keeping the most recent touch, grouped by owning object
  and category

Names are resolved from the current rows for inserts and updates and from
the stored snapshot for deletes. Entries already reverted by a rollback or
restore are left out, as are entries whose row can no longer be resolved.

Lookups are batched: one undo-log query for all checkpoints, one entity
query per table, and one more for owning-object names.
"""

from collections import defaultdict
from collections.abc import Sequence
from typing import Any

import structlog

from ..constants import (
    APPLICATIONS_TABLE,
    CATEGORY_NAMES,
    DEFAULT_HISTORY_LIMIT,
    ENTITY_TABLES,
    OBJECT_CATEGORY_ORDER,
    OBJECTS_TABLE,
    OWNER_COLUMNS,
    TABLE_CATEGORIES,
    TABLE_RULE_TYPES,
    THEMES_TABLE,
)
from ..models.checkpoint import FINISHED_STATUSES, Checkpoint
from ..models.results import (
    CategoryGroup,
    CheckoutSummary,
    CheckpointHistory,
    ObjectGroup,
    RuleChange,
    UpdatedRule,
)
from ..models.undo import UndoLogEntry, UndoOperation
from ..persistence.checkpoint_store import CheckpointStore
from ..persistence.undo_log import UndoLogStore
from ..store.entity_store import EntityStore, Row
from ..utils.exceptions import NotFoundError

logger = structlog.get_logger(__name__)


def parse_rule_id(rule_id: str) -> int:
    """
    Extract the row id from a rule change id.

    Args:
        rule_id: "<checkpoint_id>-<table>-<row_id>"

    Returns:
        The row id

    Raises:
        ValueError: If the id does not end in an integer
    """
    _, sep, tail = rule_id.rpartition("-")
    if not sep or not tail.isdigit():
        raise ValueError(f"Malformed rule id: {rule_id!r}")
    return int(tail)


class HistoryProjector:
    """
    Build history and checkout views.

    Features:
    - Batched name resolution per table
    - Dedup by (table, row id), most recent checkpoint wins
    - Deterministic ordering: objects by name, rules newest first
    """

    def __init__(
        self,
        checkpoint_store: CheckpointStore,
        undo_log: UndoLogStore,
        entity_store: EntityStore,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        """
        Initialize HistoryProjector.

        Args:
            checkpoint_store: Checkpoint persistence
            undo_log: Undo log persistence
            entity_store: Store holding the current rule rows
            history_limit: Maximum checkpoints considered
        """
        self.checkpoint_store = checkpoint_store
        self.undo_log = undo_log
        self.entity_store = entity_store
        self.history_limit = history_limit

    def get_history_with_changes(
        self,
        scope_id: int | None = None,
        application_id: int | None = None,
        limit: int | None = None,
    ) -> list[CheckpointHistory]:
        """
        Finished checkpoints with the rules each one touched.

        Args:
            scope_id: Restrict to an object/workflow
            application_id: Restrict to an application
            limit: Maximum checkpoints (configured limit when None)

        Returns:
            Checkpoint histories, newest first
        """
        checkpoints = self._checkpoints(scope_id, application_id, limit)
        by_checkpoint = self._entries_by_checkpoint(checkpoints)
        current = self._current_rows(by_checkpoint.values())

        histories = []
        for checkpoint in checkpoints:
            rules = []
            for entry in by_checkpoint.get(checkpoint.id, []):
                row = self._resolve(entry, current)
                if row is None or not row.get("name"):
                    continue
                rules.append(
                    UpdatedRule(
                        name=row["name"],
                        type=TABLE_RULE_TYPES.get(entry.table_name, entry.table_name),
                        operation=entry.operation.display_name,
                    )
                )
            histories.append(CheckpointHistory(checkpoint, rules))
        return histories

    def get_checkout(
        self,
        scope_id: int | None = None,
        application_id: int | None = None,
        limit: int | None = None,
    ) -> CheckoutSummary:
        """
        De-duplicated rule changes across a scope's checkpoints.

        Args:
            scope_id: Restrict to an object/workflow
            application_id: Restrict to an application
            limit: Maximum checkpoints (configured limit when None)

        Returns:
            CheckoutSummary grouped by object and category
        """
        checkpoints = self._checkpoints(scope_id, application_id, limit)
        if not checkpoints:
            return CheckoutSummary()

        by_checkpoint = self._entries_by_checkpoint(checkpoints)
        current = self._current_rows(by_checkpoint.values())

        seen: set[tuple[str, int]] = set()
        changes: list[tuple[RuleChange, str, int | None]] = []
        deleted_object_names: dict[int, str] = {}

        for checkpoint in checkpoints:
            for entry in by_checkpoint.get(checkpoint.id, []):
                row = self._resolve(entry, current)
                if row is None or not row.get("name") or entry.row_id is None:
                    continue

                key = (entry.table_name, entry.row_id)
                if key in seen:
                    continue
                seen.add(key)

                if entry.table_name == OBJECTS_TABLE and entry.operation == UndoOperation.DELETE:
                    deleted_object_names[entry.row_id] = row["name"]

                changes.append(
                    (
                        self._rule_change(checkpoint, entry, row),
                        entry.table_name,
                        self._owning_object(entry, row),
                    )
                )

        object_rows = self._object_rows(
            {oid for _, _, oid in changes if oid is not None}, current
        )
        return self._group(changes, object_rows, deleted_object_names, len(checkpoints))

    def get_rule(self, rule_id: str, table_name: str) -> Row:
        """
        Current row of a rule change.

        Args:
            rule_id: "<checkpoint_id>-<table>-<row_id>"
            table_name: Entity table

        Returns:
            The current row

        Raises:
            ValueError: If the id is malformed or the table unsupported
            NotFoundError: If the row no longer exists
        """
        if table_name not in ENTITY_TABLES:
            raise ValueError(f"Unsupported table: {table_name}")

        row_id = parse_rule_id(rule_id)
        row = self.entity_store.get(table_name, row_id)
        if row is None:
            raise NotFoundError(table_name, row_id)
        return row

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _checkpoints(
        self, scope_id: int | None, application_id: int | None, limit: int | None
    ) -> list[Checkpoint]:
        return self.checkpoint_store.list_by_scope(
            scope_id,
            application_id,
            statuses=FINISHED_STATUSES,
            limit=limit or self.history_limit,
        )

    def _entries_by_checkpoint(
        self, checkpoints: Sequence[Checkpoint]
    ) -> dict[str, list[UndoLogEntry]]:
        entries = self.undo_log.get_by_checkpoints(
            [cp.id for cp in checkpoints], include_applied=False, strict=False
        )
        grouped: dict[str, list[UndoLogEntry]] = defaultdict(list)
        for entry in entries:
            grouped[entry.checkpoint_id].append(entry)
        return grouped

    def _current_rows(self, entry_groups: Any) -> dict[str, dict[int, Row]]:
        """Fetch current rows for non-delete entries, one query per table."""
        wanted: dict[str, set[int]] = defaultdict(set)
        for entries in entry_groups:
            for entry in entries:
                if entry.operation != UndoOperation.DELETE and entry.row_id is not None:
                    wanted[entry.table_name].add(entry.row_id)

        current: dict[str, dict[int, Row]] = {}
        for table, ids in wanted.items():
            if table not in ENTITY_TABLES:
                logger.warning("Undo-log entry for unknown table", table=table)
                continue
            current[table] = self.entity_store.get_many(table, ids)
        return current

    def _object_rows(
        self, object_ids: set[int], current: dict[str, dict[int, Row]]
    ) -> dict[int, Row]:
        known = current.get(OBJECTS_TABLE, {})
        missing = object_ids - set(known)
        rows = dict(known)
        if missing:
            rows.update(self.entity_store.get_many(OBJECTS_TABLE, missing))
        return rows

    # -------------------------------------------------------------------------
    # Projection
    # -------------------------------------------------------------------------

    def _resolve(self, entry: UndoLogEntry, current: dict[str, dict[int, Row]]) -> Row | None:
        if entry.operation == UndoOperation.DELETE:
            return entry.previous_data
        if entry.row_id is None:
            return None
        return current.get(entry.table_name, {}).get(entry.row_id)

    def _owning_object(self, entry: UndoLogEntry, row: Row) -> int | None:
        if entry.table_name == OBJECTS_TABLE:
            return entry.row_id
        if OWNER_COLUMNS.get(entry.table_name) != "objectid":
            return None
        owner = row.get("objectid")
        return int(owner) if owner is not None else None

    def _rule_change(self, checkpoint: Checkpoint, entry: UndoLogEntry, row: Row) -> RuleChange:
        return RuleChange(
            id=f"{checkpoint.id}-{entry.table_name}-{entry.row_id}",
            name=row["name"],
            type=TABLE_RULE_TYPES.get(entry.table_name, entry.table_name),
            category=TABLE_CATEGORIES.get(entry.table_name, "data"),
            operation=entry.operation.display_name,
            checkpoint_id=checkpoint.id,
            checkpoint_description=checkpoint.description,
            checkpoint_created_at=checkpoint.created_at,
            checkpoint_source=checkpoint.source.value,
        )

    def _group(
        self,
        changes: list[tuple[RuleChange, str, int | None]],
        object_rows: dict[int, Row],
        deleted_object_names: dict[int, str],
        total_checkpoints: int,
    ) -> CheckoutSummary:
        by_object: dict[int, dict[str, list[RuleChange]]] = defaultdict(lambda: defaultdict(list))
        app_rules: list[RuleChange] = []
        theme_rules: list[RuleChange] = []

        for change, table, object_id in changes:
            if table == APPLICATIONS_TABLE:
                app_rules.append(change)
            elif table == THEMES_TABLE:
                theme_rules.append(change)
            elif object_id is not None:
                by_object[object_id][change.category].append(change)

        object_groups = []
        for object_id, categories in by_object.items():
            row = object_rows.get(object_id)
            name = (row or {}).get("name") or deleted_object_names.get(object_id)
            groups = [
                CategoryGroup(
                    category, CATEGORY_NAMES[category], _newest_first(categories[category])
                )
                for category in OBJECT_CATEGORY_ORDER
                if categories.get(category)
            ]
            object_groups.append(
                ObjectGroup(
                    object_id=object_id,
                    object_name=name or f"Object {object_id}",
                    has_workflow=bool((row or {}).get("hasWorkflow")),
                    categories=groups,
                    total_changes=sum(len(g.rules) for g in groups),
                )
            )
        object_groups.sort(key=lambda g: g.object_name.lower())

        app_category = (
            CategoryGroup("app", CATEGORY_NAMES["app"], _newest_first(app_rules))
            if app_rules
            else None
        )
        theme_category = (
            CategoryGroup("theme", CATEGORY_NAMES["theme"], _newest_first(theme_rules))
            if theme_rules
            else None
        )

        total = sum(g.total_changes for g in object_groups) + len(app_rules) + len(theme_rules)
        return CheckoutSummary(
            object_groups=object_groups,
            application_category=app_category,
            theme_category=theme_category,
            total_changes=total,
            total_checkpoints=total_checkpoints,
        )


def _newest_first(rules: list[RuleChange]) -> list[RuleChange]:
    return sorted(rules, key=lambda r: r.checkpoint_created_at, reverse=True)
