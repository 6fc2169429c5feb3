"""Entity storage for rule rows.

The checkpoint engine only needs ordinary row CRUD with primary-key lookup
from the relational store that holds the rules. `EntityStore` is that
contract; `SQLiteEntityStore` is a reference implementation that keeps each
rule table as `(id, data JSON)` so arbitrary rule columns round-trip
unchanged.

Rows are plain dictionaries that always carry their integer `id`.
"""

import json
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path
from types import TracebackType
from typing import Any

import structlog

from ..constants import ENTITY_TABLES
from ..utils.exceptions import NotFoundError

logger = structlog.get_logger(__name__)

Row = dict[str, Any]


class EntityStore(ABC):
    """Row CRUD over the rule tables."""

    @abstractmethod
    def get(self, table: str, row_id: int) -> Row | None:
        """Fetch one row by id, or None."""

    @abstractmethod
    def get_many(self, table: str, row_ids: Iterable[int]) -> dict[int, Row]:
        """Fetch many rows of one table in a single query, keyed by id."""

    @abstractmethod
    def find(self, table: str, **criteria: Any) -> list[Row]:
        """Fetch rows whose columns equal the given values."""

    @abstractmethod
    def insert(self, table: str, row: Row) -> Row:
        """Insert a row. A row carrying an id is inserted with that id."""

    @abstractmethod
    def update(self, table: str, row: Row) -> Row:
        """Replace the row with the same id. Raises NotFoundError if missing."""

    @abstractmethod
    def delete(self, table: str, row_id: int) -> None:
        """Delete a row by id. Raises NotFoundError if missing."""

    def find_one(self, table: str, **criteria: Any) -> Row | None:
        """First row matching criteria, or None."""
        rows = self.find(table, **criteria)
        return rows[0] if rows else None


class SQLiteEntityStore(EntityStore):
    """
    SQLite-backed entity store.

    Each rule table is created as `"<Table>" (id INTEGER PRIMARY KEY, data TEXT)`
    with the remaining columns kept as a JSON object, so snapshots taken by
    the undo log write back exactly.
    """

    def __init__(self, db_path: str | Path, tables: Iterable[str] = ENTITY_TABLES) -> None:
        """
        Initialize SQLiteEntityStore.

        Args:
            db_path: Path to SQLite database file
            tables: Table names to create
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.tables = tuple(tables)
        self.conn: sqlite3.Connection = self._initialize_db()

    def _initialize_db(self) -> sqlite3.Connection:
        """Initialize database schema."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row

        for table in self.tables:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS "{table}" (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    data TEXT NOT NULL
                )
            """
            )

        conn.commit()
        return conn

    def get(self, table: str, row_id: int) -> Row | None:
        self._check_table(table)
        cursor = self.conn.execute(f'SELECT id, data FROM "{table}" WHERE id = ?', (row_id,))
        row = cursor.fetchone()
        return self._to_row(row) if row else None

    def get_many(self, table: str, row_ids: Iterable[int]) -> dict[int, Row]:
        self._check_table(table)
        ids = sorted({int(i) for i in row_ids})
        if not ids:
            return {}

        marks = ", ".join("?" for _ in ids)
        cursor = self.conn.execute(f'SELECT id, data FROM "{table}" WHERE id IN ({marks})', ids)
        return {row["id"]: self._to_row(row) for row in cursor.fetchall()}

    def find(self, table: str, **criteria: Any) -> list[Row]:
        self._check_table(table)
        query = f'SELECT id, data FROM "{table}"'
        values: list[Any] = []

        clauses = []
        for column, value in criteria.items():
            if not column.isidentifier():
                raise ValueError(f"Invalid column name: {column!r}")
            target = "id" if column == "id" else f"json_extract(data, '$.{column}')"
            if value is None:
                clauses.append(f"{target} IS NULL")
                continue
            clauses.append(f"{target} = ?")
            values.append(value)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id"

        cursor = self.conn.execute(query, values)
        return [self._to_row(row) for row in cursor.fetchall()]

    def insert(self, table: str, row: Row) -> Row:
        self._check_table(table)
        data = {k: v for k, v in row.items() if k != "id"}

        if row.get("id") is not None:
            cursor = self.conn.execute(
                f'INSERT INTO "{table}" (id, data) VALUES (?, ?)',
                (int(row["id"]), json.dumps(data)),
            )
        else:
            cursor = self.conn.execute(
                f'INSERT INTO "{table}" (data) VALUES (?)', (json.dumps(data),)
            )
        self.conn.commit()

        row_id = cursor.lastrowid
        assert row_id is not None, "INSERT should always set lastrowid"
        return {"id": row_id, **data}

    def update(self, table: str, row: Row) -> Row:
        self._check_table(table)
        if row.get("id") is None:
            raise ValueError(f"Cannot update {table} row without id")

        row_id = int(row["id"])
        data = {k: v for k, v in row.items() if k != "id"}
        cursor = self.conn.execute(
            f'UPDATE "{table}" SET data = ? WHERE id = ?', (json.dumps(data), row_id)
        )
        self.conn.commit()

        if cursor.rowcount == 0:
            raise NotFoundError(table, row_id)
        return {"id": row_id, **data}

    def delete(self, table: str, row_id: int) -> None:
        self._check_table(table)
        cursor = self.conn.execute(f'DELETE FROM "{table}" WHERE id = ?', (row_id,))
        self.conn.commit()

        if cursor.rowcount == 0:
            raise NotFoundError(table, row_id)

    def _check_table(self, table: str) -> None:
        if table not in self.tables:
            raise ValueError(f"Unknown entity table: {table}")

    def _to_row(self, row: sqlite3.Row) -> Row:
        return {"id": row["id"], **json.loads(row["data"])}

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()

    def __enter__(self) -> "SQLiteEntityStore":
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
