"""SQLite schema shared by the checkpoint and undo-log stores.

Database Schema:
---------------
```
checkpoints (
    seq              INTEGER PRIMARY KEY,  -- Insertion order, tie-breaker for created_at
    id               TEXT UNIQUE NOT NULL, -- UUID hex
    scope_id         INTEGER NOT NULL,     -- Owning object/workflow
    application_id   INTEGER,              -- Optional application scope
    description      TEXT,
    user_command     TEXT,
    source           TEXT NOT NULL,        -- LLM, MCP, API
    status           TEXT NOT NULL,        -- active, historical, committed, rolled_back
    tools_executed   TEXT NOT NULL,        -- JSON list of tool names
    changes_count    INTEGER NOT NULL,
    has_gaps         BOOLEAN NOT NULL,     -- A capture was lost for this checkpoint
    capture_failures INTEGER NOT NULL,
    created_at       TEXT NOT NULL,        -- ISO format timestamp
    finished_at      TEXT
)

undo_log (
    id             INTEGER PRIMARY KEY,    -- Sequence, tie-breaker for created_at
    checkpoint_id  TEXT NOT NULL,          -- FK checkpoints(id) ON DELETE CASCADE
    scope_id       INTEGER NOT NULL,
    operation      TEXT NOT NULL,          -- insert, update, delete
    table_name     TEXT NOT NULL,
    primary_key    TEXT NOT NULL,          -- JSON: {"id": ...}
    previous_data  TEXT,                   -- JSON row snapshot, NULL for inserts
    created_at     TEXT NOT NULL,
    applied_at     TEXT                    -- Set once a rollback/restore reverted it
)
```

Both tables live in one database file so that deleting a checkpoint cascades
to its undo-log entries through the foreign key.
"""

import sqlite3
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)


def connect(db_path: str | Path) -> sqlite3.Connection:
    """
    Open a connection to the checkpoint database and ensure the schema exists.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Connection with Row factory and foreign keys enabled
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    initialize_schema(conn)
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    """Create checkpoint tables and indexes if missing."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS checkpoints (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL UNIQUE,
            scope_id INTEGER NOT NULL,
            application_id INTEGER,
            description TEXT,
            user_command TEXT,
            source TEXT NOT NULL DEFAULT 'LLM'
                CHECK (source IN ('LLM', 'MCP', 'API')),
            status TEXT NOT NULL DEFAULT 'active'
                CHECK (status IN ('active', 'historical', 'committed', 'rolled_back')),
            tools_executed TEXT NOT NULL DEFAULT '[]',
            changes_count INTEGER NOT NULL DEFAULT 0,
            has_gaps BOOLEAN NOT NULL DEFAULT 0,
            capture_failures INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            finished_at TEXT
        )
    """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS undo_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            checkpoint_id TEXT NOT NULL
                REFERENCES checkpoints(id) ON DELETE CASCADE,
            scope_id INTEGER NOT NULL,
            operation TEXT NOT NULL
                CHECK (operation IN ('insert', 'update', 'delete')),
            table_name TEXT NOT NULL,
            primary_key TEXT NOT NULL,
            previous_data TEXT,
            created_at TEXT NOT NULL,
            applied_at TEXT
        )
    """
    )

    # Create indexes
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_checkpoints_scope
        ON checkpoints(scope_id, created_at DESC)
    """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_checkpoints_application
        ON checkpoints(application_id, created_at DESC)
    """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_undo_log_checkpoint
        ON undo_log(checkpoint_id, created_at DESC)
    """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_undo_log_scope
        ON undo_log(scope_id)
    """
    )

    conn.commit()
    logger.debug("Checkpoint schema initialized")


def placeholders(count: int) -> str:
    """Comma-separated `?` placeholders for an IN clause."""
    return ", ".join("?" for _ in range(count))
