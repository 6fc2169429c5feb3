"""Entity storage contract and SQLite reference implementation."""

from .entity_store import EntityStore, Row, SQLiteEntityStore

__all__ = ["EntityStore", "Row", "SQLiteEntityStore"]
