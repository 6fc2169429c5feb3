"""Pytest configuration and shared fixtures.

This module provides reusable fixtures for testing the rule checkpoint engine.
Fixtures are organized by category:
- Infrastructure fixtures: Temp databases and stores
- Engine fixtures: Service, session manager and capture wired together
- Data fixtures: Seeded rule rows
"""

from pathlib import Path

import pytest

from src.checkpointer.config import EngineConfig, StorageConfig
from src.checkpointer.constants import FIELDS_TABLE, OBJECTS_TABLE, VIEWS_TABLE
from src.checkpointer.observability.metrics import MetricsCollector
from src.checkpointer.persistence.checkpoint_store import CheckpointStore
from src.checkpointer.persistence.undo_log import UndoLogStore
from src.checkpointer.service import CheckpointService
from src.checkpointer.store.entity_store import SQLiteEntityStore

# =============================================================================
# Infrastructure Fixtures
# =============================================================================


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Path of the checkpoint/undo-log database."""
    return tmp_path / "checkpoints.db"


@pytest.fixture
def entity_store(tmp_path: Path):
    """SQLite entity store holding the rule tables."""
    store = SQLiteEntityStore(tmp_path / "rules.db")
    yield store
    store.close()


@pytest.fixture
def checkpoint_store(db_path: Path):
    """Checkpoint store on a temp database."""
    store = CheckpointStore(db_path)
    yield store
    store.close()


@pytest.fixture
def undo_log(db_path: Path):
    """Undo log on the same database as checkpoint_store."""
    store = UndoLogStore(db_path)
    yield store
    store.close()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Fresh in-memory metrics collector."""
    return MetricsCollector()


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def config(tmp_path: Path) -> EngineConfig:
    """Engine configuration pointing at temp databases."""
    return EngineConfig(
        storage=StorageConfig(
            db_path=tmp_path / "checkpoints.db",
            entity_db_path=tmp_path / "rules.db",
        )
    )


@pytest.fixture
def service(config: EngineConfig):
    """Fully wired checkpoint service."""
    svc = CheckpointService.from_config(config)
    yield svc
    svc.close()


@pytest.fixture
def manager(service: CheckpointService):
    """Session manager of the service."""
    return service.manager


@pytest.fixture
def tools(service: CheckpointService):
    """Capturing tool catalog of the service."""
    return service.tools


# =============================================================================
# Data Fixtures
# =============================================================================


@pytest.fixture
def customer_object(service: CheckpointService) -> dict:
    """Object 42 "Customer" with a workflow."""
    return service.entity_store.insert(
        OBJECTS_TABLE, {"id": 42, "name": "Customer", "hasWorkflow": True, "applicationid": None}
    )


@pytest.fixture
def order_object(service: CheckpointService) -> dict:
    """Object 43 "Order" without a workflow."""
    return service.entity_store.insert(
        OBJECTS_TABLE, {"id": 43, "name": "Order", "hasWorkflow": False, "applicationid": None}
    )


@pytest.fixture
def grid_view(service: CheckpointService, customer_object: dict) -> dict:
    """View "Grid" on object 42."""
    return service.entity_store.insert(
        VIEWS_TABLE, {"id": 7, "name": "Grid", "objectid": 42, "model": {"columns": ["name"]}}
    )


@pytest.fixture
def name_field(service: CheckpointService, customer_object: dict) -> dict:
    """Field "name" on object 42."""
    return service.entity_store.insert(
        FIELDS_TABLE, {"id": 3, "name": "name", "objectid": 42, "type": "Text"}
    )
