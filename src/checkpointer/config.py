"""Configuration management for the rule checkpoint engine."""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import yaml

from .constants import DEFAULT_DESCRIPTION, DEFAULT_HISTORY_LIMIT
from .models.checkpoint import CheckpointSource


@dataclass
class StorageConfig:
    """
    Storage locations.

    Checkpoints and the undo log share one SQLite file so that deleting a
    checkpoint cascades to its entries.
    """

    db_path: Path = Path(".checkpoints/checkpoints.db")
    entity_db_path: Path = Path(".checkpoints/rules.db")


@dataclass
class SessionConfig:
    """Defaults applied to checkpoint sessions and history queries."""

    history_limit: int = DEFAULT_HISTORY_LIMIT
    default_source: CheckpointSource = CheckpointSource.LLM
    default_description: str = DEFAULT_DESCRIPTION


@dataclass
class CaptureConfig:
    """Mutation capture behaviour."""

    # Look id-less rows up by name and owner to decide insert vs update
    lookup_natural_keys: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"
    file: Path | None = None


@dataclass
class MetricsConfig:
    """Metrics configuration."""

    enabled: bool = True
    backend: str = "logger"


@dataclass
class EngineConfig:
    """
    Complete configuration for the rule checkpoint engine.

    This combines all configuration sections.
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)

    @classmethod
    def from_file(cls, config_path: Path) -> "EngineConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to YAML config file

        Returns:
            EngineConfig instance

        Raises:
            ValueError: If the file is not valid YAML or not a mapping
        """
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file {config_path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(
                f"Invalid configuration file structure in {config_path}: "
                f"expected dictionary, got {type(data).__name__}"
            )

        storage_data = dict(data.get("storage") or {})
        for key in ("db_path", "entity_db_path"):
            if storage_data.get(key):
                storage_data[key] = Path(storage_data[key])
        storage = StorageConfig(**storage_data)

        session_data = dict(data.get("session") or {})
        if "default_source" in session_data:
            session_data["default_source"] = CheckpointSource(session_data["default_source"])
        session = SessionConfig(**session_data)

        capture = CaptureConfig(**(data.get("capture") or {}))

        logging_data = dict(data.get("logging") or {})
        # Convert file path string to Path if present
        if logging_data.get("file"):
            logging_data["file"] = Path(logging_data["file"])
        logging = LoggingConfig(**logging_data)

        metrics = MetricsConfig(**(data.get("metrics") or {}))

        return cls(
            storage=storage,
            session=session,
            capture=capture,
            logging=logging,
            metrics=metrics,
        )

    def to_file(self, config_path: Path) -> None:
        """
        Save configuration to YAML file.

        Args:
            config_path: Path to save config file
        """
        data = {
            "storage": {k: str(v) for k, v in self.storage.__dict__.items()},
            "session": {
                k: v.value if isinstance(v, Enum) else v for k, v in self.session.__dict__.items()
            },
            "capture": self.capture.__dict__,
            "logging": {
                k: str(v) if isinstance(v, Path) else v
                for k, v in self.logging.__dict__.items()
                if v is not None
            },
            "metrics": self.metrics.__dict__,
        }

        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """
        Create configuration from environment variables.

        Environment variables:
            CHECKPOINT_DB: Checkpoint/undo-log database path
            CHECKPOINT_ENTITY_DB: Rule database path
            CHECKPOINT_HISTORY_LIMIT: Maximum checkpoints in history (default: 50)
            LOG_LEVEL: Logging level (default: INFO)
            LOG_FORMAT: console or json (default: console)

        Returns:
            EngineConfig instance

        Raises:
            ValueError: If CHECKPOINT_HISTORY_LIMIT is not a positive integer
        """
        storage = StorageConfig()
        if os.environ.get("CHECKPOINT_DB"):
            storage.db_path = Path(os.environ["CHECKPOINT_DB"])
        if os.environ.get("CHECKPOINT_ENTITY_DB"):
            storage.entity_db_path = Path(os.environ["CHECKPOINT_ENTITY_DB"])

        limit_str = os.environ.get("CHECKPOINT_HISTORY_LIMIT", str(DEFAULT_HISTORY_LIMIT))
        try:
            history_limit = int(limit_str)
        except ValueError as e:
            raise ValueError(
                f"CHECKPOINT_HISTORY_LIMIT must be an integer, got {limit_str!r}"
            ) from e
        if history_limit < 1:
            raise ValueError(f"CHECKPOINT_HISTORY_LIMIT must be positive, got {history_limit}")

        logging_config = LoggingConfig(
            level=os.environ.get("LOG_LEVEL", "INFO"),
            format=os.environ.get("LOG_FORMAT", "console"),
        )

        return cls(
            storage=storage,
            session=SessionConfig(history_limit=history_limit),
            capture=CaptureConfig(),
            logging=logging_config,
            metrics=MetricsConfig(),
        )


def load_config(config_file: Path | None = None) -> EngineConfig:
    """
    Load configuration from file or environment variables.

    Args:
        config_file: Optional path to YAML config file

    Returns:
        EngineConfig instance

    Raises:
        FileNotFoundError: If config_file is specified but doesn't exist
    """
    if config_file:
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_file}")
        return EngineConfig.from_file(config_file)
    return EngineConfig.from_env()
