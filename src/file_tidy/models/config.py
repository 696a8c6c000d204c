"""Configuration model for file tidy."""

import json
from dataclasses import dataclass, field, fields, is_dataclass, asdict
from pathlib import Path
from typing import List

from ..exceptions import ConfigurationError
from .move import ConflictStrategy


DEFAULT_IGNORE_PATTERNS = [
    ".DS_Store",
    "*.tmp",
    "*.partial",
    "*.crdownload",
    "*.download",
    "desktop.ini",
    "Thumbs.db",
]

DEFAULT_HISTORY_PATH = Path.home() / ".tidy" / "history.json"


@dataclass
class ScanOptions:
    """Options for scanning a directory."""
    recursive: bool = False
    max_depth: int = 1  # 0 means no limit when recursive
    ignore_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))
    read_content: bool = False
    max_content_size: int = 10240


@dataclass
class WatcherConfig:
    """Configuration for the directory watcher."""
    delay: float = 3.0  # seconds of quiet before a batch is emitted
    recursive: bool = False
    ignore_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))
    stability_threshold: float = 2.0
    poll_interval: float = 0.1


@dataclass
class FileOperationsConfig:
    """Configuration for file operations."""
    conflict_strategy: str = "rename"  # "rename", "overwrite" or "skip"
    backup: bool = False
    verify_copy: bool = True
    max_workers: int = 4

    @property
    def strategy(self) -> ConflictStrategy:
        return ConflictStrategy(self.conflict_strategy)


@dataclass
class Config:
    """Main configuration model."""
    source_directory: Path
    target_directory: Path
    scan: ScanOptions = field(default_factory=ScanOptions)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    file_operations: FileOperationsConfig = field(default_factory=FileOperationsConfig)
    history_path: Path = DEFAULT_HISTORY_PATH
    chunk_size: int = 50

    @classmethod
    def default(cls) -> "Config":
        """Create a default configuration, organizing Downloads into Documents."""
        return cls(
            source_directory=Path.home() / "Downloads",
            target_directory=Path.home() / "Documents" / "Organized",
        )

    def validate(self) -> None:
        """Raise ConfigurationError if any value is out of range."""
        try:
            ConflictStrategy(self.file_operations.conflict_strategy)
        except ValueError:
            raise ConfigurationError(
                f"Unknown conflict strategy: {self.file_operations.conflict_strategy!r}"
            )
        if self.scan.max_depth < 0:
            raise ConfigurationError("scan.max_depth must be >= 0")
        if self.scan.max_content_size < 0:
            raise ConfigurationError("scan.max_content_size must be >= 0")
        if self.watcher.delay < 0:
            raise ConfigurationError("watcher.delay must be >= 0")
        if self.watcher.stability_threshold < 0 or self.watcher.poll_interval <= 0:
            raise ConfigurationError("watcher stability settings must be positive")
        if self.file_operations.max_workers < 1:
            raise ConfigurationError("file_operations.max_workers must be >= 1")
        if self.chunk_size < 1:
            raise ConfigurationError("chunk_size must be >= 1")


def _dataclass_to_dict(obj):
    """Convert dataclass to dict recursively."""
    if is_dataclass(obj):
        return {key: _dataclass_to_dict(value) for key, value in asdict(obj).items()}
    elif isinstance(obj, Path):
        return str(obj)
    elif isinstance(obj, dict):
        return {key: _dataclass_to_dict(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_dataclass_to_dict(item) for item in obj]
    else:
        return obj


def _dict_to_dataclass(data, dataclass_type):
    """Convert dict to dataclass recursively."""
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Expected an object for {dataclass_type.__name__}, got {type(data).__name__}"
        )

    field_types = {f.name: f.type for f in fields(dataclass_type)}

    kwargs = {}
    for field_name, field_type in field_types.items():
        if field_name not in data:
            continue
        if is_dataclass(field_type):
            kwargs[field_name] = _dict_to_dataclass(data[field_name], field_type)
        elif field_type is Path:
            kwargs[field_name] = Path(data[field_name]).expanduser()
        else:
            kwargs[field_name] = data[field_name]

    try:
        return dataclass_type(**kwargs)
    except TypeError as e:
        raise ConfigurationError(f"Invalid {dataclass_type.__name__} configuration: {e}")


def load_config(config_path: Path) -> Config:
    """Load and validate configuration from a JSON file."""
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read config {config_path}: {e}")

    config = _dict_to_dataclass(config_data, Config)
    config.validate()
    return config


def save_config(config: Config, config_path: Path) -> None:
    """Save configuration to JSON file."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w', encoding='utf-8') as f:
        json.dump(_dataclass_to_dict(config), f, indent=2)
