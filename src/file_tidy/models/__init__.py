"""Data models for file tidy."""

from .file_record import (
    FileRecord,
    DuplicateGroup,
    WatchEvent,
    WatchEventType,
    format_file_size,
)
from .move import MoveProposal, MoveResult, MoveStatus, ConflictStrategy, BatchSummary
from .config import Config, ScanOptions, WatcherConfig, FileOperationsConfig

__all__ = [
    "FileRecord",
    "DuplicateGroup",
    "WatchEvent",
    "WatchEventType",
    "format_file_size",
    "MoveProposal",
    "MoveResult",
    "MoveStatus",
    "ConflictStrategy",
    "BatchSummary",
    "Config",
    "ScanOptions",
    "WatcherConfig",
    "FileOperationsConfig",
]
