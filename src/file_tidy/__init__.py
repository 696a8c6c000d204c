"""File Tidy

Safely execute, track and undo batches of file moves proposed by an
external categorizer, optionally driven by a directory watcher.
"""

__version__ = "0.1.0"

from .core.scanner import Scanner
from .core.duplicates import DuplicateDetector
from .core.conflicts import ConflictResolver
from .core.mover import MoveExecutor
from .core.history import HistoryEntry, HistoryLog, UndoService
from .core.watcher import DirectoryWatcher
from .core.pipeline import OrganizeContext, parse_categorization
from .models import (
    Config,
    ConflictStrategy,
    DuplicateGroup,
    FileRecord,
    MoveProposal,
    MoveResult,
    MoveStatus,
    ScanOptions,
    WatchEvent,
)

__all__ = [
    "Scanner",
    "DuplicateDetector",
    "ConflictResolver",
    "MoveExecutor",
    "HistoryEntry",
    "HistoryLog",
    "UndoService",
    "DirectoryWatcher",
    "OrganizeContext",
    "parse_categorization",
    "Config",
    "ConflictStrategy",
    "DuplicateGroup",
    "FileRecord",
    "MoveProposal",
    "MoveResult",
    "MoveStatus",
    "ScanOptions",
    "WatchEvent",
]
