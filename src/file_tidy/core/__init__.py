"""Core components of the move pipeline."""

from .scanner import Scanner, should_ignore
from .duplicates import DuplicateDetector, compute_file_hash
from .conflicts import ConflictResolver, Resolution, unique_path
from .history import HistoryEntry, HistoryLog, MoveRecord, UndoReport, UndoService
from .mover import MoveExecutor
from .watcher import DirectoryWatcher, WatchdogSource, WatcherState
from .pipeline import (
    CategorizationPlan,
    OrganizeContext,
    OrganizeReport,
    ProposalRejected,
    chunked,
    parse_categorization,
)

__all__ = [
    "Scanner",
    "should_ignore",
    "DuplicateDetector",
    "compute_file_hash",
    "ConflictResolver",
    "Resolution",
    "unique_path",
    "HistoryEntry",
    "HistoryLog",
    "MoveRecord",
    "UndoReport",
    "UndoService",
    "MoveExecutor",
    "DirectoryWatcher",
    "WatchdogSource",
    "WatcherState",
    "CategorizationPlan",
    "OrganizeContext",
    "OrganizeReport",
    "ProposalRejected",
    "chunked",
    "parse_categorization",
]
