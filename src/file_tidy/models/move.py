"""Move proposal and move result models."""

from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional


class MoveStatus(Enum):
    """Status of a file move operation."""
    PENDING = "pending"
    MOVING = "moving"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CONFLICT = "conflict"


class ConflictStrategy(Enum):
    """What to do when something already exists at the destination."""
    RENAME = "rename"
    OVERWRITE = "overwrite"
    SKIP = "skip"


@dataclass(frozen=True, slots=True)
class MoveProposal:
    """A suggested move of one scanned file.

    ``conflict_exists`` is never supplied by the categorizer; it is filled
    in by the conflict resolver.
    """

    source_path: Path
    destination_path: Path
    confidence: float = 0.5
    category: Optional[str] = None
    reasoning: str = ""
    conflict_exists: bool = False

    def with_conflict(self, conflict_exists: bool) -> "MoveProposal":
        return replace(self, conflict_exists=conflict_exists)


@dataclass(frozen=True, slots=True)
class MoveResult:
    """Final outcome of one move attempt."""

    source: Path
    destination: Path
    status: MoveStatus
    error: Optional[str] = None
    backup_path: Optional[Path] = None

    @property
    def succeeded(self) -> bool:
        return self.status == MoveStatus.COMPLETED

    def to_dict(self) -> dict:
        return {
            "source": str(self.source),
            "destination": str(self.destination),
            "status": self.status.value,
            "error": self.error,
            "backup_path": str(self.backup_path) if self.backup_path else None,
        }


@dataclass(frozen=True, slots=True)
class BatchSummary:
    """Per-status breakdown of a batch of move results."""

    completed: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.completed + self.failed + self.skipped

    @classmethod
    def from_results(cls, results: Iterable[MoveResult]) -> "BatchSummary":
        completed = failed = skipped = 0
        for result in results:
            if result.status == MoveStatus.COMPLETED:
                completed += 1
            elif result.status == MoveStatus.SKIPPED:
                skipped += 1
            else:
                failed += 1
        return cls(completed=completed, failed=failed, skipped=skipped)
