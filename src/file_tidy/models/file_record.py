"""File record model representing one scanned file."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple


@dataclass(frozen=True, slots=True)
class FileRecord:
    """Metadata about a single file found by the scanner."""

    path: Path
    name: str
    extension: str
    size: int
    modified_at: datetime
    created_at: datetime
    mime_type: Optional[str] = None
    content_preview: Optional[str] = None
    content_hash: Optional[str] = None

    def with_hash(self, content_hash: str) -> "FileRecord":
        """Return a copy of this record carrying a content fingerprint."""
        return replace(self, content_hash=content_hash)

    def to_dict(self) -> dict:
        """Convert to dictionary, as handed to the categorizer."""
        return {
            "path": str(self.path),
            "name": self.name,
            "extension": self.extension,
            "size": self.size,
            "modified_at": self.modified_at.isoformat(),
            "created_at": self.created_at.isoformat(),
            "mime_type": self.mime_type,
            "content_preview": self.content_preview,
        }


@dataclass(frozen=True, slots=True)
class DuplicateGroup:
    """Files sharing the same content fingerprint."""

    hash: str
    files: Tuple[FileRecord, ...]

    @property
    def keeper(self) -> FileRecord:
        """The largest copy, the one assumed to be kept."""
        return max(self.files, key=lambda record: record.size)

    @property
    def total_bytes(self) -> int:
        return sum(record.size for record in self.files)

    @property
    def wasted_bytes(self) -> int:
        return self.total_bytes - self.keeper.size


class WatchEventType(Enum):
    """Kinds of filesystem notifications the watcher batches."""
    ADD = "add"
    CHANGE = "change"


@dataclass(frozen=True, slots=True)
class WatchEvent:
    """A raw filesystem notification waiting in the watcher's pending map."""

    type: WatchEventType
    path: Path
    timestamp: datetime = field(default_factory=datetime.now)


def format_file_size(size: int) -> str:
    """Format a byte count for display, e.g. ``1.5 KB``."""
    if size <= 0:
        return "0 B"

    units: List[str] = ["B", "KB", "MB", "GB", "TB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1

    rounded = round(value, 1)
    text = f"{rounded:.1f}".rstrip("0").rstrip(".")
    return f"{text} {units[index]}"
