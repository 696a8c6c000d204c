"""Operation history for undo.

Every organizing run that moved at least one file is stored as a
:class:`HistoryEntry` in a single JSON file (``~/.tidy/history.json`` by
default), most recent first. The file is rewritten as a whole on every
change, through a temporary file that is swapped into place, so a crash
mid-write never damages entries that were already stored.

History is a convenience: reading a missing or corrupted store yields an
empty history, and write failures are logged rather than raised.
"""

import asyncio
import json
import logging
import os
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from ..domain.result import Failure, Result, Success
from ..exceptions import FileTidyError, HistoryWriteError
from ..models.config import DEFAULT_HISTORY_PATH
from .fileops import relocate

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class MoveRecord:
    """One completed move inside a history entry."""
    source: Path
    destination: Path
    timestamp: datetime

    def to_dict(self) -> Dict:
        return {
            "source": str(self.source),
            "destination": str(self.destination),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "MoveRecord":
        return cls(
            source=Path(data["source"]),
            destination=Path(data["destination"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass(slots=True)
class HistoryEntry:
    """One organizing operation. ``moves`` only ever grows."""
    id: str
    timestamp: datetime
    source_root: Path
    target_root: Path
    moves: List[MoveRecord] = field(default_factory=list)

    def add_move(self, source: Path, destination: Path) -> MoveRecord:
        record = MoveRecord(Path(source), Path(destination), datetime.now())
        self.moves.append(record)
        return record

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "source": str(self.source_root),
            "target": str(self.target_root),
            "moves": [move.to_dict() for move in self.moves],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "HistoryEntry":
        return cls(
            id=str(data["id"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            source_root=Path(data["source"]),
            target_root=Path(data["target"]),
            moves=[MoveRecord.from_dict(move) for move in data.get("moves", [])],
        )


class HistoryLog:
    """JSON-file backed store of history entries."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else DEFAULT_HISTORY_PATH
        self._last_id = 0

    def create_entry(self, source_root: Path, target_root: Path) -> HistoryEntry:
        """Start a new, not yet persisted entry.

        Ids are millisecond timestamps, bumped when needed so that entries
        created by this log are strictly increasing.
        """
        entry_id = max(int(time.time() * 1000), self._last_id + 1)
        self._last_id = entry_id
        return HistoryEntry(
            id=str(entry_id),
            timestamp=datetime.now(),
            source_root=Path(source_root),
            target_root=Path(target_root),
        )

    def append(self, entry: HistoryEntry, source: Path, destination: Path) -> None:
        entry.add_move(source, destination)

    def persist(self, entry: HistoryEntry) -> bool:
        """Store ``entry`` at the head of the history.

        Entries without moves are never stored. Returns False (and logs)
        if the store could not be written.
        """
        if not entry.moves:
            logger.debug(f"Not persisting history entry {entry.id}: no moves")
            return False

        entries = self.read_all()
        entries.insert(0, entry)
        try:
            self._write(entries)
        except HistoryWriteError as e:
            logger.warning(f"Could not save history entry {entry.id}: {e}")
            return False
        return True

    def read_all(self) -> List[HistoryEntry]:
        """All entries, most recent first. Never raises."""
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable history at {self.path}: {e}")
            return []

        if not isinstance(raw, list):
            logger.warning(f"Ignoring malformed history at {self.path}")
            return []

        entries = []
        for item in raw:
            try:
                entries.append(HistoryEntry.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed history entry: {e}")
        return entries

    def recent(self, limit: int = 10) -> List[HistoryEntry]:
        return self.read_all()[:limit]

    def get(self, entry_id: str) -> Optional[HistoryEntry]:
        for entry in self.read_all():
            if entry.id == entry_id:
                return entry
        return None

    def delete(self, entry_id: str) -> bool:
        """Remove an entry. Returns True if it existed and the store was saved."""
        entries = self.read_all()
        remaining = [entry for entry in entries if entry.id != entry_id]
        if len(remaining) == len(entries):
            return False
        try:
            self._write(remaining)
        except HistoryWriteError as e:
            logger.warning(f"Could not delete history entry {entry_id}: {e}")
            return False
        return True

    def clear(self) -> bool:
        try:
            self._write([])
        except HistoryWriteError as e:
            logger.warning(f"Could not clear history: {e}")
            return False
        return True

    def _write(self, entries: List[HistoryEntry]) -> None:
        data = [entry.to_dict() for entry in entries]
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                'w', encoding='utf-8', dir=self.path.parent,
                prefix=f".{self.path.name}.", suffix=".tmp", delete=False
            ) as f:
                tmp_name = f.name
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
            raise HistoryWriteError(f"Failed to write {self.path}: {e}") from e


@dataclass
class UndoReport:
    """Outcome of reverting one history entry."""
    entry_id: str
    restored: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.restored + self.skipped + self.failed


class UndoService:
    """Move the files of a history entry back where they came from."""

    def __init__(self, history: HistoryLog, max_workers: int = 2):
        self.history = history
        self.executor = ThreadPoolExecutor(max_workers=max_workers)

    async def undo(self, entry: HistoryEntry,
                   delete_after: bool = False) -> Result[UndoReport, Exception]:
        """Revert ``entry``'s moves, newest first.

        Moves whose destination is gone, or whose original location is
        occupied again, are skipped and counted; a failure does not stop the
        remaining moves.
        """
        if not entry.moves:
            return Failure(FileTidyError(f"History entry {entry.id} has no moves"))

        report = UndoReport(entry_id=entry.id)
        loop = asyncio.get_running_loop()

        for move in reversed(entry.moves):
            if not move.destination.exists():
                logger.warning(f"Skipped {move.destination} (already moved or deleted)")
                report.skipped += 1
                continue
            if move.source.exists():
                logger.warning(f"Skipped {move.destination}: {move.source} exists again")
                report.skipped += 1
                continue

            try:
                await loop.run_in_executor(self.executor, self._restore, move)
                report.restored += 1
            except (OSError, FileTidyError) as e:
                logger.warning(f"Could not restore {move.source}: {e}")
                report.failed += 1
                report.errors.append(f"{move.destination}: {e}")

        if delete_after:
            self.history.delete(entry.id)

        return Success(report)

    async def undo_by_id(self, entry_id: str,
                         delete_after: bool = False) -> Result[UndoReport, Exception]:
        entry = self.history.get(entry_id)
        if entry is None:
            return Failure(FileTidyError(f"History entry {entry_id} not found"))
        return await self.undo(entry, delete_after=delete_after)

    @staticmethod
    def _restore(move: MoveRecord) -> None:
        move.source.parent.mkdir(parents=True, exist_ok=True)
        relocate(move.destination, move.source)

    def close(self) -> None:
        self.executor.shutdown(wait=True)
