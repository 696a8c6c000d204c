"""Destination conflict resolution."""

import asyncio
import logging
import shutil
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..models.move import ConflictStrategy, MoveStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Resolution:
    """Where a move should land, and whether it should happen at all."""
    final_path: Path
    status: MoveStatus
    conflict_exists: bool = False


def unique_path(target_path: Path) -> Path:
    """Return ``target_path`` or the first free ``name (N).ext`` sibling."""
    if not target_path.exists():
        return target_path

    base = target_path.stem
    ext = target_path.suffix
    parent = target_path.parent
    counter = 1

    while True:
        candidate = parent / f"{base} ({counter}){ext}"
        if not candidate.exists():
            return candidate
        counter += 1


class ConflictResolver:
    """Decide the final destination of a move given what is already on disk."""

    def __init__(self, executor: Optional[ThreadPoolExecutor] = None):
        self.executor = executor

    async def _run(self, fn, *args):
        return await asyncio.get_running_loop().run_in_executor(self.executor, fn, *args)

    async def check(self, destination: Path) -> bool:
        """True if something already exists at exactly ``destination``."""
        return await self._run(destination.exists)

    async def resolve(self, destination: Path,
                      strategy: ConflictStrategy = ConflictStrategy.RENAME) -> Resolution:
        """Resolve ``destination`` against the filesystem as it is right now."""
        strategy = ConflictStrategy(strategy)

        if not await self.check(destination):
            return Resolution(destination, MoveStatus.PENDING)

        if strategy == ConflictStrategy.RENAME:
            final_path = await self._run(unique_path, destination)
            logger.debug(f"Conflict at {destination}, renaming to {final_path.name}")
            return Resolution(final_path, MoveStatus.PENDING, conflict_exists=True)
        if strategy == ConflictStrategy.OVERWRITE:
            return Resolution(destination, MoveStatus.PENDING, conflict_exists=True)
        return Resolution(destination, MoveStatus.SKIPPED, conflict_exists=True)

    async def backup_existing(self, destination: Path) -> Path:
        """Copy the file at ``destination`` to a unique ``<name>.backup`` sibling.

        Must be awaited before the destination is overwritten.
        """
        def _backup() -> Path:
            backup_path = unique_path(destination.with_name(destination.name + ".backup"))
            shutil.copy2(destination, backup_path)
            return backup_path

        backup_path = await self._run(_backup)
        logger.info(f"Backed up {destination} to {backup_path}")
        return backup_path
