"""Sequential execution of move proposals with conflict handling."""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

from ..exceptions import FileOperationError
from ..models.move import BatchSummary, ConflictStrategy, MoveProposal, MoveResult, MoveStatus
from .conflicts import ConflictResolver
from .fileops import relocate
from .history import HistoryEntry

logger = logging.getLogger(__name__)


class MoveExecutor:
    """Execute move proposals one at a time and record what succeeded."""

    def __init__(self,
                 resolver: Optional[ConflictResolver] = None,
                 strategy: ConflictStrategy = ConflictStrategy.RENAME,
                 backup: bool = False,
                 verify_copy: bool = True,
                 max_workers: int = 4):
        self.executor = ThreadPoolExecutor(max_workers=max_workers)
        self.resolver = resolver or ConflictResolver(self.executor)
        self.strategy = ConflictStrategy(strategy)
        self.backup = backup
        self.verify_copy = verify_copy

    async def _run(self, fn, *args):
        return await asyncio.get_running_loop().run_in_executor(self.executor, fn, *args)

    async def execute(self, proposal: MoveProposal,
                      entry: Optional[HistoryEntry] = None) -> MoveResult:
        """Move one file. Never raises for per-file problems.

        On success the move is appended to ``entry`` (when given) before
        returning, so a batch records moves in execution order.
        """
        source = proposal.source_path
        destination = proposal.destination_path

        try:
            await self._run(lambda: destination.parent.mkdir(parents=True, exist_ok=True))
        except OSError as e:
            logger.warning(f"Cannot create {destination.parent}: {e}")
            return MoveResult(source, destination, MoveStatus.FAILED, error=str(e))

        # Re-checked here, the destination may have appeared since planning.
        try:
            resolution = await self.resolver.resolve(destination, self.strategy)
        except OSError as e:
            logger.warning(f"Cannot resolve destination {destination}: {e}")
            return MoveResult(source, destination, MoveStatus.FAILED, error=str(e))

        if resolution.status == MoveStatus.SKIPPED:
            logger.info(f"Skipping {source}: {destination} already exists")
            return MoveResult(source, destination, MoveStatus.SKIPPED)

        final_path = resolution.final_path
        backup_path = None
        if resolution.conflict_exists and self.strategy == ConflictStrategy.OVERWRITE and self.backup:
            try:
                backup_path = await self.resolver.backup_existing(final_path)
            except OSError as e:
                logger.warning(f"Backup of {final_path} failed, not overwriting: {e}")
                return MoveResult(source, final_path, MoveStatus.FAILED,
                                  error=f"Backup failed: {e}")

        logger.debug(f"Moving {source} -> {final_path}")
        try:
            await self._run(relocate, source, final_path, self.verify_copy)
        except (OSError, FileOperationError) as e:
            logger.warning(f"Failed to move {source}: {e}")
            return MoveResult(source, final_path, MoveStatus.FAILED,
                              error=str(e), backup_path=backup_path)

        if entry is not None:
            entry.add_move(source, final_path)

        return MoveResult(source, final_path, MoveStatus.COMPLETED, backup_path=backup_path)

    async def execute_batch(self, proposals: Sequence[MoveProposal],
                            entry: Optional[HistoryEntry] = None) -> List[MoveResult]:
        """Execute proposals strictly in order.

        Later proposals may depend on earlier ones having landed (e.g. two
        files claiming the same renamed slot), so nothing runs in parallel.
        """
        results = []
        for proposal in proposals:
            results.append(await self.execute(proposal, entry))

        summary = self.summarize(results)
        logger.info(f"Batch done: {summary.completed} moved, {summary.failed} failed, "
                    f"{summary.skipped} skipped")
        return results

    @staticmethod
    def summarize(results: Sequence[MoveResult]) -> BatchSummary:
        return BatchSummary.from_results(results)

    def close(self) -> None:
        self.executor.shutdown(wait=True)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
