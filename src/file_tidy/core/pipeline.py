"""Organize pipeline: scan, categorize, resolve, move, record.

The categorizer is an external collaborator. It receives the scanned files,
the target root and the folders that already exist there, and returns a
mapping (or JSON text, possibly wrapped in prose) shaped like::

    {"proposals": [{"file": "a.pdf", "destination": "Documents/Work",
                    "category": {"name": "Documents", "confidence": 0.9}}],
     "uncategorized": ["b.bin"],
     "strategy": "..."}

Every raw proposal goes through :func:`parse_proposal`, which yields either a
:class:`MoveProposal` or a :class:`ProposalRejected` reason. Nothing
unvalidated reaches the move executor.
"""

import inspect
import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, TypeVar, Union

from ..domain.result import Failure, Result, Success
from ..models.config import Config, ScanOptions
from ..models.file_record import DuplicateGroup, FileRecord, WatchEvent
from ..models.move import BatchSummary, MoveProposal, MoveResult
from .conflicts import ConflictResolver
from .duplicates import DuplicateDetector
from .history import HistoryEntry, HistoryLog
from .mover import MoveExecutor
from .scanner import Scanner

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_CHUNK_SIZE = 50

Categorizer = Callable[[List[FileRecord], Path, List[str]], Union[Any, Awaitable[Any]]]

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class ProposalRejected(ValueError):
    """A raw proposal that could not be turned into a MoveProposal."""

    def __init__(self, reason: str, raw: Any = None):
        self.reason = reason
        self.raw = raw
        super().__init__(reason)


@dataclass
class CategorizationPlan:
    """Validated categorizer output for one or more chunks."""
    proposals: List[MoveProposal] = field(default_factory=list)
    uncategorized: List[FileRecord] = field(default_factory=list)
    rejected: List[ProposalRejected] = field(default_factory=list)
    strategy: str = ""

    def extend(self, other: "CategorizationPlan") -> None:
        self.proposals.extend(other.proposals)
        self.uncategorized.extend(other.uncategorized)
        self.rejected.extend(other.rejected)
        if other.strategy:
            self.strategy = f"{self.strategy}\n{other.strategy}" if self.strategy else other.strategy


@dataclass
class OrganizeReport:
    """Everything one organizing run produced."""
    results: List[MoveResult]
    summary: BatchSummary
    entry: Optional[HistoryEntry] = None
    persisted: bool = False
    uncategorized: List[FileRecord] = field(default_factory=list)
    rejected: List[ProposalRejected] = field(default_factory=list)
    duplicates: List[DuplicateGroup] = field(default_factory=list)


def chunked(items: Sequence[T], size: int = DEFAULT_CHUNK_SIZE) -> Iterator[List[T]]:
    """Split ``items`` into consecutive lists of at most ``size``."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def extract_payload(response: Any) -> Optional[Dict]:
    """Pull the JSON object out of a categorizer response, or None."""
    if isinstance(response, dict):
        return response
    if isinstance(response, bytes):
        response = response.decode('utf-8', errors='replace')
    if not isinstance(response, str):
        return None

    match = _JSON_OBJECT.search(response)
    try:
        payload = json.loads(match.group(0) if match else response)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def _safe_relative(suggested: str) -> Optional[PurePosixPath]:
    relative = PurePosixPath(suggested.replace("\\", "/").strip())
    if relative.is_absolute() or ".." in relative.parts:
        return None
    return relative


def _confidence(raw: Dict) -> float:
    category = raw.get("category")
    value = raw.get("confidence")
    if value is None and isinstance(category, dict):
        value = category.get("confidence")
    try:
        value = float(value) if value is not None else 0.5
    except (TypeError, ValueError):
        value = 0.5
    return min(1.0, max(0.0, value))


def parse_proposal(raw: Any,
                   by_path: Dict[str, FileRecord],
                   by_name: Dict[str, FileRecord],
                   target_root: Path) -> Result[MoveProposal, ProposalRejected]:
    """Validate one raw proposal against the files of the scan it came from."""
    if not isinstance(raw, dict):
        return Failure(ProposalRejected("proposal is not an object", raw))

    record = None
    source = raw.get("source_path") or raw.get("sourcePath") or raw.get("path")
    if isinstance(source, str):
        record = by_path.get(source)
    if record is None:
        name = raw.get("file") or raw.get("filename") or raw.get("name")
        if isinstance(name, str):
            record = by_name.get(name)
    if record is None:
        return Failure(ProposalRejected("proposal references an unknown file", raw))

    category = raw.get("category")
    suggested = raw.get("destination") or raw.get("suggested_path") or raw.get("suggestedPath")
    if suggested is None and isinstance(category, dict):
        suggested = category.get("suggestedPath") or category.get("suggested_path")
    if suggested is None:
        suggested = ""
    if not isinstance(suggested, str):
        return Failure(ProposalRejected(f"destination for {record.name} is not a string", raw))

    relative = _safe_relative(suggested)
    if relative is None:
        return Failure(ProposalRejected(f"destination {suggested!r} escapes the target root", raw))

    category_name = category.get("name") if isinstance(category, dict) else category
    reasoning = raw.get("reasoning")
    if reasoning is None and isinstance(category, dict):
        reasoning = category.get("reasoning")

    return Success(MoveProposal(
        source_path=record.path,
        destination_path=Path(target_root).joinpath(*relative.parts, record.name),
        confidence=_confidence(raw),
        category=str(category_name) if category_name else None,
        reasoning=str(reasoning or ""),
    ))


def parse_categorization(response: Any, files: Sequence[FileRecord],
                         target_root: Path) -> CategorizationPlan:
    """Turn a raw categorizer response into a plan.

    Every file in ``files`` ends up in exactly one of ``proposals`` or
    ``uncategorized``. A garbled response means no proposals at all.
    """
    payload = extract_payload(response)
    if payload is None:
        logger.warning("Could not parse categorizer response; leaving all files uncategorized")
        return CategorizationPlan(uncategorized=list(files),
                                  strategy="Failed to parse categorizer response")

    by_path = {str(record.path): record for record in files}
    by_name = {}
    for record in files:
        by_name.setdefault(record.name, record)

    plan = CategorizationPlan(
        strategy=str(payload.get("strategy") or payload.get("overall_reasoning") or "")
    )
    claimed = set()

    raw_proposals = payload.get("proposals")
    if not isinstance(raw_proposals, list):
        raw_proposals = []

    for raw in raw_proposals:
        result = parse_proposal(raw, by_path, by_name, target_root)
        if result.is_failure():
            plan.rejected.append(result.error())
            continue
        proposal = result.value()
        if proposal.source_path in claimed:
            plan.rejected.append(ProposalRejected(
                f"duplicate proposal for {proposal.source_path}", raw))
            continue
        claimed.add(proposal.source_path)
        plan.proposals.append(proposal)

    plan.uncategorized = [record for record in files if record.path not in claimed]

    if plan.rejected:
        logger.info(f"Dropped {len(plan.rejected)} invalid proposal(s)")
    return plan


class OrganizeContext:
    """The components of one organizing run, built once and passed around.

    There is no module-level state: tests and long-running watchers build
    their own context (or several) with the history log they want.
    """

    def __init__(self,
                 config: Optional[Config] = None,
                 scanner: Optional[Scanner] = None,
                 executor: Optional[MoveExecutor] = None,
                 history: Optional[HistoryLog] = None,
                 detector: Optional[DuplicateDetector] = None):
        self.config = config or Config.default()
        ops = self.config.file_operations
        self.scanner = scanner or Scanner(max_workers=ops.max_workers)
        self.executor = executor or MoveExecutor(
            strategy=ops.strategy,
            backup=ops.backup,
            verify_copy=ops.verify_copy,
            max_workers=ops.max_workers,
        )
        self.resolver: ConflictResolver = self.executor.resolver
        self.history = history or HistoryLog(self.config.history_path)
        self.detector = detector or DuplicateDetector(max_workers=ops.max_workers)

    async def plan(self, files: Sequence[FileRecord], target_root: Path,
                   categorizer: Categorizer) -> CategorizationPlan:
        """Ask the categorizer about ``files`` chunk by chunk.

        A chunk whose categorizer call fails is left uncategorized. The
        returned proposals carry ``conflict_exists`` as of now; the executor
        checks again right before each move.
        """
        target_root = Path(target_root).expanduser().absolute()
        existing: List[str] = []
        if target_root.is_dir():
            existing = await self.scanner.scan_folder_structure(target_root)

        plan = CategorizationPlan()
        for chunk in chunked(list(files), self.config.chunk_size):
            try:
                response = categorizer(chunk, target_root, existing)
                if inspect.isawaitable(response):
                    response = await response
            except Exception as e:
                logger.warning(f"Categorizer failed for {len(chunk)} file(s): {e}")
                plan.extend(CategorizationPlan(uncategorized=list(chunk)))
                continue
            plan.extend(parse_categorization(response, chunk, target_root))

        plan.proposals = [
            proposal.with_conflict(await self.resolver.check(proposal.destination_path))
            for proposal in plan.proposals
        ]
        return plan

    async def apply(self, plan: CategorizationPlan, source_root: Path,
                    target_root: Path) -> OrganizeReport:
        """Execute a plan and persist its history entry if anything moved."""
        entry = self.history.create_entry(source_root, target_root)
        results = await self.executor.execute_batch(plan.proposals, entry)

        persisted = False
        if entry.moves:
            persisted = self.history.persist(entry)

        return OrganizeReport(
            results=results,
            summary=BatchSummary.from_results(results),
            entry=entry if entry.moves else None,
            persisted=persisted,
            uncategorized=list(plan.uncategorized),
            rejected=list(plan.rejected),
        )

    async def organize(self, source_root: Path, target_root: Path,
                       categorizer: Categorizer,
                       options: Optional[ScanOptions] = None,
                       find_duplicates: bool = False) -> OrganizeReport:
        """Scan ``source_root`` and organize it into ``target_root``."""
        source_root = Path(source_root).expanduser().absolute()
        target_root = Path(target_root).expanduser().absolute()

        files = await self.scanner.scan(source_root, options or self.config.scan)
        logger.info(f"Scanned {len(files)} file(s) in {source_root}")

        duplicates: List[DuplicateGroup] = []
        if find_duplicates:
            duplicates = await self.detector.detect(files, compute_hashes=True)

        plan = await self.plan(files, target_root, categorizer)
        report = await self.apply(plan, source_root, target_root)
        report.duplicates = duplicates
        return report

    async def handle_watch_batch(self, events: Iterable[WatchEvent], target_root: Path,
                                 categorizer: Categorizer) -> OrganizeReport:
        """Organize the files named by one watcher batch."""
        records = []
        for event in events:
            record = await self.scanner.scan_file(event.path, self.config.scan)
            if record is not None:
                records.append(record)

        if not records:
            return OrganizeReport(results=[], summary=BatchSummary())

        if len(records) == 1:
            source_root = records[0].path.parent
        else:
            source_root = Path(os.path.commonpath([str(r.path.parent) for r in records]))

        target_root = Path(target_root).expanduser().absolute()
        plan = await self.plan(records, target_root, categorizer)
        return await self.apply(plan, source_root, target_root)

    def close(self) -> None:
        self.scanner.close()
        self.executor.close()
        self.detector.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
