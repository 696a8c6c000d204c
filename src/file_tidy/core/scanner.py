"""Directory scanning: builds FileRecords and lists existing folders."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from ..exceptions import DirectoryError
from ..models.config import ScanOptions
from ..models.file_record import FileRecord

logger = logging.getLogger(__name__)

PREVIEW_LINES = 20

TEXT_MIME_TYPES = (
    "text/",
    "application/json",
    "application/javascript",
    "application/typescript",
    "application/xml",
    "application/x-yaml",
    "application/yaml",
    "application/x-sh",
    "application/x-python",
)


def should_ignore(name: str, patterns: Iterable[str]) -> bool:
    """Match a filename against ignore patterns.

    Only two forms are supported: an exact filename, and ``*.ext`` which
    matches any name ending in ``.ext``.
    """
    for pattern in patterns:
        if pattern.startswith("*."):
            if name.endswith(pattern[1:]):
                return True
        elif name == pattern:
            return True
    return False


def is_text_mime_type(mime_type: Optional[str]) -> bool:
    if not mime_type:
        return False
    return any(mime_type.startswith(prefix) for prefix in TEXT_MIME_TYPES)


def read_preview(path: Path, max_size: int) -> Optional[str]:
    """Return the first lines of a text file, or None if it can't be read."""
    try:
        with open(path, 'rb') as f:
            data = f.read(max_size)
    except OSError as e:
        logger.debug(f"Could not read preview of {path}: {e}")
        return None

    text = data.decode('utf-8', errors='replace')
    return "\n".join(text.split("\n")[:PREVIEW_LINES])


def build_record(path: Path, options: ScanOptions) -> Optional[FileRecord]:
    """Build a FileRecord for a regular file, or None for anything else."""
    try:
        stat = path.stat()
    except OSError as e:
        logger.debug(f"Could not stat {path}: {e}")
        return None

    if not path.is_file():
        return None

    name = path.name
    mime_type, _ = mimetypes.guess_type(name)
    created = getattr(stat, 'st_birthtime', None) or stat.st_ctime

    preview = None
    if (options.read_content
            and stat.st_size <= options.max_content_size
            and is_text_mime_type(mime_type)):
        preview = read_preview(path, options.max_content_size)

    return FileRecord(
        path=path,
        name=name,
        extension=path.suffix[1:].lower(),
        size=stat.st_size,
        modified_at=datetime.fromtimestamp(stat.st_mtime),
        created_at=datetime.fromtimestamp(created),
        mime_type=mime_type,
        content_preview=preview,
    )


class Scanner:
    """Enumerate files in a directory and extract their metadata."""

    def __init__(self, max_workers: int = 4):
        self.executor = ThreadPoolExecutor(max_workers=max_workers)
        self.skipped: List[Path] = []

    async def scan(self, directory: Path, options: Optional[ScanOptions] = None) -> List[FileRecord]:
        """Scan ``directory`` and return a FileRecord per matching file.

        Raises:
            DirectoryError: if ``directory`` is missing or unreadable.
                Unreadable subdirectories are skipped and logged instead.
        """
        options = options or ScanOptions()
        directory = Path(directory).expanduser().absolute()
        self.skipped = []

        if not directory.exists():
            raise DirectoryError(directory, "directory does not exist")
        if not directory.is_dir():
            raise DirectoryError(directory, "not a directory")

        loop = asyncio.get_running_loop()
        try:
            entries = await loop.run_in_executor(self.executor, self._list_entries, directory)
        except OSError as e:
            raise DirectoryError(directory, e.strerror or str(e)) from e

        return await loop.run_in_executor(
            self.executor, self._scan_entries, entries, options, 0
        )

    async def scan_file(self, path: Path, options: Optional[ScanOptions] = None) -> Optional[FileRecord]:
        """Build a record for a single file (used for watcher events)."""
        options = options or ScanOptions()
        path = Path(path).expanduser().absolute()
        if should_ignore(path.name, options.ignore_patterns):
            return None
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, build_record, path, options)

    async def scan_folder_structure(self,
                                    root: Path,
                                    max_depth: int = 3,
                                    max_folders: int = 100,
                                    include_empty: bool = False,
                                    ignore: Iterable[str] = ()) -> List[str]:
        """List existing subfolders of ``root`` as relative POSIX paths.

        Shallower folders come first, then alphabetical order. Empty folders
        are left out unless ``include_empty`` is set.
        """
        root = Path(root).expanduser().absolute()
        ignore = list(ignore)

        def _walk() -> List[str]:
            folders: List[str] = []
            self._collect_folders(root, root, 0, max_depth, include_empty,
                                  ignore, folders, max_folders)
            folders.sort(key=lambda rel: (rel.count("/"), rel))
            return folders[:max_folders]

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, _walk)

    @staticmethod
    def _list_entries(directory: Path) -> List[os.DirEntry]:
        with os.scandir(directory) as it:
            return sorted(it, key=lambda entry: entry.name)

    def _scan_entries(self, entries: List[os.DirEntry], options: ScanOptions,
                      depth: int) -> List[FileRecord]:
        records: List[FileRecord] = []

        for entry in entries:
            if should_ignore(entry.name, options.ignore_patterns):
                continue

            path = Path(entry.path)
            # Symlinks are skipped so link cycles and aliases never repeat a file.
            try:
                is_file = entry.is_file(follow_symlinks=False)
                is_dir = not is_file and entry.is_dir(follow_symlinks=False)
            except OSError as e:
                logger.warning(f"Could not inspect {path}: {e}")
                continue

            if is_file:
                record = build_record(path, options)
                if record is not None:
                    records.append(record)
            elif is_dir and options.recursive and (
                    options.max_depth == 0 or depth < options.max_depth):
                try:
                    children = self._list_entries(path)
                except OSError as e:
                    logger.warning(f"Skipping unreadable directory {path}: {e}")
                    self.skipped.append(path)
                    continue
                records.extend(self._scan_entries(children, options, depth + 1))

        return records

    def _collect_folders(self, base: Path, current: Path, depth: int, max_depth: int,
                         include_empty: bool, ignore: List[str],
                         folders: List[str], max_folders: int) -> None:
        if depth >= max_depth or len(folders) >= max_folders:
            return

        try:
            entries = self._list_entries(current)
        except OSError as e:
            logger.debug(f"Skipping unreadable folder {current}: {e}")
            return

        for entry in entries:
            if len(folders) >= max_folders:
                break
            if entry.name.startswith(".") or should_ignore(entry.name, ignore):
                continue
            try:
                if not entry.is_dir(follow_symlinks=False):
                    continue
            except OSError:
                continue

            full_path = Path(entry.path)
            if not include_empty:
                try:
                    with os.scandir(full_path) as it:
                        if next(it, None) is None:
                            continue
                except OSError:
                    continue

            folders.append(full_path.relative_to(base).as_posix())
            self._collect_folders(base, full_path, depth + 1, max_depth,
                                  include_empty, ignore, folders, max_folders)

    def close(self) -> None:
        self.executor.shutdown(wait=True)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
