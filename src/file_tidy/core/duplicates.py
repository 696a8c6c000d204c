"""Duplicate content detection over scanned files."""

import asyncio
import hashlib
import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..models.file_record import DuplicateGroup, FileRecord

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536


def compute_file_hash(file_path: Path) -> Optional[str]:
    """Whole-file MD5 digest, or None if the file can't be read.

    MD5 is used for speed; this is similarity detection, not security.
    """
    h = hashlib.md5()
    try:
        with open(file_path, 'rb') as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
                h.update(chunk)
    except OSError as e:
        logger.warning(f"Could not hash {file_path}: {e}")
        return None
    return h.hexdigest()


class DuplicateDetector:
    """Group files with identical content."""

    def __init__(self, max_workers: int = 4, max_concurrent: int = 8):
        self.executor = ThreadPoolExecutor(max_workers=max_workers)
        self.max_concurrent = max_concurrent

    async def hash_files(self, files: Sequence[FileRecord]) -> List[FileRecord]:
        """Return records with ``content_hash`` filled in.

        Records that already carry a hash are reused as is. Files that can't
        be read are dropped from the result.
        """
        loop = asyncio.get_running_loop()
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def _hash(record: FileRecord) -> Optional[FileRecord]:
            if record.content_hash:
                return record
            async with semaphore:
                digest = await loop.run_in_executor(self.executor, compute_file_hash, record.path)
            return record.with_hash(digest) if digest else None

        hashed = await asyncio.gather(*[_hash(record) for record in files])
        return [record for record in hashed if record is not None]

    async def detect(self, files: Sequence[FileRecord],
                     compute_hashes: bool = False) -> List[DuplicateGroup]:
        """Find groups of identical files, largest waste first.

        Hashing every file is expensive, so it only happens when
        ``compute_hashes`` is set; otherwise only records that already carry
        a ``content_hash`` take part.
        """
        if compute_hashes:
            records = await self.hash_files(files)
        else:
            records = [record for record in files if record.content_hash]

        return self.group(records)

    @staticmethod
    def group(records: Sequence[FileRecord]) -> List[DuplicateGroup]:
        by_hash: Dict[str, List[FileRecord]] = defaultdict(list)
        for record in records:
            by_hash[record.content_hash].append(record)

        groups = [
            DuplicateGroup(hash=digest, files=tuple(members))
            for digest, members in by_hash.items()
            if len(members) > 1
        ]
        groups.sort(key=lambda group: group.wasted_bytes, reverse=True)

        if groups:
            logger.info(f"Found {len(groups)} duplicate groups "
                        f"({sum(g.wasted_bytes for g in groups)} bytes wasted)")
        return groups

    def close(self) -> None:
        self.executor.shutdown(wait=True)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
