"""Low-level file relocation shared by the move executor and undo."""

import errno
import logging
import os
import shutil
from pathlib import Path

from ..exceptions import FileOperationError
from .duplicates import compute_file_hash

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".tidy-partial"
HELD_SUFFIX = ".tidy-replaced"


def rename_in_place(source: Path, destination: Path) -> None:
    """Atomic same-filesystem move; raises EXDEV across devices."""
    os.replace(source, destination)


def copy_across_devices(source: Path, destination: Path, verify: bool = True) -> None:
    """Copy ``source`` to ``destination`` and then remove ``source``.

    The copy is written to a hidden sibling first and only swapped into
    place once its size (and digest, with ``verify``) matches. A file already
    at ``destination`` is set aside until the source is gone, so on any
    failure the tree is left as it was: source in place, previous
    destination restored, no partial copy.
    """
    partial = destination.with_name(f".{destination.name}{PARTIAL_SUFFIX}")
    held = destination.with_name(f".{destination.name}{HELD_SUFFIX}")
    holding = False
    try:
        shutil.copy2(source, partial)
        if partial.stat().st_size != source.stat().st_size:
            raise FileOperationError(f"Size mismatch copying {source} to {destination}")
        if verify and compute_file_hash(partial) != compute_file_hash(source):
            raise FileOperationError(f"Checksum mismatch copying {source} to {destination}")
        if os.path.lexists(destination):
            os.replace(destination, held)
            holding = True
        os.replace(partial, destination)
    except BaseException:
        try:
            partial.unlink()
        except FileNotFoundError:
            pass
        if holding and not os.path.lexists(destination):
            os.replace(held, destination)
        raise

    try:
        os.unlink(source)
    except OSError as e:
        if holding:
            os.replace(held, destination)
        else:
            destination.unlink()
        raise FileOperationError(f"Copied {source} but could not remove it: {e}") from e

    if holding:
        try:
            held.unlink()
        except OSError as e:
            logger.warning(f"Could not remove replaced file {held}: {e}")


def relocate(source: Path, destination: Path, verify: bool = True) -> None:
    """Move a file, falling back to copy-then-delete across filesystems."""
    try:
        rename_in_place(source, destination)
        return
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise

    logger.info(f"Cross-device move, copying {source} to {destination}")
    copy_across_devices(source, destination, verify)
