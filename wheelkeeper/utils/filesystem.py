"""
Filesystem utilities for wheelkeeper.

This module provides bounded reads of requirement files, staging of wheel
contents inside a target environment and removal of files during rollback. Filesystem errors are normalized
to ``FileOperationError``.
"""

from __future__ import annotations

import os
import stat
import errno
import shutil
import tempfile
from pathlib import Path
from contextlib import contextmanager
from typing import Iterator, Optional, Union

from wheelkeeper.utils.logger import get_logger
from wheelkeeper.exceptions import FileOperationError
from wheelkeeper.constants import MAX_FILE_SIZE, STAGING_PREFIX


logger = get_logger("filesystem")

PathLike = Union[str, Path]


def _validated_file(path: Path, *, must_exist: bool = True) -> Path:
    """Validate and resolve a file path."""
    if must_exist:
        if not path.exists():
            raise FileOperationError(
                f"File not found: {path}",
                file_path=str(path),
                operation="read",
                original_error=FileNotFoundError(
                    errno.ENOENT, os.strerror(errno.ENOENT), str(path)
                ),
            )
        if not path.is_file():
            raise FileOperationError(
                f"Not a file: {path}",
                file_path=str(path),
                operation="read",
            )
    return path.resolve()


def safe_read_bytes(
    file_path: PathLike,
    *,
    max_size: Optional[int] = MAX_FILE_SIZE,
) -> bytes:
    """Safely read a file as raw bytes with optional size limits.

    Args:
        file_path: Path to the file.
        max_size: Maximum allowed file size in bytes (None disables limit).

    Returns:
        File contents.
    """
    path = _validated_file(Path(file_path))
    size = path.stat().st_size

    if max_size is not None and size > max_size:
        raise FileOperationError(
            f"File too large: {size} bytes (max {max_size})",
            file_path=str(path),
            operation="read",
        )

    try:
        return path.read_bytes()
    except OSError as exc:
        raise FileOperationError(
            f"Failed to read file: {exc}",
            file_path=str(path),
            operation="read",
            original_error=exc,
        ) from exc


def make_executable(path: PathLike) -> None:
    """Add the executable bits wherever the read bits are set."""
    mode = os.stat(path).st_mode
    mode |= (mode & 0o444) >> 2
    os.chmod(path, mode | stat.S_IXUSR)


def remove_path(path: PathLike) -> bool:
    """Remove a file or directory tree, logging instead of raising.

    Used on rollback paths where the original error must win.

    Returns:
        ``True`` if the path is gone afterwards.
    """
    target = Path(path)
    try:
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        elif target.exists() or target.is_symlink():
            target.unlink()
        return True
    except OSError as exc:
        logger.warning("Failed to remove %s: %s", target, exc)
        return False


@contextmanager
def staging_directory(parent: PathLike) -> Iterator[Path]:
    """Create a private staging directory inside ``parent``.

    Staging next to the destination keeps the final moves on the same
    filesystem, so ``os.replace`` stays atomic per file. The directory and
    whatever remains in it are removed when the block exits.
    """
    parent_path = Path(parent)
    try:
        staging = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=str(parent_path)))
    except OSError as exc:
        raise FileOperationError(
            f"Failed to create staging directory: {exc}",
            file_path=str(parent_path),
            operation="stage",
            original_error=exc,
        ) from exc

    logger.debug("Created staging directory: %s", staging)
    try:
        yield staging
    finally:
        remove_path(staging)


def remove_stale_staging(parent: PathLike) -> int:
    """Remove staging directories left in ``parent`` by killed installs.

    Only call this while holding the environment lock; a live install
    owns its staging directory until it releases the lock.

    Returns:
        Number of directories removed.
    """
    removed = 0
    for entry in Path(parent).glob(f"{STAGING_PREFIX}*"):
        if entry.is_dir() and not entry.is_symlink():
            logger.info("Removing stale staging directory: %s", entry)
            if remove_path(entry):
                removed += 1
    return removed
