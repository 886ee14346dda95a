"""Install locations and the environment lock.

An install location only identifies paths. There are two kinds:

- :class:`Venv`: a single-version virtual environment; every package
  shares one ``site-packages`` and one scripts directory.
- :class:`Monotrail`: a multi-version record store; every
  ``(name, version)`` pair gets its own prefix below the store root, so
  several versions of a package can be installed side by side.

Both are plain frozen dataclasses joined in the closed :data:`InstallLocation`
union. The functions in this module dispatch on the variant explicitly.

Mutating a location requires a :class:`LockedDir`, obtained from
:func:`acquire_lock`. The lock is an OS-level advisory lock on a file at
the location root (via :mod:`filelock`), so it is released when the
process dies and a killed install can simply be retried.

Lock policy: acquisition fails fast by default. ``timeout=0`` raises
:exc:`EnvironmentLockedError` at once when another installer holds the
lock, a positive timeout waits that many seconds, and a negative timeout
blocks until the lock is free.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type, Union

from filelock import FileLock, Timeout
from packaging.utils import canonicalize_name

from wheelkeeper.constants import DEFAULT_LOCK_TIMEOUT, LOCK_FILENAME
from wheelkeeper.exceptions import BrokenEnvironmentError, EnvironmentLockedError
from wheelkeeper.utils.logger import get_logger

logger = get_logger("location")

_WINDOWS = os.name == "nt"


@dataclass(frozen=True)
class Venv:
    """A virtual environment.

    Attributes:
        venv_base: Root of the virtual environment.
        python_version: ``(major, minor)`` of its interpreter.
    """

    venv_base: Path
    python_version: Tuple[int, int]


@dataclass(frozen=True)
class Monotrail:
    """A multi-version package store.

    Attributes:
        monotrail_root: Root directory of the store.
        python: Interpreter used for launcher scripts.
        python_version: ``(major, minor)`` of that interpreter.
    """

    monotrail_root: Path
    python: Path
    python_version: Tuple[int, int]


InstallLocation = Union[Venv, Monotrail]


@dataclass(frozen=True)
class InstallPaths:
    """Destination directories for one distribution.

    The keys mirror the wheel ``.data`` categories (purelib, platlib,
    headers, scripts, data).
    """

    purelib: Path
    platlib: Path
    headers: Path
    scripts: Path
    data: Path

    def __getitem__(self, category: str) -> Path:
        if category in ("purelib", "platlib", "headers", "scripts", "data"):
            return getattr(self, category)
        raise KeyError(f"Not a known install path: {category}")


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------


def _unsupported(location: object) -> TypeError:
    return TypeError(f"Unknown install location: {location!r}")


def _prefix_layout(prefix: Path, python_version: Tuple[int, int]) -> Tuple[Path, Path]:
    """Return ``(site_packages, scripts)`` below an installation prefix."""
    if _WINDOWS:
        return prefix / "Lib" / "site-packages", prefix / "Scripts"
    major, minor = python_version
    return (
        prefix / "lib" / f"python{major}.{minor}" / "site-packages",
        prefix / "bin",
    )


def root(location: InstallLocation) -> Path:
    """The directory the lock and staging area live in."""
    if isinstance(location, Venv):
        return location.venv_base
    if isinstance(location, Monotrail):
        return location.monotrail_root
    raise _unsupported(location)


def python_version(location: InstallLocation) -> Tuple[int, int]:
    if isinstance(location, (Venv, Monotrail)):
        return location.python_version
    raise _unsupported(location)


def interpreter(location: InstallLocation) -> Path:
    """The interpreter that launcher scripts should run."""
    if isinstance(location, Venv):
        _, scripts = _prefix_layout(location.venv_base, location.python_version)
        return scripts / ("python.exe" if _WINDOWS else "python")
    if isinstance(location, Monotrail):
        return location.python
    raise _unsupported(location)


def package_prefix(location: InstallLocation, name: str, version: str) -> Path:
    """Installation prefix of one distribution."""
    if isinstance(location, Venv):
        return location.venv_base
    if isinstance(location, Monotrail):
        return location.monotrail_root / normalize_name(name) / version
    raise _unsupported(location)


def install_paths(location: InstallLocation, name: str, version: str) -> InstallPaths:
    """Destination directories for distribution ``name`` ``version``."""
    prefix = package_prefix(location, name, version)
    site_packages, scripts = _prefix_layout(prefix, python_version(location))

    if isinstance(location, Venv):
        major, minor = location.python_version
        headers = prefix / "include" / "site" / f"python{major}.{minor}" / name
    elif isinstance(location, Monotrail):
        headers = prefix / "include"
    else:
        raise _unsupported(location)

    return InstallPaths(
        purelib=site_packages,
        platlib=site_packages,
        headers=headers,
        scripts=scripts,
        data=prefix,
    )


def lock_path(location: InstallLocation) -> Path:
    return root(location) / LOCK_FILENAME


def installer_metadata(
    location: InstallLocation,
    *,
    name: str,
    version: str,
    tag: str,
) -> Dict[str, str]:
    """Extra ``.dist-info`` files a location records after an install.

    Returns:
        Mapping of file name to text content. Empty for a venv; a monotrail
        store records which interpreter and tag the prefix was built for.
    """
    if isinstance(location, Venv):
        return {}
    if isinstance(location, Monotrail):
        record: Dict[str, Any] = {
            "name": name,
            "version": version,
            "tag": tag,
            "python": str(location.python),
            "python_version": ".".join(str(part) for part in location.python_version),
        }
        return {"monotrail.json": json.dumps(record, sort_keys=True) + "\n"}
    raise _unsupported(location)


def check_layout(location: InstallLocation) -> None:
    """Verify that the location looks like what it claims to be.

    Raises:
        BrokenEnvironmentError: The interpreter or package root is missing.
    """
    base = root(location)
    if not base.is_dir():
        raise BrokenEnvironmentError(
            f"Install location is not a directory: {base}", location=str(base)
        )

    if isinstance(location, Venv):
        packages_dir, _ = _prefix_layout(base, location.python_version)
        if not packages_dir.is_dir():
            raise BrokenEnvironmentError(
                f"Expected a site-packages directory at {packages_dir}",
                location=str(base),
            )
        python = interpreter(location)
        if not python.exists():
            raise BrokenEnvironmentError(
                f"Expected an interpreter at {python}", location=str(base)
            )
    elif not isinstance(location, Monotrail):
        raise _unsupported(location)


def normalize_name(name: str) -> str:
    """Normalize a distribution name the way wheel filenames escape it."""
    return canonicalize_name(name).replace("-", "_")


# ---------------------------------------------------------------------------
# Locking
# ---------------------------------------------------------------------------


class LockedDir:
    """Proof of exclusive mutation rights over an install location.

    Use it as a context manager; the lock is released when the block
    exits, whether it completes or raises.

    Example::

        >>> with acquire_lock(Venv(Path(".venv"), (3, 11))) as locked:
        ...     install_wheel(locked, "six-1.16.0-py2.py3-none-any.whl")
    """

    __slots__ = ("location", "_lock")

    def __init__(self, location: InstallLocation, lock: FileLock) -> None:
        self.location = location
        self._lock = lock

    @property
    def path(self) -> Path:
        return root(self.location)

    @property
    def is_locked(self) -> bool:
        return self._lock.is_locked

    def release(self) -> None:
        """Release the lock. Safe to call more than once."""
        if self._lock.is_locked:
            self._lock.release(force=True)
            logger.debug("Released lock on %s", self.path)

    def __enter__(self) -> "LockedDir":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Any,
    ) -> None:
        self.release()

    def __del__(self) -> None:
        # Last resort for handles that were never used as a context manager
        lock = getattr(self, "_lock", None)
        if lock is not None and lock.is_locked:
            lock.release(force=True)

    def __repr__(self) -> str:
        return f"LockedDir(location={self.location!r}, locked={self.is_locked})"


def acquire_lock(
    location: InstallLocation,
    *,
    timeout: Optional[float] = None,
) -> LockedDir:
    """Lock an install location for mutation.

    Args:
        location: The location to lock.
        timeout: Seconds to wait for a lock held elsewhere. ``0`` fails
            immediately, a negative value waits forever. ``None`` uses
            the fail-fast default.

    Returns:
        A :class:`LockedDir` that releases the lock on scope exit.

    Raises:
        BrokenEnvironmentError: The location lacks its expected layout.
        EnvironmentLockedError: The lock is held and the timeout expired.
    """
    check_layout(location)
    if timeout is None:
        timeout = DEFAULT_LOCK_TIMEOUT

    path = lock_path(location)
    lock = FileLock(str(path))
    logger.debug("Acquiring lock %s (timeout=%s)", path, timeout)

    try:
        lock.acquire(timeout=timeout)
    except Timeout as exc:
        raise EnvironmentLockedError(
            f"Another process is installing into {root(location)}",
            lock_path=str(path),
            timeout=timeout,
        ) from exc
    except OSError as exc:
        raise BrokenEnvironmentError(
            f"Cannot create lock file {path}: {exc}",
            location=str(root(location)),
        ) from exc

    return LockedDir(location, lock)
