"""
Wheel installation.

:func:`install_wheel` unpacks a ``.whl`` archive into a locked install
location:

1. Select the best compatible tag from the filename; nothing is touched
   if the wheel does not fit the environment.
2. Open the archive and verify every member against RECORD.
3. Stage the files inside the target root, spreading ``.data``
   categories to their directories and rewriting ``#!python`` shebangs.
4. Generate launchers for ``console_scripts`` and ``gui_scripts``.
5. Write the installer metadata (``INSTALLER``, ``REQUESTED``,
   ``direct_url.json``) and a fresh RECORD.
6. Move the staged files into place. If anything fails, every file that
   was created is removed and every file that was replaced is restored.

The ``.dist-info`` directory is committed last, and its RECORD after
everything else, so an interrupted install never looks complete.
"""

from __future__ import annotations

import configparser
import json
import os
import posixpath
import re
import zipfile
import zlib
from dataclasses import dataclass, field
from email.parser import HeaderParser
from pathlib import Path
from textwrap import dedent
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from packaging.utils import canonicalize_name

from wheelkeeper.constants import (
    DEFAULT_INSTALLER,
    DIRECT_URL_FILENAME,
    RELOCATABLE_SHEBANG,
    WHEEL_DATA_CATEGORIES,
)
from wheelkeeper.core.location import (
    InstallPaths,
    LockedDir,
    install_paths,
    installer_metadata,
    interpreter,
    python_version,
    root,
)
from wheelkeeper.core.record import (
    RecordEntry,
    entry_for_bytes,
    is_unhashed,
    verify_archive,
    write_record,
)
from wheelkeeper.core.tags import CompatibleTags, WheelFilename
from wheelkeeper.exceptions import (
    ArchiveCorruptionError,
    BrokenEnvironmentError,
    FileOperationError,
    InstallIOError,
    InvalidWheelError,
    SerializationError,
)
from wheelkeeper.utils.filesystem import (
    make_executable,
    remove_path,
    remove_stale_staging,
    staging_directory,
)
from wheelkeeper.utils.logger import get_logger

logger = get_logger("wheel")

PathLike = Union[str, Path]

# ``#!python`` and ``#!pythonw``, optionally with single-letter switches
_SCRIPT_SHEBANG = re.compile(rb"^#!pythonw?(?P<args>(?: -[a-zA-Z]+)?)\r?$")

# Kernels truncate longer shebang lines
_MAX_SHEBANG_LENGTH = 127

_LAUNCHER_TEMPLATE = dedent(
    """\
    {shebang}
    # -*- coding: utf-8 -*-
    import re
    import sys

    from {module} import {import_name}

    if __name__ == "__main__":
        sys.argv[0] = re.sub(r"(-script\\.pyw|\\.exe)?$", "", sys.argv[0])
        sys.exit({call}())
    """
)


# ---------------------------------------------------------------------------
# Archive inspection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EntryPoint:
    """A ``console_scripts`` or ``gui_scripts`` entry."""

    name: str
    module: str
    attribute: str
    group: str

    @classmethod
    def parse(cls, name: str, value: str, group: str) -> "EntryPoint":
        """
        Parse ``module:attr [extras]``.

        Raises:
            ValueError: The value lacks the ``:`` separator.
        """
        reference = value.partition("[")[0].strip()
        module, separator, attribute = reference.partition(":")
        module, attribute = module.strip(), attribute.strip()
        if not separator or not module or not attribute:
            raise ValueError(
                f"The entry point {name!r} must name a module and a callable "
                f"separated by ':', found {value!r}"
            )
        return cls(name=name, module=module, attribute=attribute, group=group)


def parse_entry_points(content: str) -> List[EntryPoint]:
    """
    Read launcher entry points from ``entry_points.txt``.

    Only the ``console_scripts`` and ``gui_scripts`` groups are returned.

    Raises:
        ValueError: The file is not valid INI or an entry is malformed.
    """
    parser = configparser.ConfigParser(delimiters=("=",), interpolation=None)
    parser.optionxform = str  # type: ignore[assignment,method-assign]
    try:
        parser.read_string(content)
    except configparser.Error as e:
        raise ValueError(f"Invalid entry_points.txt: {e}") from e

    entry_points: List[EntryPoint] = []
    for group in ("console_scripts", "gui_scripts"):
        if not parser.has_section(group):
            continue
        for name, value in parser.items(group):
            entry_points.append(EntryPoint.parse(name, value, group))
    return entry_points


@dataclass
class WheelArchive:
    """An opened and verified wheel.

    Attributes:
        path: Wheel file on disk.
        filename: Parsed wheel filename.
        archive: Open zip archive.
        dist_info: Archive name of the ``.dist-info`` directory.
        record: RECORD rows keyed by archive path, verified.
    """

    path: Path
    filename: WheelFilename
    archive: zipfile.ZipFile
    dist_info: str
    record: Dict[str, RecordEntry] = field(default_factory=dict)

    @property
    def data_dir(self) -> str:
        return self.dist_info[: -len(".dist-info")] + ".data"

    def metadata_path(self, *components: str) -> str:
        return posixpath.join(self.dist_info, *components)

    def read(self, name: str) -> bytes:
        return self.archive.read(name)

    def read_metadata(self, name: str) -> Optional[str]:
        try:
            return self.read(self.metadata_path(name)).decode("utf-8")
        except KeyError:
            return None
        except UnicodeDecodeError as e:
            raise InvalidWheelError(
                f"{self.metadata_path(name)} is not valid UTF-8: {e}",
                wheel_path=str(self.path),
            ) from e

    def members(self) -> Iterator[zipfile.ZipInfo]:
        for info in self.archive.infolist():
            if not info.is_dir():
                yield info


def _find_dist_info(archive: zipfile.ZipFile, filename: WheelFilename, wheel_path: str) -> str:
    candidates = sorted(
        {
            name.split("/", 1)[0]
            for name in archive.namelist()
            if name.split("/", 1)[0].endswith(".dist-info") and "/" in name
        }
    )
    if len(candidates) != 1:
        raise InvalidWheelError(
            f"Expected exactly one .dist-info directory, found {len(candidates)}",
            wheel_path=wheel_path,
        )

    dist_info = candidates[0]
    project = dist_info[: -len(".dist-info")].partition("-")[0]
    if canonicalize_name(project) != canonicalize_name(filename.distribution):
        raise InvalidWheelError(
            f"The .dist-info directory {dist_info} does not match the "
            f"distribution {filename.distribution}",
            wheel_path=wheel_path,
        )
    return dist_info


def _check_wheel_metadata(wheel: WheelArchive) -> None:
    content = wheel.read_metadata("WHEEL")
    if content is None:
        raise InvalidWheelError(
            f"Missing {wheel.metadata_path('WHEEL')}", wheel_path=str(wheel.path)
        )

    version = HeaderParser().parsestr(content).get("Wheel-Version", "").strip()
    major = version.partition(".")[0]
    if not major.isdigit():
        raise InvalidWheelError(
            f"Missing or invalid Wheel-Version: {version!r}", wheel_path=str(wheel.path)
        )
    if int(major) > 1:
        raise InvalidWheelError(
            f"Unsupported Wheel-Version {version}", wheel_path=str(wheel.path)
        )


def open_wheel(wheel_path: PathLike, filename: Optional[WheelFilename] = None) -> WheelArchive:
    """
    Open a wheel and verify it against its RECORD.

    The caller owns the returned archive and must close it.

    Raises:
        InstallIOError: The file cannot be opened.
        ArchiveCorruptionError: The file is not a valid zip archive or a
            member fails its CRC check.
        InvalidWheelError: The metadata layout is wrong.
        RecordMismatchError: A member differs from its RECORD row.
    """
    path = Path(wheel_path)
    if filename is None:
        filename = WheelFilename.from_filename(path.name)

    try:
        archive = zipfile.ZipFile(path)
    except zipfile.BadZipFile as e:
        raise ArchiveCorruptionError(
            f"Not a valid zip archive: {path}", wheel_path=str(path), original_error=e
        ) from e
    except OSError as e:
        raise InstallIOError(
            f"Failed to open wheel: {e}",
            file_path=str(path),
            operation="open",
            original_error=e,
        ) from e

    try:
        dist_info = _find_dist_info(archive, filename, str(path))
        wheel = WheelArchive(path=path, filename=filename, archive=archive, dist_info=dist_info)
        _check_wheel_metadata(wheel)
        wheel.record = verify_archive(
            archive, wheel.metadata_path("RECORD"), wheel_path=str(path)
        )
    except (zipfile.BadZipFile, zlib.error, EOFError) as e:
        archive.close()
        raise ArchiveCorruptionError(
            f"Corrupt archive member in {path}: {e}",
            wheel_path=str(path),
            original_error=e,
        ) from e
    except BaseException:
        archive.close()
        raise

    return wheel


# ---------------------------------------------------------------------------
# Scripts
# ---------------------------------------------------------------------------


def create_shebang(python: str, args: str = "") -> str:
    """
    Return a shebang that runs ``python``.

    Interpreter paths with spaces, or too long for the kernel, go
    through a ``/bin/sh`` trampoline.
    """
    shebang = f"#!{python}{args}"
    if " " not in python and len(shebang) <= _MAX_SHEBANG_LENGTH:
        return shebang
    return f"#!/bin/sh\n'''exec' \"{python}\"{args} \"$0\" \"$@\"\n' '''"


def rewrite_script_shebang(
    content: bytes, *, python: str, relocatable: bool = False
) -> Optional[bytes]:
    """
    Replace a ``#!python`` first line with a real interpreter.

    Returns:
        The rewritten script, or ``None`` if it has no ``#!python`` line.
    """
    first_line, newline, rest = content.partition(b"\n")
    match = _SCRIPT_SHEBANG.match(first_line)
    if match is None:
        return None

    if relocatable:
        shebang = RELOCATABLE_SHEBANG
    else:
        shebang = create_shebang(python, match.group("args").decode("ascii"))
    return shebang.encode("utf-8") + b"\n" + rest


def launcher_script(entry_point: EntryPoint, *, python: str, relocatable: bool = False) -> str:
    """Source of the launcher for ``entry_point``."""
    import_name = entry_point.attribute.split(".", 1)[0]
    return _LAUNCHER_TEMPLATE.format(
        shebang=RELOCATABLE_SHEBANG if relocatable else create_shebang(python),
        module=entry_point.module,
        import_name=import_name,
        call=entry_point.attribute,
    )


# ---------------------------------------------------------------------------
# Staging and commit
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StagedFile:
    """A file written to the staging area, waiting to be moved into place."""

    staged: Path
    target: Path
    executable: bool = False


class Stager:
    """
    Writes files into the staging area and keeps the new RECORD.

    RECORD paths are relative to site-packages, with forward slashes.
    """

    def __init__(self, staging: Path, site_packages: Path) -> None:
        self._staging = staging
        self._site_packages = site_packages
        self._files: List[StagedFile] = []
        self._targets: Dict[Path, int] = {}
        self._record: Dict[str, RecordEntry] = {}

    @property
    def files(self) -> List[StagedFile]:
        return list(self._files)

    def has_target(self, target: Path) -> bool:
        return target in self._targets

    def record_path(self, target: Path) -> str:
        return Path(os.path.relpath(target, self._site_packages)).as_posix()

    def stage(self, target: Path, data: bytes, *, executable: bool = False) -> StagedFile:
        staged = self._staging / f"{len(self._files):06d}"
        with open(staged, "wb") as fp:
            fp.write(data)
        if executable:
            make_executable(staged)

        staged_file = StagedFile(staged=staged, target=target, executable=executable)
        if target in self._targets:
            # A later member for the same target wins
            self._files[self._targets[target]] = staged_file
        else:
            self._targets[target] = len(self._files)
            self._files.append(staged_file)

        path = self.record_path(target)
        self._record[path] = entry_for_bytes(path, data)
        return staged_file

    def record_entries(self, record_target: Path) -> List[RecordEntry]:
        entries = [entry for path, entry in sorted(self._record.items())]
        entries.append(RecordEntry(path=self.record_path(record_target)))
        return entries


class Transaction:
    """
    Moves staged files into place and undoes the moves on failure.

    Replaced files are parked in the staging area so rollback can put
    them back.
    """

    def __init__(self, backup_dir: Path) -> None:
        self._backup_dir = backup_dir
        self._created: List[Path] = []
        self._created_dirs: List[Path] = []
        self._backups: List[Tuple[Path, Path]] = []

    def _make_parents(self, directory: Path) -> None:
        missing: List[Path] = []
        current = directory
        while not current.exists():
            missing.append(current)
            current = current.parent
        directory.mkdir(parents=True, exist_ok=True)
        self._created_dirs.extend(reversed(missing))

    def move(self, staged_file: StagedFile) -> None:
        target = staged_file.target
        self._make_parents(target.parent)

        if target.is_dir() and not target.is_symlink():
            raise IsADirectoryError(
                f"Cannot replace directory {target} with a file"
            )
        if target.exists() or target.is_symlink():
            self._backup_dir.mkdir(exist_ok=True)
            backup = self._backup_dir / f"{len(self._backups):06d}"
            os.replace(target, backup)
            self._backups.append((target, backup))

        os.replace(staged_file.staged, target)
        self._created.append(target)

    def rollback(self) -> None:
        """Undo every move. Problems are logged, never raised."""
        for path in reversed(self._created):
            remove_path(path)

        for target, backup in reversed(self._backups):
            try:
                os.replace(backup, target)
            except OSError as e:
                logger.warning("Failed to restore %s from %s: %s", target, backup, e)

        for directory in reversed(self._created_dirs):
            try:
                directory.rmdir()
            except OSError as e:
                logger.debug("Leaving directory %s in place: %s", directory, e)

        logger.debug(
            "Rolled back %d file(s) and restored %d file(s)",
            len(self._created),
            len(self._backups),
        )


def _destination(
    wheel: WheelArchive, name: str, paths: InstallPaths
) -> Tuple[Path, Optional[str]]:
    """Map an archive member to ``(target, category)``.

    ``category`` is the ``.data`` category, or ``None`` for members
    installed to site-packages directly.

    Raises:
        InvalidWheelError: Unknown ``.data`` category or an escaping path.
    """
    category: Optional[str] = None
    base = paths.purelib
    relative = name

    data_prefix = wheel.data_dir + "/"
    if name.startswith(data_prefix):
        category, _, relative = name[len(data_prefix) :].partition("/")
        if category not in WHEEL_DATA_CATEGORIES:
            raise InvalidWheelError(
                f"Unknown wheel data category {category!r} in {name}",
                wheel_path=str(wheel.path),
            )
        base = paths[category]

    normalized = posixpath.normpath(relative) if relative else ""
    if (
        not normalized
        or normalized in (".", "..")
        or normalized.startswith("../")
        or posixpath.isabs(normalized)
        or "\\" in normalized
        or ":" in normalized.split("/", 1)[0]
    ):
        raise InvalidWheelError(
            f"Archive member {name!r} would be installed outside its target directory",
            wheel_path=str(wheel.path),
        )

    return base.joinpath(*normalized.split("/")), category


def _stage_members(
    wheel: WheelArchive,
    stager: Stager,
    paths: InstallPaths,
    *,
    python: str,
    relocatable: bool,
) -> None:
    for info in wheel.members():
        name = info.filename
        if is_unhashed(name, wheel.dist_info):
            continue

        target, category = _destination(wheel, name, paths)
        data = wheel.read(name)
        executable = bool((info.external_attr >> 16) & 0o111)

        if category == "scripts":
            rewritten = rewrite_script_shebang(data, python=python, relocatable=relocatable)
            if rewritten is not None:
                data = rewritten
            executable = True

        stager.stage(target, data, executable=executable)


def _stage_launchers(
    wheel: WheelArchive,
    stager: Stager,
    paths: InstallPaths,
    *,
    python: str,
    relocatable: bool,
) -> None:
    content = wheel.read_metadata("entry_points.txt")
    if content is None:
        return

    try:
        entry_points = parse_entry_points(content)
    except ValueError as e:
        raise InvalidWheelError(str(e), wheel_path=str(wheel.path)) from e

    for entry_point in entry_points:
        target = paths.scripts / entry_point.name
        if stager.has_target(target):
            logger.debug(
                "Script %s is shipped in the wheel; not generating a launcher",
                entry_point.name,
            )
            continue
        source = launcher_script(entry_point, python=python, relocatable=relocatable)
        stager.stage(target, source.encode("utf-8"), executable=True)


def direct_url(wheel_path: Path) -> str:
    """
    Serialize the PEP 610 ``direct_url.json`` for a local wheel.

    Raises:
        SerializationError: The URL cannot be serialized.
    """
    try:
        return json.dumps(
            {"archive_info": {}, "url": wheel_path.resolve().as_uri()},
            sort_keys=True,
            separators=(",", ":"),
        )
    except (TypeError, ValueError) as e:
        raise SerializationError(
            f"Failed to serialize {DIRECT_URL_FILENAME}: {e}", original_error=e
        ) from e


def _warn_unknown_extras(wheel: WheelArchive, extras: Sequence[str]) -> None:
    if not extras:
        return
    metadata = HeaderParser().parsestr(wheel.read_metadata("METADATA") or "")
    provided = {canonicalize_name(extra) for extra in metadata.get_all("Provides-Extra", [])}
    for extra in extras:
        if canonicalize_name(extra) not in provided:
            logger.warning(
                "%s %s does not provide the extra '%s'",
                wheel.filename.distribution,
                wheel.filename.version,
                extra,
            )


def install_wheel(
    locked_dir: LockedDir,
    wheel_path: PathLike,
    *,
    compatible_tags: Optional[CompatibleTags] = None,
    relocatable: bool = False,
    extras: Sequence[str] = (),
    sys_executable: Optional[PathLike] = None,
    installer: str = DEFAULT_INSTALLER,
) -> str:
    """
    Install a wheel into a locked location.

    Args:
        locked_dir: Lock handle of the target location.
        wheel_path: Path of the ``.whl`` file.
        compatible_tags: Tags the environment accepts. Computed for this
            machine and the location's Python version when omitted.
        relocatable: Write placeholder shebangs instead of the interpreter
            path, so the installed tree can be moved.
        extras: Extras the caller asked for. They do not change what is
            installed; unknown extras are reported.
        sys_executable: Interpreter for shebangs. Defaults to the
            location's interpreter.
        installer: Content of the ``INSTALLER`` file.

    Returns:
        The selected compatibility tag, e.g. ``"py3-none-any"``.

    Raises:
        InvalidWheelFilenameError: The filename does not follow the schema.
        IncompatibleWheelError: No tag fits the environment.
        BrokenEnvironmentError: ``locked_dir`` no longer holds its lock.
        ArchiveCorruptionError: The archive is unreadable.
        InvalidWheelError: The wheel layout is invalid.
        RecordMismatchError: The archive does not match RECORD.
        SerializationError: Installer metadata cannot be serialized.
        InstallIOError: A filesystem operation failed.
    """
    path = Path(wheel_path)
    location = locked_dir.location
    filename = WheelFilename.from_filename(path.name)

    if compatible_tags is None:
        compatible_tags = CompatibleTags.current(python_version(location))
    tag = compatible_tags.select(filename)
    logger.debug("Selected tag %s for %s", tag, filename)

    if not locked_dir.is_locked:
        raise BrokenEnvironmentError(
            "The install location is not locked", location=str(locked_dir.path)
        )

    python = str(sys_executable) if sys_executable else str(interpreter(location))
    paths = install_paths(location, filename.distribution, filename.version)

    wheel = open_wheel(path, filename)
    try:
        _warn_unknown_extras(wheel, extras)
        _install(
            wheel,
            locked_dir,
            paths,
            tag=str(tag),
            python=python,
            relocatable=relocatable,
            installer=installer,
        )
    except (zipfile.BadZipFile, zlib.error, EOFError) as e:
        raise ArchiveCorruptionError(
            f"Corrupt archive member in {path}: {e}",
            wheel_path=str(path),
            original_error=e,
        ) from e
    except FileOperationError as e:
        raise InstallIOError(
            e.message,
            file_path=e.file_path,
            operation=e.operation,
            original_error=e.original_error or e,
        ) from e
    except OSError as e:
        raise InstallIOError(
            f"Failed to install {filename}: {e}",
            file_path=e.filename,
            operation="install",
            original_error=e,
        ) from e
    finally:
        wheel.archive.close()

    logger.info("Installed %s (%s)", filename, tag)
    return str(tag)


def _install(
    wheel: WheelArchive,
    locked_dir: LockedDir,
    paths: InstallPaths,
    *,
    tag: str,
    python: str,
    relocatable: bool,
    installer: str,
) -> None:
    location = locked_dir.location
    filename = wheel.filename
    dist_info_dir = paths.purelib / wheel.dist_info
    record_target = dist_info_dir / "RECORD"

    remove_stale_staging(root(location))
    with staging_directory(root(location)) as staging:
        files_dir = staging / "files"
        files_dir.mkdir()
        stager = Stager(files_dir, paths.purelib)

        _stage_members(wheel, stager, paths, python=python, relocatable=relocatable)
        _stage_launchers(wheel, stager, paths, python=python, relocatable=relocatable)

        metadata: Dict[str, str] = {
            "INSTALLER": f"{installer}\n",
            "REQUESTED": "",
            DIRECT_URL_FILENAME: direct_url(wheel.path),
        }
        metadata.update(
            installer_metadata(
                location, name=filename.distribution, version=filename.version, tag=tag
            )
        )
        for name, content in metadata.items():
            stager.stage(dist_info_dir / name, content.encode("utf-8"))

        record = stager.stage(
            record_target,
            write_record(stager.record_entries(record_target)).encode("utf-8"),
        )
        logger.debug("Staged %d file(s) in %s", len(stager.files), staging)

        # dist-info last and RECORD at the very end
        ordered = sorted(
            (staged for staged in stager.files if staged is not record),
            key=lambda staged: dist_info_dir in staged.target.parents,
        )
        ordered.append(record)

        transaction = Transaction(staging / "backup")
        try:
            for staged in ordered:
                transaction.move(staged)
        except BaseException:
            logger.warning("Installation of %s failed, rolling back", filename)
            transaction.rollback()
            raise

        logger.debug("Committed %d file(s) for %s", len(ordered), filename)
