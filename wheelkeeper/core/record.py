"""
RECORD manifest handling.

A wheel's ``.dist-info/RECORD`` is a headerless CSV with three columns:
the archive path, ``algorithm=digest`` (urlsafe base64 without padding)
and the size in bytes. The manifest itself and its signatures are listed
without hash and size.

This module reads and writes that format and verifies an archive against
it before anything is extracted.
"""

from __future__ import annotations

import base64
import csv
import hashlib
import io
import posixpath
import zipfile
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from wheelkeeper.constants import RECORD_HASH_ALGORITHM, RECORD_UNHASHED_FILES
from wheelkeeper.exceptions import InvalidWheelError, RecordMismatchError
from wheelkeeper.utils.logger import get_logger

logger = get_logger("record")

# Too weak to vouch for archive contents
_REJECTED_ALGORITHMS = frozenset({"md5", "sha1"})

_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class RecordEntry:
    """
    One RECORD row.

    Attributes:
        path: Forward-slash path, relative to the install root.
        hash: ``algorithm=digest``, or ``None`` when the row is unhashed.
        size: File size in bytes, or ``None``.
    """

    path: str
    hash: Optional[str] = None
    size: Optional[int] = None

    @property
    def algorithm(self) -> Optional[str]:
        if not self.hash:
            return None
        return self.hash.partition("=")[0]

    @property
    def digest(self) -> Optional[str]:
        if not self.hash:
            return None
        return self.hash.partition("=")[2]

    def to_row(self) -> Tuple[str, str, str]:
        return (
            self.path,
            self.hash or "",
            "" if self.size is None else str(self.size),
        )


def encode_digest(raw: bytes) -> str:
    """Urlsafe base64 without trailing ``=`` padding."""
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def hash_bytes(data: bytes, algorithm: str = RECORD_HASH_ALGORITHM) -> str:
    """Return the RECORD hash column for ``data``.

    Example::

        >>> hash_bytes(b"")
        'sha256=47DEQpj8HBSa-_TImW-5JCeuQeRkm5NMpJWZG3hSuFU'
    """
    return f"{algorithm}={encode_digest(hashlib.new(algorithm, data).digest())}"


def entry_for_bytes(path: str, data: bytes) -> RecordEntry:
    """Build a RECORD row for content about to be installed at ``path``."""
    return RecordEntry(path=path, hash=hash_bytes(data), size=len(data))


def is_unhashed(path: str, dist_info: str) -> bool:
    """Whether ``path`` is the RECORD of ``dist_info`` or one of its signatures."""
    return any(path == f"{dist_info}/{name}" for name in RECORD_UNHASHED_FILES)


def read_record(content: str, *, wheel_path: Optional[str] = None) -> List[RecordEntry]:
    """
    Parse RECORD text.

    Args:
        content: Decoded RECORD file.
        wheel_path: Wheel the manifest belongs to (diagnostics only).

    Returns:
        Rows in file order.

    Raises:
        InvalidWheelError: A row has the wrong shape or a non-integer size.
    """
    entries: List[RecordEntry] = []

    for line_number, row in enumerate(csv.reader(io.StringIO(content)), 1):
        if not row:
            continue
        if len(row) != 3:
            raise InvalidWheelError(
                f"RECORD line {line_number} has {len(row)} columns, expected 3",
                wheel_path=wheel_path,
            )

        path, hash_value, size = row
        if hash_value and "=" not in hash_value:
            raise InvalidWheelError(
                f"RECORD line {line_number} has a malformed hash: {hash_value!r}",
                wheel_path=wheel_path,
            )

        try:
            parsed_size = int(size) if size else None
        except ValueError:
            raise InvalidWheelError(
                f"RECORD line {line_number} has a malformed size: {size!r}",
                wheel_path=wheel_path,
            ) from None

        entries.append(RecordEntry(path=path, hash=hash_value or None, size=parsed_size))

    return entries


def write_record(entries: Iterable[RecordEntry]) -> str:
    """Render rows as RECORD text (LF line endings)."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    for entry in entries:
        writer.writerow(entry.to_row())
    return buffer.getvalue()


def _hash_member(
    archive: zipfile.ZipFile, info: zipfile.ZipInfo, algorithm: str
) -> Tuple[str, int]:
    # zipfile checks the CRC once the member is read to the end
    hasher = hashlib.new(algorithm)
    size = 0
    with archive.open(info) as member:
        for chunk in iter(lambda: member.read(_CHUNK_SIZE), b""):
            hasher.update(chunk)
            size += len(chunk)
    return f"{algorithm}={encode_digest(hasher.digest())}", size


def verify_archive(
    archive: zipfile.ZipFile,
    record_name: str,
    *,
    wheel_path: Optional[str] = None,
) -> Dict[str, RecordEntry]:
    """
    Check every archive member against RECORD.

    Directory entries and the unhashed manifest files are skipped. Every
    other member needs a row with a matching digest, and a matching size
    when the row has one.

    Args:
        archive: Open wheel archive.
        record_name: Archive path of the RECORD file.
        wheel_path: Wheel path (diagnostics only).

    Returns:
        Verified rows keyed by archive path.

    Raises:
        InvalidWheelError: RECORD is missing or malformed, or names an
            unsupported hash algorithm.
        RecordMismatchError: A member is unlisted or its digest or size
            differs.
        zipfile.BadZipFile: A member fails its CRC check.
    """
    try:
        content = archive.read(record_name).decode("utf-8")
    except KeyError:
        raise InvalidWheelError(
            f"Missing {record_name} in the archive", wheel_path=wheel_path
        ) from None
    except UnicodeDecodeError as e:
        raise InvalidWheelError(
            f"{record_name} is not valid UTF-8: {e}", wheel_path=wheel_path
        ) from e

    dist_info = posixpath.dirname(record_name)
    rows = {entry.path: entry for entry in read_record(content, wheel_path=wheel_path)}
    verified: Dict[str, RecordEntry] = {}

    for info in archive.infolist():
        name = info.filename
        if info.is_dir() or is_unhashed(name, dist_info):
            continue

        entry = rows.get(name)
        if entry is None or not entry.hash:
            raise RecordMismatchError(
                f"{name} is not hashed in RECORD",
                wheel_path=wheel_path,
                member=name,
            )

        algorithm = entry.algorithm or ""
        if (
            algorithm not in hashlib.algorithms_guaranteed
            or algorithm in _REJECTED_ALGORITHMS
        ):
            raise InvalidWheelError(
                f"Unsupported RECORD hash algorithm {algorithm!r} for {name}",
                wheel_path=wheel_path,
            )

        actual_hash, actual_size = _hash_member(archive, info, algorithm)
        if actual_hash != entry.hash:
            raise RecordMismatchError(
                f"Hash mismatch for {name}",
                wheel_path=wheel_path,
                member=name,
                expected=entry.hash,
                actual=actual_hash,
            )
        if entry.size is not None and entry.size != actual_size:
            raise RecordMismatchError(
                f"Size mismatch for {name}",
                wheel_path=wheel_path,
                member=name,
                expected=str(entry.size),
                actual=str(actual_size),
            )

        verified[name] = entry

    logger.debug("Verified %d archive members against %s", len(verified), record_name)
    return verified
