"""Wheel filename parsing and platform compatibility.

A wheel is installable when at least one ``(python, abi, platform)`` triple
from the cross product of its filename tag sets appears in the
:class:`CompatibleTags` list for the target environment. The position in
that list is the preference rank: an exact ``cp310-cp310`` wheel beats a
``cp310-abi3`` wheel, which beats ``py3-none-any``.

The tag list itself is produced with :mod:`packaging.tags` from an explicit
Python version, :data:`Os` and :class:`Arch`, so the result does not depend
on the interpreter running wheelkeeper.
"""

from __future__ import annotations

import glob
import platform
import re
import subprocess
from dataclasses import dataclass
from enum import Enum
from itertools import product
from typing import Dict, Iterable, List, Optional, Tuple, Union

from packaging.tags import Tag, compatible_tags, cpython_tags, mac_platforms
from packaging.version import InvalidVersion, Version

from wheelkeeper.exceptions import (
    IncompatibleWheelError,
    InvalidWheelFilenameError,
    PlatformDetectionError,
)
from wheelkeeper.utils.logger import get_logger

logger = get_logger("tags")

_MUSL_VERSION = re.compile(r"Version (\d+)\.(\d+)")


# ---------------------------------------------------------------------------
# Platform model
# ---------------------------------------------------------------------------


class Arch(str, Enum):
    """CPU architectures wheels are built for."""

    X86_64 = "x86_64"
    X86 = "i686"
    AARCH64 = "aarch64"
    ARMV7L = "armv7l"
    PPC64LE = "ppc64le"
    PPC64 = "ppc64"
    S390X = "s390x"

    def __str__(self) -> str:
        return self.value

    @property
    def minimum_manylinux_minor(self) -> int:
        """Oldest glibc minor version with a manylinux tag for this arch."""
        # manylinux1 (glibc 2.5) only ever existed for x86 and x86_64
        if self in (Arch.X86_64, Arch.X86):
            return 5
        return 17

    @classmethod
    def current(cls) -> "Arch":
        """Detect the architecture of the running machine.

        Raises:
            PlatformDetectionError: The machine type is not supported.
        """
        machine = platform.machine().lower()
        aliases = {
            "x86_64": cls.X86_64,
            "amd64": cls.X86_64,
            "i386": cls.X86,
            "i686": cls.X86,
            "x86": cls.X86,
            "aarch64": cls.AARCH64,
            "arm64": cls.AARCH64,
            "armv7l": cls.ARMV7L,
            "ppc64le": cls.PPC64LE,
            "ppc64": cls.PPC64,
            "s390x": cls.S390X,
        }
        try:
            return aliases[machine]
        except KeyError:
            raise PlatformDetectionError(
                f"Unsupported architecture: {machine or '<unknown>'}"
            ) from None


@dataclass(frozen=True)
class Manylinux:
    """glibc based Linux."""

    major: int
    minor: int

    def __str__(self) -> str:
        return f"Manylinux {self.major}.{self.minor}"


@dataclass(frozen=True)
class Musllinux:
    """musl based Linux."""

    major: int
    minor: int

    def __str__(self) -> str:
        return f"Musllinux {self.major}.{self.minor}"


@dataclass(frozen=True)
class Windows:
    def __str__(self) -> str:
        return "Windows"


@dataclass(frozen=True)
class Macos:
    major: int
    minor: int

    def __str__(self) -> str:
        return f"macOS {self.major}.{self.minor}"


@dataclass(frozen=True)
class FreeBsd:
    release: str

    def __str__(self) -> str:
        return f"FreeBSD {self.release}"


@dataclass(frozen=True)
class NetBsd:
    release: str

    def __str__(self) -> str:
        return f"NetBSD {self.release}"


@dataclass(frozen=True)
class OpenBsd:
    release: str

    def __str__(self) -> str:
        return f"OpenBSD {self.release}"


Os = Union[Manylinux, Musllinux, Windows, Macos, FreeBsd, NetBsd, OpenBsd]


def detect_os() -> Os:
    """Detect the operating system of the running machine.

    Raises:
        PlatformDetectionError: The OS, or its libc on Linux, is not
            recognised.
    """
    system = platform.system()

    if system == "Linux":
        return _detect_linux()
    if system == "Windows":
        return Windows()
    if system == "Darwin":
        release = platform.mac_ver()[0]
        major, minor = _split_version(release, "macOS")
        return Macos(major, minor)
    if system == "FreeBSD":
        return FreeBsd(platform.release())
    if system == "NetBSD":
        return NetBsd(platform.release())
    if system == "OpenBSD":
        return OpenBsd(platform.release())

    raise PlatformDetectionError(f"Unsupported operating system: {system or '<unknown>'}")


def _detect_linux() -> Os:
    libc, version = platform.libc_ver()
    if libc == "glibc":
        major, minor = _split_version(version, "glibc")
        return Manylinux(major, minor)

    for loader in sorted(glob.glob("/lib/ld-musl-*.so.1")):
        try:
            # The musl loader prints its version when run without arguments
            completed = subprocess.run(
                [loader], capture_output=True, text=True, check=False
            )
        except OSError as exc:
            raise PlatformDetectionError(
                f"Failed to run the musl loader {loader}", original_error=exc
            ) from exc
        match = _MUSL_VERSION.search(completed.stderr)
        if match:
            return Musllinux(int(match.group(1)), int(match.group(2)))

    raise PlatformDetectionError("Could not detect the libc of this Linux system")


def _split_version(version: str, what: str) -> Tuple[int, int]:
    parts = version.split(".")
    try:
        major = int(parts[0])
        minor = int(parts[1]) if len(parts) > 1 else 0
    except ValueError as exc:
        raise PlatformDetectionError(
            f"Invalid {what} version: {version!r}", original_error=exc
        ) from exc
    return major, minor


def compatible_platform_tags(os: Os, arch: Arch) -> List[str]:
    """Platform tags accepted on ``os``/``arch``, most specific first.

    Raises:
        PlatformDetectionError: The combination has no wheel platform tag.
    """
    if isinstance(os, Manylinux):
        tags: List[str] = []
        for minor in range(os.minor, arch.minimum_manylinux_minor - 1, -1):
            tags.append(f"manylinux_{os.major}_{minor}_{arch}")
            legacy = {17: "manylinux2014", 12: "manylinux2010", 5: "manylinux1"}
            if os.major == 2 and minor in legacy:
                tags.append(f"{legacy[minor]}_{arch}")
        tags.append(f"linux_{arch}")
        return tags

    if isinstance(os, Musllinux):
        tags = [
            f"musllinux_{os.major}_{minor}_{arch}" for minor in range(os.minor, -1, -1)
        ]
        tags.append(f"linux_{arch}")
        return tags

    if isinstance(os, Macos):
        mac_arch = {Arch.X86_64: "x86_64", Arch.AARCH64: "arm64"}.get(arch)
        if mac_arch is None:
            raise PlatformDetectionError(f"Unsupported architecture for {os}: {arch}")
        return list(mac_platforms(version=(os.major, os.minor), arch=mac_arch))

    if isinstance(os, Windows):
        windows_arch = {
            Arch.X86: "win32",
            Arch.X86_64: "win_amd64",
            Arch.AARCH64: "win_arm64",
        }.get(arch)
        if windows_arch is None:
            raise PlatformDetectionError(f"Unsupported architecture for {os}: {arch}")
        return [windows_arch]

    if isinstance(os, (FreeBsd, NetBsd, OpenBsd)):
        release = re.sub(r"[.-]", "_", os.release)
        system = type(os).__name__.lower()
        return [f"{system}_{release}_{arch}"]

    raise PlatformDetectionError(f"Unsupported operating system: {os!r}")


# ---------------------------------------------------------------------------
# Wheel filenames
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WheelFilename:
    """The parts of ``{name}-{version}(-{build})?-{py}-{abi}-{plat}.whl``.

    Each tag field keeps the order of its compressed tag set, e.g.
    ``py2.py3`` becomes ``("py2", "py3")``.
    """

    distribution: str
    version: str
    build_tag: Optional[str]
    python_tag: Tuple[str, ...]
    abi_tag: Tuple[str, ...]
    platform_tag: Tuple[str, ...]

    @classmethod
    def from_filename(cls, filename: str) -> "WheelFilename":
        """Parse a wheel filename.

        Raises:
            InvalidWheelFilenameError: The name does not follow the schema.
        """
        if not filename.endswith(".whl"):
            raise InvalidWheelFilenameError(filename, "Must end with .whl")
        basename = filename[: -len(".whl")]

        parts = basename.split("-")
        if len(parts) == 5:
            distribution, version, python_tag, abi_tag, platform_tag = parts
            build_tag = None
        elif len(parts) == 6:
            distribution, version, build_tag, python_tag, abi_tag, platform_tag = parts
            if not build_tag[:1].isdigit():
                raise InvalidWheelFilenameError(
                    filename, f"The build tag must start with a digit, found {build_tag!r}"
                )
        else:
            raise InvalidWheelFilenameError(
                filename,
                f"Expected four or five dashes ('-') in the filename, found {len(parts) - 1}",
            )

        if not distribution or not all((python_tag, abi_tag, platform_tag)):
            raise InvalidWheelFilenameError(filename, "Empty filename component")

        try:
            Version(version)
        except InvalidVersion as exc:
            raise InvalidWheelFilenameError(filename, f"Invalid version: {exc}") from exc

        return cls(
            distribution=distribution,
            version=version,
            build_tag=build_tag,
            python_tag=tuple(python_tag.split(".")),
            abi_tag=tuple(abi_tag.split(".")),
            platform_tag=tuple(platform_tag.split(".")),
        )

    def tags(self) -> Iterable[Tag]:
        """Every tag in the cross product of the three tag sets."""
        for python, abi, plat in product(self.python_tag, self.abi_tag, self.platform_tag):
            yield Tag(python, abi, plat)

    def get_tag(self) -> str:
        """The compressed tag triple as it appears in the filename."""
        return "-".join(
            ".".join(tag_set)
            for tag_set in (self.python_tag, self.abi_tag, self.platform_tag)
        )

    def __str__(self) -> str:
        build = f"-{self.build_tag}" if self.build_tag else ""
        return f"{self.distribution}-{self.version}{build}-{self.get_tag()}.whl"


# ---------------------------------------------------------------------------
# Compatible tags
# ---------------------------------------------------------------------------


class CompatibleTags:
    """Priority-ordered tags accepted by one environment.

    Example::

        >>> tags = CompatibleTags.for_environment((3, 10), Manylinux(2, 31), Arch.X86_64)
        >>> tags.is_compatible(WheelFilename.from_filename("six-1.16.0-py2.py3-none-any.whl"))
        True
    """

    def __init__(self, tags: Iterable[Tag], *, os: Os, arch: Arch) -> None:
        self.os = os
        self.arch = arch
        self.tags: List[Tag] = []
        self._ranks: Dict[Tag, int] = {}
        for tag in tags:
            if tag not in self._ranks:
                self._ranks[tag] = len(self.tags)
                self.tags.append(tag)

    @classmethod
    def for_environment(
        cls,
        python_version: Tuple[int, int],
        os: Os,
        arch: Arch,
    ) -> "CompatibleTags":
        """Build the tag list for a CPython version on ``os``/``arch``."""
        major, minor = python_version
        platforms = compatible_platform_tags(os, arch)
        interpreter = f"cp{major}{minor}"

        tags = list(
            cpython_tags(
                python_version=(major, minor),
                abis=[interpreter],
                platforms=platforms,
            )
        )
        tags.extend(
            compatible_tags(
                python_version=(major, minor),
                interpreter=interpreter,
                platforms=platforms,
            )
        )
        logger.debug(
            "Computed %d compatible tag(s) for Python %d.%d on %s %s",
            len(tags),
            major,
            minor,
            os,
            arch,
        )
        return cls(tags, os=os, arch=arch)

    @classmethod
    def current(cls, python_version: Tuple[int, int]) -> "CompatibleTags":
        """Build the tag list for this machine's OS and architecture."""
        return cls.for_environment(python_version, detect_os(), Arch.current())

    def compatibility(self, filename: WheelFilename) -> Optional[int]:
        """Rank of the best matching tag (0 is best), or ``None``."""
        ranks = [self._ranks[tag] for tag in filename.tags() if tag in self._ranks]
        return min(ranks) if ranks else None

    def is_compatible(self, filename: WheelFilename) -> bool:
        return self.compatibility(filename) is not None

    def select(self, filename: WheelFilename) -> Tag:
        """Return the most preferred tag of ``filename``.

        Raises:
            IncompatibleWheelError: No tag of the wheel is accepted.
        """
        rank = self.compatibility(filename)
        if rank is None:
            raise IncompatibleWheelError(os=self.os, arch=self.arch, wheel=str(filename))
        return self.tags[rank]

    def rank(self, filenames: Iterable[WheelFilename]) -> List[WheelFilename]:
        """Order candidate wheels best first, dropping incompatible ones."""
        ranked = []
        for position, filename in enumerate(filenames):
            rank = self.compatibility(filename)
            if rank is not None:
                ranked.append((rank, position, filename))
        return [filename for _, _, filename in sorted(ranked, key=lambda item: item[:2])]

    def __len__(self) -> int:
        return len(self.tags)

    def __contains__(self, tag: object) -> bool:
        return tag in self._ranks
