from __future__ import annotations

import os
import base64
import hashlib
import zipfile
import pytest
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from wheelkeeper.core.location import Venv
from wheelkeeper.core.tags import Arch, CompatibleTags, Manylinux

PYTHON_VERSION: Tuple[int, int] = (3, 10)

WINDOWS = os.name == "nt"


def record_hash(data: bytes) -> str:
    """RECORD hash column for ``data``."""
    digest = hashlib.sha256(data).digest()
    return "sha256=" + base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def build_wheel(
    directory: Path,
    files: Dict[str, bytes],
    *,
    name: str = "demo_pkg",
    version: str = "1.0.0",
    tag: str = "py3-none-any",
    entry_points: Optional[str] = None,
    recorded_content: Optional[Dict[str, bytes]] = None,
    modes: Optional[Dict[str, int]] = None,
) -> Path:
    """Write a wheel with a correct RECORD.

    Args:
        directory: Where to create the ``.whl`` file.
        files: Archive path to content, outside ``.dist-info``.
        name: Distribution name (already escaped).
        version: Distribution version.
        tag: Compressed tag triple.
        entry_points: Content of ``entry_points.txt``.
        recorded_content: Content to hash in RECORD instead of the real
            content, for producing mismatches.
        modes: Unix permission bits per archive path.

    Returns:
        Path of the new wheel.
    """
    dist_info = f"{name}-{version}.dist-info"
    members: Dict[str, bytes] = dict(files)
    members[f"{dist_info}/METADATA"] = (
        f"Metadata-Version: 2.1\nName: {name}\nVersion: {version}\n"
        "Provides-Extra: fast\n"
    ).encode("utf-8")
    members[f"{dist_info}/WHEEL"] = (
        "Wheel-Version: 1.0\nGenerator: test\nRoot-Is-Purelib: true\n"
        f"Tag: {tag}\n"
    ).encode("utf-8")
    if entry_points is not None:
        members[f"{dist_info}/entry_points.txt"] = entry_points.encode("utf-8")

    recorded = dict(recorded_content or {})
    record_lines = []
    for path, data in members.items():
        hashed = recorded.get(path, data)
        record_lines.append(f"{path},{record_hash(hashed)},{len(hashed)}")
    record_lines.append(f"{dist_info}/RECORD,,")
    members[f"{dist_info}/RECORD"] = ("\n".join(record_lines) + "\n").encode("utf-8")

    wheel_path = directory / f"{name}-{version}-{tag}.whl"
    with zipfile.ZipFile(wheel_path, "w", compression=zipfile.ZIP_STORED) as archive:
        for path, data in members.items():
            info = zipfile.ZipInfo(path)
            mode = (modes or {}).get(path, 0o644)
            info.external_attr = (0o100000 | mode) << 16
            archive.writestr(info, data)
    return wheel_path


def make_venv(base: Path, python_version: Tuple[int, int] = PYTHON_VERSION) -> Venv:
    """Create the minimal directory layout of a virtual environment."""
    major, minor = python_version
    if WINDOWS:
        scripts = base / "Scripts"
        site_packages = base / "Lib" / "site-packages"
        python = scripts / "python.exe"
    else:
        scripts = base / "bin"
        site_packages = base / "lib" / f"python{major}.{minor}" / "site-packages"
        python = scripts / "python"

    scripts.mkdir(parents=True)
    site_packages.mkdir(parents=True)
    python.write_text("")
    python.chmod(0o755)
    return Venv(venv_base=base, python_version=python_version)


@pytest.fixture
def wheel_factory(tmp_path: Path) -> Callable[..., Path]:
    """Return a function building wheels inside a private directory."""
    wheels = tmp_path / "wheels"
    wheels.mkdir()

    def factory(files: Dict[str, bytes], **kwargs) -> Path:
        return build_wheel(wheels, files, **kwargs)

    return factory


@pytest.fixture
def venv(tmp_path: Path) -> Venv:
    """A fresh virtual environment layout."""
    return make_venv(tmp_path / "venv")


@pytest.fixture
def linux_tags() -> CompatibleTags:
    """Tags for CPython 3.10 on x86_64 glibc 2.31."""
    return CompatibleTags.for_environment(PYTHON_VERSION, Manylinux(2, 31), Arch.X86_64)
