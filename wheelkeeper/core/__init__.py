"""
Core functionality exports for wheelkeeper.

This module provides convenient access to the core subsystems of wheelkeeper.
Importing from here keeps user-facing imports clean and stable:

    from wheelkeeper.core import RequirementsParser, install_wheel
"""

from __future__ import annotations

from wheelkeeper.core.api import install_wheel_in_venv
from wheelkeeper.core.cursor import Cursor
from wheelkeeper.core.location import (
    InstallLocation,
    LockedDir,
    Monotrail,
    Venv,
    acquire_lock,
)
from wheelkeeper.core.parser import RequirementsParser, parse_requirements_txt
from wheelkeeper.core.record import RecordEntry, read_record, write_record
from wheelkeeper.core.tags import Arch, CompatibleTags, WheelFilename, detect_os
from wheelkeeper.core.wheel import install_wheel

__all__ = [
    "Arch",
    "CompatibleTags",
    "Cursor",
    "InstallLocation",
    "LockedDir",
    "Monotrail",
    "RecordEntry",
    "RequirementsParser",
    "Venv",
    "WheelFilename",
    "acquire_lock",
    "detect_os",
    "install_wheel",
    "install_wheel_in_venv",
    "parse_requirements_txt",
    "read_record",
    "write_record",
]
