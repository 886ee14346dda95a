"""
wheelkeeper: requirements files in, wheels installed

wheelkeeper is the parsing and installation core of a Python package
manager. It reads pip-style ``requirements.txt`` files into structured
requirements and installs ``.whl`` archives into virtual environments.

Features include:
    • Recursive ``-r`` / ``-c`` includes with byte-offset diagnostics
    • ``--hash`` and ``-e`` support on PEP 508 requirements
    • Platform tag matching for manylinux, musllinux, macOS, Windows and BSDs
    • RECORD-verified, rollback-safe wheel installation
    • Environment-wide locking against concurrent installers
"""

from __future__ import annotations

from wheelkeeper.__version__ import __version__
from wheelkeeper.core.api import install_wheel_in_venv
from wheelkeeper.core.parser import parse_requirements_txt
from wheelkeeper.models.requirement import RequirementsTxt

# ---------------------------------------------------------------------------
# Package Metadata
# ---------------------------------------------------------------------------

__author__ = "wheelkeeper Contributors"
__license__ = "Apache-2.0"
__description__ = "Requirements file parsing and wheel installation for Python."

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

__all__ = [
    "__version__",
    "RequirementsTxt",
    "install_wheel_in_venv",
    "parse_requirements_txt",
]
