"""
wheelkeeper version information.

Single source of truth for the package version. The version string is
PEP 440 compliant and kept in step with ``pyproject.toml``.

Examples:
    0.1.0
    0.1.0.dev0
    1.0.0rc1
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Main version (single source of truth)
# ---------------------------------------------------------------------------

__version__ = "0.1.0.dev0"
