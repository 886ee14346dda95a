"""
Utility helpers for wheelkeeper.

This package provides reusable utilities used across wheelkeeper, including:

- Logging configuration and retrieval
- Filesystem helpers (bounded reads, staging, rollback cleanup)

Only symbols listed in ``__all__`` are considered part of the public API.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Filesystem utilities
# ---------------------------------------------------------------------------

from wheelkeeper.utils.filesystem import (
    make_executable,
    remove_path,
    remove_stale_staging,
    safe_read_bytes,
    staging_directory,
)

# ---------------------------------------------------------------------------
# Logging utilities
# ---------------------------------------------------------------------------

from wheelkeeper.utils.logger import (
    disable_logging,
    get_logger,
    is_logging_configured,
    setup_logging,
)

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

__all__ = [
    # Logging
    "get_logger",
    "setup_logging",
    "disable_logging",
    "is_logging_configured",
    # Filesystem
    "safe_read_bytes",
    "make_executable",
    "remove_path",
    "remove_stale_staging",
    "staging_directory",
]
