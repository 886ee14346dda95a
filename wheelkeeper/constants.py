"""
Centralized constants for wheelkeeper.

This module defines immutable values used across wheelkeeper, including
requirement-file directives, wheel layout names, lock settings, and
logging formats. All values are intended to be treated as read-only.
"""

from typing import Final, Sequence

# ---------------------------------------------------------------------------
# Requirement file directives
# ---------------------------------------------------------------------------

#: Include directive for requirement files.
INCLUDE_DIRECTIVE: Final[str] = "-r"

#: Constraint directive.
CONSTRAINT_DIRECTIVE: Final[str] = "-c"

#: Editable-install directive.
EDITABLE_DIRECTIVE: Final[str] = "-e"

#: Hash-checking directive.
HASH_DIRECTIVE: Final[str] = "--hash"

#: Comment marker.
COMMENT_MARKER: Final[str] = "#"

#: Default bound on nested ``-r`` / ``-c`` includes.
DEFAULT_MAX_INCLUDE_DEPTH: Final[int] = 32

# ---------------------------------------------------------------------------
# Security constraints
# ---------------------------------------------------------------------------

#: Maximum allowed file size (in bytes) when reading requirement files.
MAX_FILE_SIZE: Final[int] = 10 * 1024 * 1024  # 10 MB

# ---------------------------------------------------------------------------
# Wheel layout
# ---------------------------------------------------------------------------

#: Hash algorithm used when writing RECORD rows.
RECORD_HASH_ALGORITHM: Final[str] = "sha256"

#: Files inside ``.dist-info`` that RECORD never lists with a digest.
RECORD_UNHASHED_FILES: Final[Sequence[str]] = ("RECORD", "RECORD.jws", "RECORD.p7s")

#: ``.data`` subdirectories a wheel may carry (PEP 427 install scheme keys).
WHEEL_DATA_CATEGORIES: Final[Sequence[str]] = (
    "purelib",
    "platlib",
    "headers",
    "scripts",
    "data",
)

#: Name of the provenance metadata file (PEP 610).
DIRECT_URL_FILENAME: Final[str] = "direct_url.json"

#: Default content of the ``INSTALLER`` metadata file.
DEFAULT_INSTALLER: Final[str] = "wheelkeeper"

#: Marker appended to shebangs of relocatable launcher scripts; the
#: runtime replaces the line with the active interpreter.
RELOCATABLE_SHEBANG: Final[str] = "#!/usr/bin/env python # wheelkeeper-relocatable"

#: Prefix of the staging directory created inside the target environment.
STAGING_PREFIX: Final[str] = ".wheelkeeper-staging-"

# ---------------------------------------------------------------------------
# Locking
# ---------------------------------------------------------------------------

#: Lock file created at the root of every install location.
LOCK_FILENAME: Final[str] = ".wheelkeeper.lock"

#: Default lock timeout in seconds. ``0`` fails fast, negative blocks.
DEFAULT_LOCK_TIMEOUT: Final[float] = 0.0

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

#: Environment variable naming an explicit configuration file.
CONFIG_ENV: Final[str] = "WHEELKEEPER_CONFIG"

# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

#: Timestamp format for verbose logging.
LOG_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

#: Default log format (non-verbose).
LOG_DEFAULT_FORMAT: Final[str] = "%(levelname)s: %(message)s"

#: Verbose log format including timestamp and logger name.
LOG_VERBOSE_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
