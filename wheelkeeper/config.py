"""Configuration file loader for wheelkeeper.

Handles discovery, loading, parsing, and validation of configuration files.
Supports two formats:

- ``wheelkeeper.toml``: settings under ``[wheelkeeper]`` table
- ``pyproject.toml``: settings under ``[tool.wheelkeeper]`` table

Discovery order:

1. Explicit path argument, or the ``WHEELKEEPER_CONFIG`` environment variable
2. ``wheelkeeper.toml`` in current directory
3. ``pyproject.toml`` with ``[tool.wheelkeeper]`` section

Configuration precedence: defaults < config file < explicit arguments.

Typical usage::

    config = load_config()  # Auto-discover
    config = load_config(Path("custom.toml"))  # Explicit path

Example (``wheelkeeper.toml``)::

    [wheelkeeper]
    lock_timeout = 30
    max_include_depth = 16
    installer = "my-tool"
"""

from __future__ import annotations

import os
import tomli as tomllib
from pathlib import Path
from typing import Any, Dict, Optional
from dataclasses import dataclass, field

from wheelkeeper.exceptions import ConfigError
from wheelkeeper.utils.logger import get_logger
from wheelkeeper.constants import (
    CONFIG_ENV,
    DEFAULT_INSTALLER,
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_MAX_INCLUDE_DEPTH,
)

logger = get_logger("config")


@dataclass
class WheelkeeperConfig:
    """Parsed and validated wheelkeeper configuration.

    Contains settings from ``wheelkeeper.toml`` or ``pyproject.toml``.
    All fields have defaults, so empty config files are valid.

    Attributes:
        lock_timeout: Seconds to wait for the environment lock. ``0`` fails
            immediately when another installer holds it, a negative value
            waits forever.
        max_include_depth: Maximum nesting of ``-r`` / ``-c`` includes.
        installer: Name written to the ``INSTALLER`` metadata file.
        source_path: Path to loaded config file, or ``None`` if using defaults.
    """

    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    max_include_depth: int = DEFAULT_MAX_INCLUDE_DEPTH
    installer: str = DEFAULT_INSTALLER

    # Metadata (not a user-facing option)
    source_path: Optional[Path] = field(default=None, repr=False)

    def to_log_dict(self) -> Dict[str, Any]:
        """Return configuration as dictionary for debug logging.

        Excludes ``source_path`` metadata.

        Returns:
            Dictionary of configuration option names to values.
        """
        return {
            "lock_timeout": self.lock_timeout,
            "max_include_depth": self.max_include_depth,
            "installer": self.installer,
        }


def discover_config_file(explicit_path: Optional[Path] = None) -> Optional[Path]:
    """Find the configuration file to load.

    Search order:

    1. ``explicit_path``, then ``WHEELKEEPER_CONFIG``
    2. ``wheelkeeper.toml`` in current directory
    3. ``pyproject.toml`` with ``[tool.wheelkeeper]`` section in current directory

    Validates ``pyproject.toml`` contains wheelkeeper section before using it.

    Args:
        explicit_path: Explicit config path. If provided, must exist.

    Returns:
        Resolved path to config file, or ``None`` if not found.

    Raises:
        ConfigError: Explicit path provided but does not exist.
    """
    if explicit_path is None and os.environ.get(CONFIG_ENV):
        explicit_path = Path(os.environ[CONFIG_ENV])

    # 1. Explicit path takes priority
    if explicit_path is not None:
        resolved = explicit_path.resolve()
        if not resolved.is_file():
            raise ConfigError(
                f"Configuration file not found: {explicit_path}",
                config_path=str(explicit_path),
            )
        logger.debug("Using explicit config: %s", resolved)
        return resolved

    cwd = Path.cwd()

    # 2. wheelkeeper.toml in current directory
    wheelkeeper_toml = cwd / "wheelkeeper.toml"
    if wheelkeeper_toml.is_file():
        logger.debug("Found wheelkeeper.toml: %s", wheelkeeper_toml)
        return wheelkeeper_toml

    # 3. pyproject.toml with [tool.wheelkeeper] section
    pyproject_toml = cwd / "pyproject.toml"
    if pyproject_toml.is_file():
        if _pyproject_has_wheelkeeper_section(pyproject_toml):
            logger.debug("Found [tool.wheelkeeper] in pyproject.toml: %s", pyproject_toml)
            return pyproject_toml

    logger.debug("No configuration file found")
    return None


def _pyproject_has_wheelkeeper_section(path: Path) -> bool:
    """Check if pyproject.toml contains [tool.wheelkeeper] section.

    Parse errors count as "no section" so a broken pyproject.toml that
    does not configure wheelkeeper is not an error.

    Args:
        path: Path to pyproject.toml file.

    Returns:
        ``True`` if ``[tool.wheelkeeper]`` exists, ``False`` otherwise.
    """
    try:
        raw = _read_toml(path)
    except ConfigError:
        return False
    tool = raw.get("tool", {})
    return isinstance(tool, dict) and "wheelkeeper" in tool


def load_config(config_path: Optional[Path] = None) -> WheelkeeperConfig:
    """Load and validate wheelkeeper configuration.

    Discovers config file (or uses provided path), parses and validates it.
    Returns config with defaults if no file found.

    Handles both ``wheelkeeper.toml`` and ``pyproject.toml`` formats.

    Args:
        config_path: Explicit path to config file. If ``None``, uses
            auto-discovery (see :func:`discover_config_file`).

    Returns:
        Validated :class:`WheelkeeperConfig` with values from file or defaults.

    Raises:
        ConfigError: File cannot be parsed, has unknown keys, or invalid values.
    """
    resolved = discover_config_file(config_path)

    if resolved is None:
        logger.debug("No config file found, using defaults")
        return WheelkeeperConfig()

    logger.info("Loading configuration from %s", resolved)
    raw = _read_toml(resolved)

    # Extract the wheelkeeper-specific section
    if resolved.name == "pyproject.toml":
        section = raw.get("tool", {}).get("wheelkeeper", {})
    else:
        # wheelkeeper.toml keeps its settings under [wheelkeeper]
        section = raw.get("wheelkeeper", {})

    if not isinstance(section, dict):
        raise ConfigError(
            "The wheelkeeper configuration must be a table",
            config_path=str(resolved),
        )

    if not section:
        logger.debug("Config file found but no wheelkeeper section, using defaults")
        return WheelkeeperConfig(source_path=resolved)

    config = _parse_section(section, config_path=str(resolved))
    config.source_path = resolved

    logger.debug("Loaded configuration: %s", config.to_log_dict())
    return config


def _read_toml(path: Path) -> Dict[str, Any]:
    """Read and parse a TOML file.

    Args:
        path: Path to TOML file.

    Returns:
        Parsed TOML as nested dictionary.

    Raises:
        ConfigError: File cannot be read or is not valid TOML.
    """
    try:
        with open(path, "rb") as fh:
            return tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(
            f"Invalid TOML in {path.name}: {exc}",
            config_path=str(path),
        ) from exc
    except OSError as exc:
        raise ConfigError(
            f"Cannot read configuration file {path}: {exc}",
            config_path=str(path),
        ) from exc


def _parse_section(
    section: Dict[str, Any],
    *,
    config_path: str,
) -> WheelkeeperConfig:
    """Parse and validate wheelkeeper configuration section.

    Validates ``[wheelkeeper]`` or ``[tool.wheelkeeper]`` table from TOML.
    Rejects unknown keys and type mismatches.

    Args:
        section: Raw config dictionary from TOML file.
        config_path: Path string for error messages.

    Returns:
        Validated :class:`WheelkeeperConfig` with values from section and defaults.

    Raises:
        ConfigError: Unknown keys or incorrect types (e.g., string for boolean).
    """
    config = WheelkeeperConfig()

    # Known wheelkeeper configuration options
    known_top = {
        "lock_timeout",
        "max_include_depth",
        "installer",
    }

    # Validate that no unknown keys are present
    unknown_top = set(section.keys()) - known_top
    if unknown_top:
        raise ConfigError(
            f"Unknown configuration keys: {', '.join(sorted(unknown_top))}",
            config_path=config_path,
        )

    # Parse and validate each option
    if "lock_timeout" in section:
        val = section["lock_timeout"]
        # bool is an int subclass; reject it explicitly
        if isinstance(val, bool) or not isinstance(val, (int, float)):
            raise ConfigError(
                f"lock_timeout must be a number, got {type(val).__name__}",
                config_path=config_path,
                option="lock_timeout",
            )
        config.lock_timeout = float(val)

    if "max_include_depth" in section:
        val = section["max_include_depth"]
        if isinstance(val, bool) or not isinstance(val, int):
            raise ConfigError(
                f"max_include_depth must be an integer, got {type(val).__name__}",
                config_path=config_path,
                option="max_include_depth",
            )
        if val < 1:
            raise ConfigError(
                f"max_include_depth must be at least 1, got {val}",
                config_path=config_path,
                option="max_include_depth",
            )
        config.max_include_depth = val

    if "installer" in section:
        val = section["installer"]
        if not isinstance(val, str) or not val.strip():
            raise ConfigError(
                "installer must be a non-empty string",
                config_path=config_path,
                option="installer",
            )
        config.installer = val.strip()

    return config
