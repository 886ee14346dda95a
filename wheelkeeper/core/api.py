"""
High-level installation entry point.

``install_wheel_in_venv`` is what embedding tools call: it locks a
virtual environment, installs one wheel and hands back the tag that was
selected.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

from wheelkeeper.config import WheelkeeperConfig, load_config
from wheelkeeper.core.location import Venv, acquire_lock
from wheelkeeper.core.wheel import install_wheel
from wheelkeeper.exceptions import InstallIOError
from wheelkeeper.utils.logger import get_logger

logger = get_logger("api")

PathLike = Union[str, Path]


def install_wheel_in_venv(
    wheel: PathLike,
    venv: PathLike,
    interpreter: PathLike,
    major: int,
    minor: int,
    config: Optional[WheelkeeperConfig] = None,
) -> str:
    """
    Install a wheel into a virtual environment.

    The environment lock is held for the whole install and released on
    every exit path, including failures.

    Args:
        wheel: Path of the ``.whl`` file.
        venv: Root of the virtual environment.
        interpreter: Interpreter written into launcher shebangs.
        major: Python major version of the environment.
        minor: Python minor version of the environment.
        config: Settings to use. Discovered with :func:`load_config` when
            omitted.

    Returns:
        The selected compatibility tag, e.g. ``"py3-none-any"``.

    Raises:
        InstallIOError: The venv path cannot be resolved.
        InstallError: Any installation failure (see :func:`install_wheel`).
    """
    if config is None:
        config = load_config()

    try:
        venv_base = Path(venv).resolve(strict=True)
    except OSError as exc:
        raise InstallIOError(
            f"Cannot resolve virtual environment path: {exc}",
            file_path=str(venv),
            operation="resolve",
            original_error=exc,
        ) from exc

    location = Venv(venv_base=venv_base, python_version=(major, minor))
    logger.debug("Installing %s into %s", wheel, venv_base)

    with acquire_lock(location, timeout=config.lock_timeout) as locked_dir:
        return install_wheel(
            locked_dir,
            wheel,
            relocatable=False,
            extras=(),
            sys_executable=interpreter,
            installer=config.installer,
        )
