"""Unit tests for wheelkeeper.core.location module.

Test Coverage:
- Venv and monotrail layouts
- Installer metadata per location kind
- Layout checks
- Lock acquisition, contention and release
"""

from __future__ import annotations

import json
import pytest
from pathlib import Path

from conftest import PYTHON_VERSION, WINDOWS, make_venv

from wheelkeeper.constants import LOCK_FILENAME
from wheelkeeper.core.location import (
    LockedDir,
    Monotrail,
    Venv,
    acquire_lock,
    check_layout,
    install_paths,
    installer_metadata,
    interpreter,
    lock_path,
    normalize_name,
    package_prefix,
    root,
)
from wheelkeeper.exceptions import BrokenEnvironmentError, EnvironmentLockedError


@pytest.fixture
def monotrail(tmp_path: Path) -> Monotrail:
    store = tmp_path / "store"
    store.mkdir()
    return Monotrail(
        monotrail_root=store,
        python=Path("/usr/bin/python3.10"),
        python_version=PYTHON_VERSION,
    )


@pytest.mark.unit
class TestVenvLayout:
    """Tests for virtual environment paths."""

    def test_root_and_prefix(self, venv: Venv) -> None:
        """Test every package shares the venv prefix."""
        assert root(venv) == venv.venv_base
        assert package_prefix(venv, "demo_pkg", "1.0.0") == venv.venv_base
        assert package_prefix(venv, "other", "2.0") == venv.venv_base

    @pytest.mark.skipif(WINDOWS, reason="POSIX layout")
    def test_posix_paths(self, venv: Venv) -> None:
        """Test the lib/pythonX.Y layout.

        Happy path: purelib and platlib are the same site-packages.
        """
        base = venv.venv_base
        paths = install_paths(venv, "demo_pkg", "1.0.0")

        assert paths.purelib == base / "lib" / "python3.10" / "site-packages"
        assert paths.platlib == paths.purelib
        assert paths.scripts == base / "bin"
        assert paths.data == base
        assert paths.headers == base / "include" / "site" / "python3.10" / "demo_pkg"
        assert interpreter(venv) == base / "bin" / "python"

    @pytest.mark.skipif(not WINDOWS, reason="Windows layout")
    def test_windows_paths(self, venv: Venv) -> None:
        """Test the Lib/Scripts layout."""
        base = venv.venv_base
        paths = install_paths(venv, "demo_pkg", "1.0.0")

        assert paths.purelib == base / "Lib" / "site-packages"
        assert paths.scripts == base / "Scripts"
        assert interpreter(venv) == base / "Scripts" / "python.exe"

    def test_paths_by_category(self, venv: Venv) -> None:
        """Test lookup by wheel data category."""
        paths = install_paths(venv, "demo_pkg", "1.0.0")

        assert paths["purelib"] == paths.purelib
        assert paths["scripts"] == paths.scripts
        with pytest.raises(KeyError):
            paths["binaries"]

    def test_lock_path(self, venv: Venv) -> None:
        """Test the lock lives at the venv root."""
        assert lock_path(venv) == venv.venv_base / LOCK_FILENAME

    def test_no_installer_metadata(self, venv: Venv) -> None:
        """Test a venv records nothing extra."""
        assert installer_metadata(venv, name="demo_pkg", version="1.0.0", tag="py3-none-any") == {}


@pytest.mark.unit
class TestMonotrailLayout:
    """Tests for multi-version store paths."""

    def test_prefix_per_version(self, monotrail: Monotrail) -> None:
        """Test each (name, version) gets its own prefix.

        Happy path: Two versions never share a directory.
        """
        store = monotrail.monotrail_root

        assert package_prefix(monotrail, "Demo-Pkg", "1.0.0") == store / "demo_pkg" / "1.0.0"
        assert package_prefix(monotrail, "demo_pkg", "2.0.0") == store / "demo_pkg" / "2.0.0"

    def test_headers_and_data(self, monotrail: Monotrail) -> None:
        """Test headers and data stay inside the prefix."""
        prefix = package_prefix(monotrail, "demo_pkg", "1.0.0")
        paths = install_paths(monotrail, "demo_pkg", "1.0.0")

        assert paths.headers == prefix / "include"
        assert paths.data == prefix
        assert prefix in paths.purelib.parents
        assert prefix in paths.scripts.parents

    def test_interpreter_is_configured(self, monotrail: Monotrail) -> None:
        """Test launchers use the store's interpreter."""
        assert interpreter(monotrail) == Path("/usr/bin/python3.10")

    def test_installer_metadata(self, monotrail: Monotrail) -> None:
        """Test the monotrail.json record."""
        metadata = installer_metadata(
            monotrail, name="demo_pkg", version="1.0.0", tag="py3-none-any"
        )

        assert list(metadata) == ["monotrail.json"]
        content = metadata["monotrail.json"]
        assert content.endswith("\n")
        assert json.loads(content) == {
            "name": "demo_pkg",
            "version": "1.0.0",
            "tag": "py3-none-any",
            "python": str(Path("/usr/bin/python3.10")),
            "python_version": "3.10",
        }

    def test_normalize_name(self) -> None:
        """Test names are canonicalized with underscores."""
        assert normalize_name("Foo.Bar-baz") == "foo_bar_baz"


@pytest.mark.unit
class TestCheckLayout:
    """Tests for check_layout."""

    def test_valid_venv(self, venv: Venv) -> None:
        """Test a complete venv passes."""
        check_layout(venv)

    def test_missing_root(self, tmp_path: Path) -> None:
        """Test a nonexistent root."""
        location = Venv(venv_base=tmp_path / "missing", python_version=PYTHON_VERSION)

        with pytest.raises(BrokenEnvironmentError) as exc_info:
            check_layout(location)

        assert exc_info.value.location == str(tmp_path / "missing")

    def test_missing_site_packages(self, tmp_path: Path) -> None:
        """Test a venv built for another Python version."""
        make_venv(tmp_path / "venv", (3, 10))
        location = Venv(venv_base=tmp_path / "venv", python_version=(3, 11))

        if WINDOWS:
            pytest.skip("site-packages is not versioned on Windows")
        with pytest.raises(BrokenEnvironmentError):
            check_layout(location)

    def test_missing_interpreter(self, venv: Venv) -> None:
        """Test a venv whose interpreter was deleted."""
        interpreter(venv).unlink()

        with pytest.raises(BrokenEnvironmentError):
            check_layout(venv)

    def test_monotrail_only_needs_root(self, monotrail: Monotrail) -> None:
        """Test a monotrail store needs nothing but its root."""
        check_layout(monotrail)


@pytest.mark.unit
class TestLocking:
    """Tests for acquire_lock and LockedDir."""

    def test_acquire_and_release(self, venv: Venv) -> None:
        """Test a lock is held until released.

        Happy path: release is idempotent.
        """
        locked = acquire_lock(venv)

        assert isinstance(locked, LockedDir)
        assert locked.is_locked
        assert locked.path == venv.venv_base
        assert lock_path(venv).exists()

        locked.release()
        locked.release()

        assert not locked.is_locked

    def test_second_lock_fails_fast(self, venv: Venv) -> None:
        """Test a held lock is reported immediately by default."""
        with acquire_lock(venv):
            with pytest.raises(EnvironmentLockedError) as exc_info:
                acquire_lock(venv)

        error = exc_info.value
        assert error.lock_path == str(lock_path(venv))
        assert error.timeout == 0.0

    def test_short_timeout(self, venv: Venv) -> None:
        """Test a bounded wait on a held lock."""
        with acquire_lock(venv):
            with pytest.raises(EnvironmentLockedError) as exc_info:
                acquire_lock(venv, timeout=0.05)

        assert exc_info.value.timeout == 0.05

    def test_reacquire_after_release(self, venv: Venv) -> None:
        """Test the lock can be taken again once released."""
        with acquire_lock(venv) as first:
            assert first.is_locked

        assert not first.is_locked
        with acquire_lock(venv) as second:
            assert second.is_locked

    def test_released_when_block_raises(self, venv: Venv) -> None:
        """Test the context manager releases on error."""
        with pytest.raises(RuntimeError):
            with acquire_lock(venv) as locked:
                raise RuntimeError("boom")

        assert not locked.is_locked
        acquire_lock(venv).release()

    def test_broken_location_is_not_locked(self, tmp_path: Path) -> None:
        """Test layout checks run before locking."""
        location = Venv(venv_base=tmp_path / "missing", python_version=PYTHON_VERSION)

        with pytest.raises(BrokenEnvironmentError):
            acquire_lock(location)

        assert not (tmp_path / "missing").exists()

    def test_monotrail_lock(self, monotrail: Monotrail) -> None:
        """Test a store is locked at its root."""
        with acquire_lock(monotrail) as locked:
            assert locked.path == monotrail.monotrail_root
            assert (monotrail.monotrail_root / LOCK_FILENAME).exists()

    def test_repr(self, venv: Venv) -> None:
        """Test repr reports the lock state."""
        with acquire_lock(venv) as locked:
            assert "locked=True" in repr(locked)
