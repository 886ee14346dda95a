"""Unit tests for wheelkeeper.core.tags module.

Test Coverage:
- Wheel filename parsing and validation
- Platform tags per operating system
- Compatibility checks, selection and ranking
- Platform detection failures
"""

from __future__ import annotations

import pytest
from unittest.mock import patch
from packaging.tags import Tag

from wheelkeeper.core.tags import (
    Arch,
    CompatibleTags,
    FreeBsd,
    Macos,
    Manylinux,
    Musllinux,
    Windows,
    WheelFilename,
    compatible_platform_tags,
    detect_os,
)
from wheelkeeper.exceptions import (
    IncompatibleWheelError,
    InvalidWheelFilenameError,
    PlatformDetectionError,
)

ENVIRONMENTS = [
    ((3, 8), Manylinux(2, 17), Arch.AARCH64),
    ((3, 10), Manylinux(2, 31), Arch.X86_64),
    ((3, 12), Musllinux(1, 2), Arch.X86_64),
    ((3, 11), Windows(), Arch.X86_64),
    ((3, 11), Windows(), Arch.X86),
    ((3, 9), Macos(11, 0), Arch.AARCH64),
    ((3, 13), Macos(14, 2), Arch.X86_64),
    ((3, 10), FreeBsd("13.2-RELEASE"), Arch.X86_64),
]


def wheel(name: str) -> WheelFilename:
    return WheelFilename.from_filename(name)


@pytest.mark.unit
class TestWheelFilename:
    """Tests for WheelFilename.from_filename."""

    def test_parses_five_part_name(self) -> None:
        """Test the common form without a build tag.

        Happy path: Compressed tag sets are split on '.'.
        """
        parsed = wheel("six-1.16.0-py2.py3-none-any.whl")

        assert parsed.distribution == "six"
        assert parsed.version == "1.16.0"
        assert parsed.build_tag is None
        assert parsed.python_tag == ("py2", "py3")
        assert parsed.abi_tag == ("none",)
        assert parsed.platform_tag == ("any",)

    def test_parses_build_tag(self) -> None:
        """Test the optional build tag."""
        parsed = wheel("pkg-2.0-1beta-cp310-cp310-manylinux_2_17_x86_64.whl")

        assert parsed.build_tag == "1beta"
        assert parsed.python_tag == ("cp310",)

    def test_round_trips_to_string(self) -> None:
        """Test str() rebuilds the original filename."""
        name = "numpy-1.26.0-cp310-cp310-manylinux_2_17_x86_64.manylinux2014_x86_64.whl"

        assert str(wheel(name)) == name
        assert wheel(name).get_tag() == (
            "cp310-cp310-manylinux_2_17_x86_64.manylinux2014_x86_64"
        )

    def test_tags_cross_product(self) -> None:
        """Test tags() expands every combination."""
        tags = set(wheel("six-1.16.0-py2.py3-none-any.whl").tags())

        assert tags == {Tag("py2", "none", "any"), Tag("py3", "none", "any")}

    @pytest.mark.parametrize(
        "filename",
        [
            "six-1.16.0-py3-none-any.zip",
            "six-1.16.0-py3-none.whl",
            "a-b-c-d-e-f-g.whl",
            "six-1.16.0-beta-py3-none-any.whl",
            "six-not_a_version-py3-none-any.whl",
            "-1.0-py3-none-any.whl",
        ],
    )
    def test_rejects_invalid_names(self, filename: str) -> None:
        """Test names that do not follow the schema."""
        with pytest.raises(InvalidWheelFilenameError) as exc_info:
            wheel(filename)

        assert exc_info.value.filename == filename
        assert filename in str(exc_info.value)


@pytest.mark.unit
class TestPlatformTags:
    """Tests for compatible_platform_tags."""

    def test_manylinux_descends_with_legacy_aliases(self) -> None:
        """Test glibc tags from newest to oldest."""
        tags = compatible_platform_tags(Manylinux(2, 17), Arch.X86_64)

        assert tags[0] == "manylinux_2_17_x86_64"
        assert tags[1] == "manylinux2014_x86_64"
        assert "manylinux2010_x86_64" in tags
        assert "manylinux1_x86_64" in tags
        assert tags[-1] == "linux_x86_64"
        assert tags.index("manylinux_2_12_x86_64") < tags.index("manylinux_2_5_x86_64")

    def test_manylinux_aarch64_stops_at_2_17(self) -> None:
        """Test architectures without manylinux1."""
        tags = compatible_platform_tags(Manylinux(2, 28), Arch.AARCH64)

        assert "manylinux_2_17_aarch64" in tags
        assert "manylinux_2_16_aarch64" not in tags
        assert "manylinux1_aarch64" not in tags

    def test_musllinux(self) -> None:
        """Test musl tags."""
        tags = compatible_platform_tags(Musllinux(1, 2), Arch.X86_64)

        assert tags == [
            "musllinux_1_2_x86_64",
            "musllinux_1_1_x86_64",
            "musllinux_1_0_x86_64",
            "linux_x86_64",
        ]

    def test_windows(self) -> None:
        """Test Windows architecture names."""
        assert compatible_platform_tags(Windows(), Arch.X86_64) == ["win_amd64"]
        assert compatible_platform_tags(Windows(), Arch.X86) == ["win32"]

    def test_windows_unsupported_arch(self) -> None:
        """Test an architecture Windows wheels do not exist for."""
        with pytest.raises(PlatformDetectionError):
            compatible_platform_tags(Windows(), Arch.S390X)

    def test_macos(self) -> None:
        """Test macOS tags include universal2."""
        tags = compatible_platform_tags(Macos(12, 0), Arch.AARCH64)

        assert tags[0] == "macosx_12_0_arm64"
        assert "macosx_11_0_universal2" in tags

    def test_freebsd(self) -> None:
        """Test BSD release strings are normalized."""
        tags = compatible_platform_tags(FreeBsd("13.2-RELEASE"), Arch.X86_64)

        assert tags == ["freebsd_13_2_RELEASE_x86_64"]


@pytest.mark.unit
class TestCompatibleTags:
    """Tests for CompatibleTags."""

    @pytest.mark.parametrize("python_version,os,arch", ENVIRONMENTS)
    def test_pure_python_wheel_fits_everywhere(self, python_version, os, arch) -> None:
        """Test py3-none-any is compatible with every environment."""
        tags = CompatibleTags.for_environment(python_version, os, arch)

        assert tags.is_compatible(wheel("six-1.16.0-py3-none-any.whl"))
        assert str(tags.select(wheel("six-1.16.0-py3-none-any.whl"))) == "py3-none-any"

    def test_cpython_wheel_needs_matching_version(self) -> None:
        """Test a cp39 wheel on Python 3.10."""
        tags = CompatibleTags.for_environment((3, 10), Windows(), Arch.X86_64)

        assert not tags.is_compatible(wheel("pkg-1.0-cp39-cp39-win_amd64.whl"))

    def test_cpython_wheel_needs_matching_platform(self) -> None:
        """Test a Windows wheel on Linux with the right Python."""
        tags = CompatibleTags.for_environment((3, 9), Manylinux(2, 31), Arch.X86_64)

        assert not tags.is_compatible(wheel("pkg-1.0-cp39-cp39-win_amd64.whl"))

    def test_cpython_wheel_matches(self) -> None:
        """Test the exact interpreter and platform."""
        tags = CompatibleTags.for_environment((3, 9), Windows(), Arch.X86_64)

        assert str(tags.select(wheel("pkg-1.0-cp39-cp39-win_amd64.whl"))) == (
            "cp39-cp39-win_amd64"
        )

    def test_select_raises_with_os_and_arch(self) -> None:
        """Test the incompatibility error names the environment."""
        tags = CompatibleTags.for_environment((3, 10), Manylinux(2, 31), Arch.X86_64)

        with pytest.raises(IncompatibleWheelError) as exc_info:
            tags.select(wheel("pkg-1.0-cp39-cp39-win_amd64.whl"))

        assert exc_info.value.os == Manylinux(2, 31)
        assert exc_info.value.arch == Arch.X86_64
        assert "Manylinux 2.31 x86_64" in str(exc_info.value)

    def test_abi3_is_forward_compatible(self) -> None:
        """Test an abi3 wheel built for an older CPython."""
        tags = CompatibleTags.for_environment((3, 12), Manylinux(2, 31), Arch.X86_64)

        assert tags.is_compatible(wheel("pkg-1.0-cp38-abi3-manylinux_2_17_x86_64.whl"))

    def test_newer_glibc_wheel_is_rejected(self) -> None:
        """Test a wheel needing a newer glibc than available."""
        tags = CompatibleTags.for_environment((3, 10), Manylinux(2, 17), Arch.X86_64)

        assert not tags.is_compatible(wheel("pkg-1.0-cp310-cp310-manylinux_2_28_x86_64.whl"))

    def test_select_prefers_most_specific_tag(self) -> None:
        """Test a multi-tag wheel selects its best tag."""
        tags = CompatibleTags.for_environment((3, 10), Manylinux(2, 31), Arch.X86_64)

        selected = tags.select(wheel("pkg-1.0-cp310-cp310-manylinux2014_x86_64.linux_x86_64.whl"))

        assert str(selected) == "cp310-cp310-manylinux2014_x86_64"

    def test_rank_orders_best_first(self) -> None:
        """Test exact ABI beats abi3 beats pure Python, incompatible dropped."""
        tags = CompatibleTags.for_environment((3, 10), Manylinux(2, 31), Arch.X86_64)
        pure = wheel("pkg-1.0-py3-none-any.whl")
        stable = wheel("pkg-1.0-cp310-abi3-manylinux_2_17_x86_64.whl")
        exact = wheel("pkg-1.0-cp310-cp310-manylinux_2_17_x86_64.whl")
        foreign = wheel("pkg-1.0-cp310-cp310-win_amd64.whl")

        assert tags.rank([pure, foreign, stable, exact]) == [exact, stable, pure]

    def test_compatibility_index(self) -> None:
        """Test the rank of the best tag is reported."""
        tags = CompatibleTags.for_environment((3, 10), Manylinux(2, 31), Arch.X86_64)

        assert tags.compatibility(wheel("pkg-1.0-cp310-cp310-manylinux_2_31_x86_64.whl")) == 0
        assert tags.compatibility(wheel("pkg-1.0-cp310-cp310-win_amd64.whl")) is None

    def test_container_protocol(self) -> None:
        """Test len() and membership."""
        tags = CompatibleTags.for_environment((3, 10), Windows(), Arch.X86_64)

        assert len(tags) > 0
        assert Tag("py3", "none", "any") in tags
        assert Tag("cp310", "cp310", "win_amd64") in tags
        assert Tag("cp310", "cp310", "linux_x86_64") not in tags


@pytest.mark.unit
class TestDetection:
    """Tests for platform detection."""

    def test_unknown_arch(self) -> None:
        """Test an unsupported machine type."""
        with patch("wheelkeeper.core.tags.platform.machine", return_value="mips"):
            with pytest.raises(PlatformDetectionError):
                Arch.current()

    def test_arch_aliases(self) -> None:
        """Test common machine aliases."""
        with patch("wheelkeeper.core.tags.platform.machine", return_value="AMD64"):
            assert Arch.current() is Arch.X86_64
        with patch("wheelkeeper.core.tags.platform.machine", return_value="arm64"):
            assert Arch.current() is Arch.AARCH64

    def test_glibc_linux(self) -> None:
        """Test glibc detection."""
        with patch("wheelkeeper.core.tags.platform.system", return_value="Linux"), patch(
            "wheelkeeper.core.tags.platform.libc_ver", return_value=("glibc", "2.35")
        ):
            assert detect_os() == Manylinux(2, 35)

    def test_windows(self) -> None:
        """Test Windows detection."""
        with patch("wheelkeeper.core.tags.platform.system", return_value="Windows"):
            assert detect_os() == Windows()

    def test_macos(self) -> None:
        """Test macOS version detection."""
        with patch("wheelkeeper.core.tags.platform.system", return_value="Darwin"), patch(
            "wheelkeeper.core.tags.platform.mac_ver", return_value=("13.4.1", ("", "", ""), "")
        ):
            assert detect_os() == Macos(13, 4)

    def test_unknown_os(self) -> None:
        """Test an unsupported operating system."""
        with patch("wheelkeeper.core.tags.platform.system", return_value="Plan9"):
            with pytest.raises(PlatformDetectionError):
                detect_os()

    def test_unknown_libc(self) -> None:
        """Test Linux without glibc or a musl loader."""
        with patch("wheelkeeper.core.tags.platform.system", return_value="Linux"), patch(
            "wheelkeeper.core.tags.platform.libc_ver", return_value=("", "")
        ), patch("wheelkeeper.core.tags.glob.glob", return_value=[]):
            with pytest.raises(PlatformDetectionError):
                detect_os()
