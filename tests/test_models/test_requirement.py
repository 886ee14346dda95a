"""Unit tests for wheelkeeper.models.requirement module.

Test Coverage:
- PEP 508 parsing into Requirement
- Canonical names and specifier sets
- Rendering requirements and entries back to text
- Equality semantics of entries
- RequirementsTxt.parse convenience constructor
"""

from __future__ import annotations

import pytest
from pathlib import Path

from packaging.requirements import InvalidRequirement
from packaging.specifiers import SpecifierSet

from wheelkeeper.models.requirement import (
    Requirement,
    RequirementEntry,
    RequirementsTxt,
)


@pytest.mark.unit
class TestRequirementFromPep508:
    """Tests for Requirement.from_pep508."""

    def test_name_only(self) -> None:
        """Test a bare package name.

        Happy path: Every optional part is empty.
        """
        req = Requirement.from_pep508("requests")

        assert req.name == "requests"
        assert req.extras == ()
        assert req.specs == ()
        assert req.url is None
        assert req.markers is None

    def test_pinned_version(self) -> None:
        """Test an exact pin."""
        req = Requirement.from_pep508("numpy==1.26.4")

        assert req.specs == (("==", "1.26.4"),)

    def test_specs_are_sorted(self) -> None:
        """Test specifier order does not affect equality."""
        first = Requirement.from_pep508("django>=4.0,<5.0")
        second = Requirement.from_pep508("django<5.0,>=4.0")

        assert first == second
        assert first.specs == (("<", "5.0"), (">=", "4.0"))

    def test_extras_are_sorted(self) -> None:
        """Test extras are stored in sorted order."""
        req = Requirement.from_pep508("requests[socks,security]>=2.0")

        assert req.extras == ("security", "socks")

    def test_markers(self) -> None:
        """Test environment markers are kept as text."""
        req = Requirement.from_pep508('pywin32>=300; sys_platform == "win32"')

        assert req.markers == 'sys_platform == "win32"'

    def test_direct_url(self) -> None:
        """Test the ``name @ url`` form."""
        req = Requirement.from_pep508(
            "demo @ https://example.com/demo-1.0-py3-none-any.whl"
        )

        assert req.url == "https://example.com/demo-1.0-py3-none-any.whl"
        assert req.specs == ()

    def test_invalid(self) -> None:
        """Test packaging's error is raised for invalid input."""
        with pytest.raises(InvalidRequirement):
            Requirement.from_pep508("requests>=")


@pytest.mark.unit
class TestRequirementProperties:
    """Tests for derived properties."""

    def test_canonical_name(self) -> None:
        """Test PEP 503 normalization."""
        assert Requirement(name="Foo.Bar_baz").canonical_name == "foo-bar-baz"

    def test_specifier(self) -> None:
        """Test specs are exposed as a SpecifierSet."""
        req = Requirement.from_pep508("django>=4.0,<5.0")

        assert req.specifier == SpecifierSet(">=4.0,<5.0")
        assert "4.2" in req.specifier
        assert "5.0" not in req.specifier

    def test_empty_specifier(self) -> None:
        """Test an unconstrained requirement accepts everything."""
        assert "1.0" in Requirement(name="requests").specifier


@pytest.mark.unit
class TestRequirementToString:
    """Tests for Requirement.to_string."""

    def test_name_only(self) -> None:
        assert Requirement(name="requests").to_string() == "requests"

    def test_full_form(self) -> None:
        """Test extras, specs and markers together."""
        req = Requirement.from_pep508(
            'requests[socks,security]>=2.0,<3.0; python_version >= "3.8"'
        )

        assert str(req) == 'requests[security,socks]<3.0,>=2.0; python_version >= "3.8"'

    def test_url_with_markers(self) -> None:
        """Test a space separates the URL from the marker."""
        req = Requirement(
            name="demo",
            url="https://example.com/demo.whl",
            markers='os_name == "posix"',
        )

        assert req.to_string() == (
            'demo @ https://example.com/demo.whl ; os_name == "posix"'
        )

    def test_parses_back(self) -> None:
        """Test the rendered form parses to an equal requirement."""
        req = Requirement.from_pep508('Demo[b,a]~=1.4; sys_platform != "win32"')

        assert Requirement.from_pep508(req.to_string()) == req


@pytest.mark.unit
class TestRequirementEntry:
    """Tests for RequirementEntry."""

    def test_defaults(self) -> None:
        """Test an entry without hashes or the editable flag."""
        entry = RequirementEntry(requirement=Requirement(name="requests"))

        assert entry.hashes == ()
        assert entry.editable is False
        assert str(entry) == "requests"

    def test_hashes_are_rendered(self) -> None:
        """Test hashes follow the requirement in order."""
        entry = RequirementEntry(
            requirement=Requirement.from_pep508("six==1.16.0"),
            hashes=("sha256:abc", "sha256:def"),
        )

        assert entry.to_string() == "six==1.16.0 --hash=sha256:abc --hash=sha256:def"
        assert entry.to_string(include_hashes=False) == "six==1.16.0"

    def test_editable(self) -> None:
        """Test the editable prefix."""
        entry = RequirementEntry(
            requirement=Requirement(name="demo", url="file:///src/demo"),
            editable=True,
        )

        assert entry.to_string() == "-e demo @ file:///src/demo"

    def test_source_does_not_affect_equality(self) -> None:
        """Test diagnostics fields are ignored when comparing.

        Edge case: The same line in two files is the same entry.
        """
        first = RequirementEntry(Requirement(name="six"), source="a.txt", location=0)
        second = RequirementEntry(Requirement(name="six"), source="b.txt", location=42)

        assert first == second

    def test_entries_are_frozen(self) -> None:
        """Test entries cannot be mutated."""
        entry = RequirementEntry(requirement=Requirement(name="six"))

        with pytest.raises(AttributeError):
            entry.editable = True  # type: ignore[misc]


@pytest.mark.unit
class TestRequirementsTxt:
    """Tests for RequirementsTxt."""

    def test_empty(self) -> None:
        """Test the default value holds nothing."""
        parsed = RequirementsTxt()

        assert parsed.requirements == ()
        assert parsed.constraints == ()

    def test_parse_from_disk(self, tmp_path: Path) -> None:
        """Test the convenience constructor reads a file."""
        requirements = tmp_path / "requirements.txt"
        requirements.write_text("six==1.16.0\n-c constraints.txt\n")
        (tmp_path / "constraints.txt").write_text("urllib3<2\n")

        parsed = RequirementsTxt.parse(requirements)

        assert [str(entry) for entry in parsed.requirements] == ["six==1.16.0"]
        assert parsed.constraints == (Requirement.from_pep508("urllib3<2"),)
