"""
Requirement data model for wheelkeeper.

This module defines the structured result of parsing a ``requirements.txt``
file: the PEP 508 :class:`Requirement` itself, the :class:`RequirementEntry`
that decorates it with hashes and the editable flag, and the flattened
:class:`RequirementsTxt` holding requirements and constraints.

All three are frozen; a parse produces them once and hands ownership to
the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

from packaging.requirements import Requirement as PkgRequirement
from packaging.specifiers import SpecifierSet
from packaging.utils import canonicalize_name


@dataclass(frozen=True)
class Requirement:
    """
    A single PEP 508 dependency specifier.

    Attributes:
        name: Package name as written.
        extras: Requested extras, sorted.
        specs: (operator, version) pairs, sorted for stable comparison.
        url: Direct URL (``name @ url`` form), mutually exclusive with specs.
        markers: Environment marker expression.
    """

    name: str
    extras: Tuple[str, ...] = ()
    specs: Tuple[Tuple[str, str], ...] = ()
    url: Optional[str] = None
    markers: Optional[str] = None

    @classmethod
    def from_pep508(cls, text: str) -> "Requirement":
        """
        Parse a PEP 508 string.

        Raises:
            packaging.requirements.InvalidRequirement: The string is invalid.
        """
        parsed = PkgRequirement(text)
        return cls(
            name=parsed.name,
            extras=tuple(sorted(parsed.extras)),
            specs=tuple(
                sorted(
                    ((spec.operator, spec.version) for spec in parsed.specifier),
                    key=lambda pair: f"{pair[0]}{pair[1]}",
                )
            ),
            url=parsed.url,
            markers=str(parsed.marker) if parsed.marker else None,
        )

    @property
    def canonical_name(self) -> str:
        """PEP 503 normalized name."""
        return canonicalize_name(self.name)

    @property
    def specifier(self) -> SpecifierSet:
        """The version constraint as a :class:`SpecifierSet`."""
        return SpecifierSet(",".join(f"{op}{version}" for op, version in self.specs))

    def to_string(self) -> str:
        """Render the requirement back to PEP 508 form."""
        requirement = self.name

        if self.extras:
            requirement += f"[{','.join(self.extras)}]"

        if self.url:
            requirement += f" @ {self.url}"
        elif self.specs:
            requirement += ",".join(f"{op}{version}" for op, version in self.specs)

        if self.markers:
            # A space is needed so the marker is not read as part of the URL
            requirement += f" ; {self.markers}" if self.url else f"; {self.markers}"

        return requirement

    def __str__(self) -> str:
        return self.to_string()


@dataclass(frozen=True)
class RequirementEntry:
    """
    A requirement statement from a requirements file.

    Attributes:
        requirement: The parsed PEP 508 requirement.
        hashes: ``--hash`` values in encounter order (``algorithm:digest``).
        editable: Whether the statement used ``-e``.
        source: File the statement came from (diagnostics only).
        location: Byte offset of the statement in ``source``.
    """

    requirement: Requirement
    hashes: Tuple[str, ...] = ()
    editable: bool = False
    source: Optional[str] = field(default=None, compare=False, repr=False)
    location: int = field(default=0, compare=False, repr=False)

    def to_string(self, *, include_hashes: bool = True) -> str:
        """
        Render the canonical ``requirements.txt`` line.

        Args:
            include_hashes: Whether to include ``--hash=`` entries.

        Returns:
            Formatted requirement string.
        """
        parts: List[str] = []

        if self.editable:
            parts.append("-e")

        parts.append(self.requirement.to_string())

        if include_hashes:
            parts.extend(f"--hash={hash_value}" for hash_value in self.hashes)

        return " ".join(parts)

    def __str__(self) -> str:
        return self.to_string()


@dataclass(frozen=True)
class RequirementsTxt:
    """
    Parsed and flattened requirements file.

    Attributes:
        requirements: Requirement entries, in file order with includes
            expanded in place.
        constraints: Bare requirements collected from ``-c`` files. They
            never carry hashes or the editable flag.
    """

    requirements: Tuple[RequirementEntry, ...] = ()
    constraints: Tuple[Requirement, ...] = ()

    @classmethod
    def parse(
        cls,
        file_path: Union[str, Path],
        *,
        max_include_depth: Optional[int] = None,
    ) -> "RequirementsTxt":
        """Parse a requirements file from disk.

        See :class:`wheelkeeper.core.parser.RequirementsParser`.
        """
        # Imported here: the parser module depends on this one
        from wheelkeeper.core.parser import RequirementsParser

        return RequirementsParser(max_include_depth=max_include_depth).parse_file(
            file_path
        )
