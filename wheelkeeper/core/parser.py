"""Requirements file parser.

Parses the subset of pip's ``requirements.txt`` format that maps onto PEP 508:

- PEP 508 requirements (``numpy==1.26``, ``pkg[extra] @ https://...``)
- Include directives (``-r other.txt`` / ``--requirement=other.txt``)
- Constraint files (``-c constraints.txt`` / ``--constraint constraints.txt``)
- Editable requirements (``-e pkg @ file:///...`` / ``--editable ...``)
- Hash suffixes (``--hash=sha256:...``, repeatable)
- Comments (``# ...``), both on their own line and after a requirement
- Backslash line continuations

Grammar as implemented::

    file         = (statement | whitespace | comment)*
    comment      = '#' any* '\\n'
    statement    = include | constraint | editable | requirement
    include      = ('-r' | '--requirement') value
    constraint   = ('-c' | '--constraint') value
    editable     = ('-e' | '--editable') separator requirement
    requirement  = [a-zA-Z0-9] pep508_tail (wrap '#' comment)? (wrap hashes)?
    hashes       = '--hash' value (wrap '--hash' value)*
    value        = ('=' | wrap) [^\\n#]+
    wrap         = (' ' | '\\t' | '\\\\\\n')+

Plain paths and bare URLs are not requirements; use ``name @ url``.
Other options such as ``--index-url`` are rejected with a positioned error.

Every error carries the file path and the byte offset into that file.
Failures inside included files are wrapped in :class:`IncludeError`, so the
chain runs from the top-level file down to the file that failed.

Typical usage::

    from wheelkeeper.core import RequirementsParser

    requirements_txt = RequirementsParser().parse_file("requirements.txt")

    for entry in requirements_txt.requirements:
        print(entry.requirement.name, entry.hashes)

    for constraint in requirements_txt.constraints:
        print(constraint)
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional, Tuple, Union

from packaging.requirements import InvalidRequirement

from wheelkeeper.config import WheelkeeperConfig
from wheelkeeper.core.cursor import WHITESPACE, Cursor
from wheelkeeper.exceptions import (
    FileOperationError,
    IncludeCycleError,
    IncludeError,
    RequirementSpecifierError,
    RequirementsIOError,
    RequirementsSyntaxError,
    RequirementsTxtError,
)
from wheelkeeper.models.requirement import (
    Requirement,
    RequirementEntry,
    RequirementsTxt,
)
from wheelkeeper.utils import get_logger, safe_read_bytes
from wheelkeeper.constants import (
    COMMENT_MARKER,
    CONSTRAINT_DIRECTIVE,
    DEFAULT_MAX_INCLUDE_DEPTH,
    EDITABLE_DIRECTIVE,
    HASH_DIRECTIVE,
    INCLUDE_DIRECTIVE,
)

INCLUDE_DIRECTIVE_LONG = "--requirement"
CONSTRAINT_DIRECTIVE_LONG = "--constraint"
EDITABLE_DIRECTIVE_LONG = "--editable"

_NEWLINE = ord("\n")
_COMMENT = ord(COMMENT_MARKER)

_HASH_VALUE = re.compile(r"^[A-Za-z0-9_-]+:[A-Za-z0-9_=+/-]+$")
_CONTINUATION = re.compile(r"\\\r?\n")

_Requirements = List[RequirementEntry]
_Constraints = List[Requirement]


class RequirementsParser:
    """Recursive-descent parser for pip-style requirements files.

    The parser keeps a stack of the files currently being parsed. An
    include that points back into the stack raises
    :exc:`IncludeCycleError`, and so does nesting deeper than
    *max_include_depth*.

    A parser instance can be reused; the stack is empty between calls.

    Example::

        >>> parser = RequirementsParser()
        >>> result = parser.parse_string("numpy==1.26 --hash=sha256:abc\\n")
        >>> result.requirements[0].hashes
        ('sha256:abc',)
    """

    def __init__(self, max_include_depth: Optional[int] = None) -> None:
        self.logger = get_logger("parser")
        self.max_include_depth = (
            DEFAULT_MAX_INCLUDE_DEPTH if max_include_depth is None else max_include_depth
        )

        # Resolved paths of the files currently being parsed
        self._include_stack: List[Path] = []

    @classmethod
    def from_config(cls, config: WheelkeeperConfig) -> "RequirementsParser":
        """Create a parser bounded by the configured include depth."""
        return cls(max_include_depth=config.max_include_depth)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def parse_file(self, file_path: Union[str, Path]) -> RequirementsTxt:
        """Parse a requirements file from disk.

        Relative ``-r`` / ``-c`` paths inside the file are resolved against
        the directory of the file that contains them.

        Args:
            file_path: Path to the requirements file.

        Returns:
            The flattened :class:`RequirementsTxt`.

        Raises:
            RequirementsIOError: The file cannot be read.
            RequirementsSyntaxError: The file violates the grammar.
            RequirementSpecifierError: A requirement is not valid PEP 508.
            IncludeError: An included file failed to parse.
        """
        requirements, constraints = self._parse_file(Path(file_path))
        return RequirementsTxt(
            requirements=tuple(requirements),
            constraints=tuple(constraints),
        )

    def parse_string(
        self,
        content: Union[str, bytes],
        source_path: Optional[Union[str, Path]] = None,
    ) -> RequirementsTxt:
        """Parse requirements from in-memory text.

        Args:
            content: Requirements text.
            source_path: Path the text notionally lives at. Used in error
                messages and as the base for relative includes; without it,
                includes resolve against the working directory.

        Returns:
            The flattened :class:`RequirementsTxt`.
        """
        source = Path(source_path) if source_path is not None else None
        requirements, constraints = self._parse_content(content, source)
        return RequirementsTxt(
            requirements=tuple(requirements),
            constraints=tuple(constraints),
        )

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def _parse_file(self, file_path: Path) -> Tuple[_Requirements, _Constraints]:
        try:
            content = safe_read_bytes(file_path)
        except FileOperationError as exc:
            raise RequirementsIOError(
                f"Failed to read requirements file {file_path}",
                file_path=str(file_path),
                original_error=exc.original_error or exc,
            ) from exc

        self.logger.debug("Parsing file: %s", file_path)
        return self._parse_content(content, file_path)

    def _parse_content(
        self,
        content: Union[str, bytes],
        source: Optional[Path],
    ) -> Tuple[_Requirements, _Constraints]:
        if isinstance(content, bytes):
            try:
                content.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise RequirementsIOError(
                    f"Requirements file is not valid UTF-8: {exc.reason}",
                    file_path=str(source) if source else None,
                    original_error=exc,
                ) from exc

        requirements: _Requirements = []
        constraints: _Constraints = []

        if source is not None:
            self._include_stack.append(source.resolve())
        try:
            cursor = Cursor(content)
            while not cursor.done():
                self._parse_statement(cursor, source, requirements, constraints)
        finally:
            if source is not None:
                self._include_stack.pop()

        self.logger.debug(
            "Parsed %d requirement(s) and %d constraint(s)%s",
            len(requirements),
            len(constraints),
            f" from {source}" if source else "",
        )
        return requirements, constraints

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _parse_statement(
        self,
        cursor: Cursor,
        source: Optional[Path],
        requirements: _Requirements,
        constraints: _Constraints,
    ) -> None:
        """Parse one statement, appending its results in place."""
        cursor.eat_whitespace()
        if cursor.done():
            return

        statement_start = cursor.position

        if cursor.eat_if(COMMENT_MARKER):
            cursor.eat_until(lambda byte: byte == _NEWLINE)

        elif cursor.eat_if(INCLUDE_DIRECTIVE_LONG) or cursor.eat_if(INCLUDE_DIRECTIVE):
            location = cursor.position
            included = self._parse_path_value(cursor, source)
            sub_requirements, sub_constraints = self._parse_include(
                included, location, source
            )
            requirements.extend(sub_requirements)
            constraints.extend(sub_constraints)

        elif cursor.eat_if(CONSTRAINT_DIRECTIVE_LONG) or cursor.eat_if(
            CONSTRAINT_DIRECTIVE
        ):
            location = cursor.position
            included = self._parse_path_value(cursor, source)
            sub_requirements, sub_constraints = self._parse_include(
                included, location, source
            )
            # Everything from a constraints file is demoted to a constraint
            constraints.extend(entry.requirement for entry in sub_requirements)
            constraints.extend(sub_constraints)

        elif cursor.eat_if(EDITABLE_DIRECTIVE_LONG) or cursor.eat_if(EDITABLE_DIRECTIVE):
            self._expect_separator(cursor, source)
            cursor.eat_wrappable_whitespace()
            requirements.append(
                self._parse_requirement_and_hashes(
                    cursor, source, editable=True, statement_start=statement_start
                )
            )

        elif cursor.at_ascii_alnum():
            requirements.append(
                self._parse_requirement_and_hashes(
                    cursor, source, editable=False, statement_start=statement_start
                )
            )

        elif cursor.at("-"):
            option = cursor.eat_until(lambda byte: byte in WHITESPACE or byte == ord("="))
            raise RequirementsSyntaxError(
                f"Unsupported option {option!r}",
                file_path=_display(source),
                location=statement_start,
            )

        else:
            raise RequirementsSyntaxError(
                f"Expected a requirement starting with a letter or digit, "
                f"found {cursor.peek()!r} (use 'name @ url' for paths and URLs)",
                file_path=_display(source),
                location=statement_start,
            )

    def _parse_include(
        self,
        included: str,
        location: int,
        source: Optional[Path],
    ) -> Tuple[_Requirements, _Constraints]:
        """Parse a file referenced by ``-r`` or ``-c``.

        The path is resolved against the including file's directory, not
        the working directory of the caller.
        """
        base_directory = source.parent if source is not None else Path.cwd()
        sub_file = base_directory / included
        resolved = sub_file.resolve()

        if resolved in self._include_stack:
            cycle = " -> ".join(str(p) for p in self._include_stack + [resolved])
            self.logger.error("Circular include detected: %s", cycle)
            raise IncludeCycleError(
                f"Circular include detected: {cycle}",
                file_path=_display(source),
                location=location,
                include_stack=[str(p) for p in self._include_stack],
            )

        if len(self._include_stack) >= self.max_include_depth:
            raise IncludeCycleError(
                f"Includes nested deeper than {self.max_include_depth} levels",
                file_path=_display(source),
                location=location,
                include_stack=[str(p) for p in self._include_stack],
            )

        self.logger.debug("Including %s from %s", sub_file, _display(source))
        try:
            return self._parse_file(sub_file)
        except RequirementsTxtError as exc:
            raise IncludeError(
                file_path=_display(source),
                location=location,
                source=exc,
            ) from exc

    # ------------------------------------------------------------------
    # Requirements and hashes
    # ------------------------------------------------------------------

    def _parse_requirement_and_hashes(
        self,
        cursor: Cursor,
        source: Optional[Path],
        *,
        editable: bool,
        statement_start: int,
    ) -> RequirementEntry:
        """Parse a PEP 508 requirement with optional trailing hashes."""
        start = cursor.position
        end, has_hashes = self._scan_requirement_body(cursor)

        text = _CONTINUATION.sub(" ", cursor.slice(start, end))
        try:
            requirement = Requirement.from_pep508(text)
        except InvalidRequirement as exc:
            raise RequirementSpecifierError(
                f"Couldn't parse requirement: {exc}",
                file_path=_display(source),
                start=start,
                end=end,
                original_error=exc,
            ) from exc

        hashes = self._parse_hashes(cursor, source) if has_hashes else []

        return RequirementEntry(
            requirement=requirement,
            hashes=tuple(hashes),
            editable=editable,
            source=_display(source),
            location=statement_start,
        )

    def _scan_requirement_body(self, cursor: Cursor) -> Tuple[int, bool]:
        """Advance over a requirement body.

        The body ends at a newline, the end of input, a ``#`` comment or a
        ``--`` option, the latter two only when preceded by whitespace.
        Trailing whitespace is not part of the body.

        Returns:
            The end offset of the body and whether hashes follow.
        """
        while True:
            end = cursor.position

            if cursor.done() or cursor.eat_if("\n"):
                return end, False

            if cursor.eat_wrappable_whitespace():
                if cursor.done() or cursor.eat_if("\n"):
                    return end, False
                if cursor.at("--"):
                    return end, True
                if cursor.at(COMMENT_MARKER):
                    cursor.eat_until(lambda byte: byte == _NEWLINE)
                    return end, False
                continue

            cursor.eat()

    def _parse_hashes(self, cursor: Cursor, source: Optional[Path]) -> List[str]:
        """Parse ``--hash=... --hash ...`` after a requirement."""
        hashes: List[str] = []

        if not cursor.at(HASH_DIRECTIVE):
            location = cursor.position
            found = cursor.eat_until(lambda byte: byte in WHITESPACE)
            raise RequirementsSyntaxError(
                f"Expected '{HASH_DIRECTIVE}', found {found!r}",
                file_path=_display(source),
                location=location,
            )

        while cursor.eat_if(HASH_DIRECTIVE):
            hashes.append(self._parse_hash_value(cursor, source))
            cursor.eat_wrappable_whitespace()

        return hashes

    def _parse_hash_value(self, cursor: Cursor, source: Optional[Path]) -> str:
        self._expect_separator(cursor, source)
        cursor.eat_wrappable_whitespace()

        location = cursor.position
        value = cursor.eat_until(lambda byte: byte in WHITESPACE)
        if not _HASH_VALUE.match(value):
            raise RequirementsSyntaxError(
                f"Expected a hash of the form 'algorithm:digest', found {value!r}",
                file_path=_display(source),
                location=location,
            )
        return value

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def _expect_separator(self, cursor: Cursor, source: Optional[Path]) -> None:
        """Consume the ``=`` or whitespace between a flag and its value."""
        if cursor.eat_if("="):
            return
        if cursor.eat_wrappable_whitespace():
            return
        raise RequirementsSyntaxError(
            f"Expected '=' or whitespace, found {cursor.peek()!r}",
            file_path=_display(source),
            location=cursor.position,
        )

    def _parse_path_value(self, cursor: Cursor, source: Optional[Path]) -> str:
        """Parse the value of ``-r`` / ``-c``, up to a newline or comment."""
        self._expect_separator(cursor, source)
        cursor.eat_wrappable_whitespace()

        location = cursor.position
        value = cursor.eat_until(lambda byte: byte in (_NEWLINE, _COMMENT)).rstrip()
        if not value:
            raise RequirementsSyntaxError(
                "Expected a file path",
                file_path=_display(source),
                location=location,
            )
        return value


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def _display(source: Optional[Path]) -> Optional[str]:
    return str(source) if source is not None else None


def parse_requirements_txt(
    file_path: Union[str, Path],
    *,
    max_include_depth: Optional[int] = None,
    config: Optional[WheelkeeperConfig] = None,
) -> RequirementsTxt:
    """Parse a requirements file with a fresh :class:`RequirementsParser`.

    An explicit *max_include_depth* wins over the one in *config*.
    """
    if max_include_depth is None and config is not None:
        max_include_depth = config.max_include_depth
    return RequirementsParser(max_include_depth=max_include_depth).parse_file(file_path)
