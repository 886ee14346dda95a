"""
Custom exception hierarchy for wheelkeeper.

This module defines structured exception types used across wheelkeeper.
All exceptions inherit from :class:`WheelkeeperError` and support optional
structured metadata via the ``details`` attribute to improve diagnostics
and logging.

There are two families:

- :class:`RequirementsTxtError` for everything that goes wrong while
  parsing a requirements file. Every member carries the file path and a
  byte offset into that file.
- :class:`InstallError` for everything that goes wrong while installing a
  wheel into an environment.
"""

from __future__ import annotations

from typing import Any, List, Mapping, MutableMapping, Optional, Sequence


class WheelkeeperError(Exception):
    """Base exception for all wheelkeeper errors.

    All wheelkeeper-specific exceptions should inherit from this class.
    It supports structured metadata via ``details`` for richer error
    reporting and debugging.

    Args:
        message: Human-readable error message.
        details: Optional structured metadata describing the error.
    """

    __slots__ = ("message", "details")

    def __init__(
        self,
        message: str,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.message: str = message
        # Internally normalize to a mutable dict
        self.details: MutableMapping[str, Any] = dict(details) if details else {}
        super().__init__(message)

    def __str__(self) -> str:
        if not self.details:
            return self.message
        formatted = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({formatted})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, details={dict(self.details)!r})"
        )


def _add_if(details: MutableMapping[str, Any], key: str, value: Any) -> None:
    """Add a key to ``details`` only if ``value`` is not ``None``."""
    if value is not None:
        details[key] = value


def _truncate(text: str, max_length: int = 200) -> str:
    """Truncate long text for safe logging or error reporting."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


# ---------------------------------------------------------------------------
# Generic errors
# ---------------------------------------------------------------------------


class ConfigError(WheelkeeperError):
    """Raised when the configuration file is unreadable or invalid.

    Args:
        message: Error description.
        config_path: Path of the configuration file.
        option: Name of the offending option, if any.
    """

    __slots__ = ("config_path", "option")

    def __init__(
        self,
        message: str,
        *,
        config_path: Optional[str] = None,
        option: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "config", config_path)
        _add_if(details, "option", option)

        super().__init__(message, details)

        self.config_path = config_path
        self.option = option


class FileOperationError(WheelkeeperError):
    """Raised when file system operations fail.

    Args:
        message: Error description.
        file_path: Path to the file involved.
        operation: Operation being performed (read/write/delete).
        original_error: Original exception that triggered this error.
    """

    __slots__ = ("file_path", "operation", "original_error")

    def __init__(
        self,
        message: str,
        *,
        file_path: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "path", file_path)
        _add_if(details, "operation", operation)
        _add_if(
            details,
            "original_error",
            str(original_error) if original_error else None,
        )

        super().__init__(message, details)

        self.file_path = file_path
        self.operation = operation
        self.original_error = original_error


# ---------------------------------------------------------------------------
# Requirements file parsing
# ---------------------------------------------------------------------------


class RequirementsTxtError(WheelkeeperError):
    """Base class for errors raised while parsing a requirements file.

    Args:
        message: Error description.
        file_path: File being parsed when the error occurred.
        details: Extra structured metadata.
    """

    __slots__ = ("file_path",)

    def __init__(
        self,
        message: str,
        *,
        file_path: Optional[str] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        merged: MutableMapping[str, Any] = {}
        _add_if(merged, "file", file_path)
        if details:
            merged.update(details)

        super().__init__(message, merged)

        self.file_path = file_path

    @property
    def original_error(self) -> Optional[BaseException]:
        """Underlying non-wheelkeeper cause, if any."""
        return None

    def chain(self) -> List[BaseException]:
        """Return this error followed by every cause, outermost first."""
        return [self]

    def format_chain(self) -> str:
        """Render the error chain, one link per line."""
        return "\n".join(str(link) for link in self.chain())


class RequirementsIOError(RequirementsTxtError):
    """Raised when a requirements file cannot be read.

    Args:
        message: Error description.
        file_path: File that could not be read.
        original_error: The underlying ``OSError`` or decode error.
    """

    __slots__ = ("_original_error",)

    def __init__(
        self,
        message: str,
        *,
        file_path: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, file_path=file_path)
        self._original_error = original_error

    @property
    def original_error(self) -> Optional[BaseException]:
        return self._original_error

    def chain(self) -> List[BaseException]:
        if self._original_error is None:
            return [self]
        return [self, self._original_error]


class RequirementsSyntaxError(RequirementsTxtError):
    """Raised when a statement violates the requirements file grammar.

    Args:
        message: Error description.
        file_path: File being parsed.
        location: Byte offset of the violation.
    """

    __slots__ = ("location",)

    def __init__(
        self,
        message: str,
        *,
        file_path: Optional[str] = None,
        location: int = 0,
    ) -> None:
        super().__init__(
            message,
            file_path=file_path,
            details={"position": location},
        )
        self.location = location


class IncludeCycleError(RequirementsSyntaxError):
    """Raised when ``-r`` / ``-c`` includes form a cycle or nest too deep.

    Args:
        message: Error description.
        file_path: File containing the offending include directive.
        location: Byte offset of the include directive.
        include_stack: Files being parsed when the cycle was detected.
    """

    __slots__ = ("include_stack",)

    def __init__(
        self,
        message: str,
        *,
        file_path: Optional[str] = None,
        location: int = 0,
        include_stack: Sequence[str] = (),
    ) -> None:
        super().__init__(message, file_path=file_path, location=location)
        self.include_stack = list(include_stack)


class RequirementSpecifierError(RequirementsTxtError):
    """Raised when a requirement specifier is not valid PEP 508.

    Args:
        message: Error description.
        file_path: File being parsed.
        start: Byte offset where the specifier starts.
        end: Byte offset where the specifier ends (exclusive).
        original_error: The error raised by the specifier parser.
    """

    __slots__ = ("start", "end", "_original_error")

    def __init__(
        self,
        message: str,
        *,
        file_path: Optional[str] = None,
        start: int = 0,
        end: int = 0,
        original_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            message,
            file_path=file_path,
            details={"start": start, "end": end},
        )
        self.start = start
        self.end = end
        self._original_error = original_error

    @property
    def original_error(self) -> Optional[BaseException]:
        return self._original_error

    def chain(self) -> List[BaseException]:
        if self._original_error is None:
            return [self]
        return [self, self._original_error]


class IncludeError(RequirementsTxtError):
    """Raised when a file included via ``-r`` or ``-c`` fails to parse.

    The inner error is kept in :attr:`source`, so a failure three files
    deep is presented as a chain from the outermost file to the innermost.

    Args:
        file_path: File containing the include directive.
        location: Byte offset of the include directive's value.
        source: Error raised while parsing the included file.
    """

    __slots__ = ("location", "source")

    def __init__(
        self,
        *,
        file_path: Optional[str] = None,
        location: int = 0,
        source: RequirementsTxtError,
    ) -> None:
        super().__init__(
            "Failed to parse requirements due to an error in an included file",
            file_path=file_path,
            details={"position": location},
        )
        self.location = location
        self.source = source

    @property
    def original_error(self) -> Optional[BaseException]:
        return self.source.original_error

    @property
    def innermost(self) -> RequirementsTxtError:
        """Return the error raised in the most deeply included file."""
        error: RequirementsTxtError = self
        while isinstance(error, IncludeError):
            error = error.source
        return error

    def chain(self) -> List[BaseException]:
        return [self] + self.source.chain()


# ---------------------------------------------------------------------------
# Wheel installation
# ---------------------------------------------------------------------------


class InstallError(WheelkeeperError):
    """Base class for errors raised while installing a wheel."""


class InstallIOError(InstallError):
    """Raised when a filesystem operation fails during installation.

    Args:
        message: Error description.
        file_path: Path involved.
        operation: Operation being performed.
        original_error: The underlying ``OSError``.
    """

    __slots__ = ("file_path", "operation", "original_error")

    def __init__(
        self,
        message: str,
        *,
        file_path: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "path", file_path)
        _add_if(details, "operation", operation)
        _add_if(
            details,
            "original_error",
            str(original_error) if original_error else None,
        )

        super().__init__(message, details)

        self.file_path = file_path
        self.operation = operation
        self.original_error = original_error


class ArchiveCorruptionError(InstallError):
    """Raised when a wheel is not a readable zip archive.

    Args:
        message: Error description.
        wheel_path: Path of the wheel.
        original_error: The error raised by the zip reader.
    """

    __slots__ = ("wheel_path", "original_error")

    def __init__(
        self,
        message: str,
        *,
        wheel_path: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "wheel", wheel_path)
        _add_if(
            details,
            "original_error",
            str(original_error) if original_error else None,
        )

        super().__init__(message, details)

        self.wheel_path = wheel_path
        self.original_error = original_error


class InvalidWheelError(InstallError):
    """Raised when a wheel's contents violate the wheel format.

    Args:
        message: Error description.
        wheel_path: Path of the wheel.
    """

    __slots__ = ("wheel_path",)

    def __init__(self, message: str, *, wheel_path: Optional[str] = None) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "wheel", wheel_path)

        super().__init__(message, details)

        self.wheel_path = wheel_path


class RecordMismatchError(InvalidWheelError):
    """Raised when archive contents do not match the RECORD manifest.

    Args:
        message: Error description.
        wheel_path: Path of the wheel.
        member: Archive member that failed verification.
        expected: Digest or size recorded in RECORD.
        actual: Digest or size computed from the archive.
    """

    __slots__ = ("member", "expected", "actual")

    def __init__(
        self,
        message: str,
        *,
        wheel_path: Optional[str] = None,
        member: Optional[str] = None,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
    ) -> None:
        super().__init__(message, wheel_path=wheel_path)
        _add_if(self.details, "member", member)
        _add_if(self.details, "expected", expected)
        _add_if(self.details, "actual", actual)

        self.member = member
        self.expected = expected
        self.actual = actual


class InvalidWheelFilenameError(InstallError):
    """Raised when a filename does not follow the wheel naming schema.

    Args:
        filename: The offending filename.
        reason: Why the filename was rejected.
    """

    __slots__ = ("filename", "reason")

    def __init__(self, filename: str, reason: str) -> None:
        super().__init__(
            f'The wheel filename "{filename}" is invalid: {reason}',
        )
        self.filename = filename
        self.reason = reason


class IncompatibleWheelError(InstallError):
    """Raised when none of a wheel's tags match the running environment.

    Args:
        os: Operating system the tags were computed for.
        arch: Architecture the tags were computed for.
        wheel: Wheel filename, if known.
    """

    __slots__ = ("os", "arch", "wheel")

    def __init__(
        self,
        *,
        os: Any,
        arch: Any,
        wheel: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "wheel", wheel)

        super().__init__(
            f"The wheel is incompatible with the current platform {os} {arch}",
            details,
        )

        self.os = os
        self.arch = arch
        self.wheel = wheel


class BrokenEnvironmentError(InstallError):
    """Raised when the target environment lacks its expected layout.

    Args:
        message: Error description.
        location: Root directory of the environment.
    """

    __slots__ = ("location",)

    def __init__(self, message: str, *, location: Optional[str] = None) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "location", location)

        super().__init__(message, details)

        self.location = location


class EnvironmentLockedError(InstallError):
    """Raised when the environment lock is held by another installer.

    Args:
        message: Error description.
        lock_path: Path of the lock file.
        timeout: Seconds waited before giving up.
    """

    __slots__ = ("lock_path", "timeout")

    def __init__(
        self,
        message: str,
        *,
        lock_path: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "lock", lock_path)
        _add_if(details, "timeout", timeout)

        super().__init__(message, details)

        self.lock_path = lock_path
        self.timeout = timeout


class PlatformDetectionError(InstallError):
    """Raised when the operating system or architecture cannot be detected.

    Args:
        message: Error description.
        original_error: Underlying error, if any.
    """

    __slots__ = ("original_error",)

    def __init__(
        self,
        message: str,
        *,
        original_error: Optional[BaseException] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(
            details,
            "original_error",
            _truncate(str(original_error)) if original_error else None,
        )

        super().__init__(message, details)

        self.original_error = original_error


class SerializationError(InstallError):
    """Raised when installer metadata cannot be serialized.

    This should not happen for well-formed input; it is surfaced as a
    typed error rather than an unhandled crash.

    Args:
        message: Error description.
        original_error: The error raised by the serializer.
    """

    __slots__ = ("original_error",)

    def __init__(
        self,
        message: str,
        *,
        original_error: Optional[BaseException] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(
            details,
            "original_error",
            str(original_error) if original_error else None,
        )

        super().__init__(message, details)

        self.original_error = original_error
