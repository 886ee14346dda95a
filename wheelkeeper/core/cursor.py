"""Byte-offset scanner over UTF-8 text.

:class:`Cursor` walks the UTF-8 encoding of a requirements file. Positions
are byte offsets into that encoding, so they can be reported verbatim in
diagnostics. Every consuming operation stops on a character boundary: the
only delimiters are ASCII, and :meth:`Cursor.eat` always consumes a whole
character.
"""

from __future__ import annotations

from typing import Callable, Optional, Union

#: Whitespace that does not end a line.
INLINE_WHITESPACE = frozenset(b" \t\r\x0b\x0c")

#: Any whitespace, newlines included.
WHITESPACE = INLINE_WHITESPACE | frozenset(b"\n")

#: Escaped line breaks, longest first.
_CONTINUATIONS = (b"\\\r\n", b"\\\n")

BytePredicate = Callable[[int], bool]


def _utf8_width(lead: int) -> int:
    """Number of bytes in the UTF-8 sequence starting with ``lead``."""
    if lead < 0x80:
        return 1
    if lead >= 0xF0:
        return 4
    if lead >= 0xE0:
        return 3
    if lead >= 0xC0:
        return 2
    # Stray continuation byte
    return 1


class Cursor:
    """Single-owner scanner with conditional consume and lookahead.

    Example::

        >>> cursor = Cursor("-r base.txt")
        >>> cursor.eat_if("-r")
        True
        >>> cursor.position
        2
    """

    __slots__ = ("_buffer", "_position")

    def __init__(self, text: Union[str, bytes]) -> None:
        self._buffer: bytes = text.encode("utf-8") if isinstance(text, str) else text
        self._position = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def position(self) -> int:
        """Current byte offset."""
        return self._position

    @property
    def buffer(self) -> bytes:
        return self._buffer

    def done(self) -> bool:
        """Return ``True`` once the whole buffer has been consumed."""
        return self._position >= len(self._buffer)

    def slice(self, start: int, end: int) -> str:
        """Decode the bytes between two offsets."""
        return self._buffer[start:end].decode("utf-8", errors="replace")

    def rest(self) -> str:
        """Decode everything after the current position."""
        return self.slice(self._position, len(self._buffer))

    # ------------------------------------------------------------------
    # Lookahead
    # ------------------------------------------------------------------

    def peek(self) -> Optional[str]:
        """Return the next character without consuming it."""
        if self.done():
            return None
        lead = self._buffer[self._position]
        return self.slice(self._position, self._position + _utf8_width(lead))

    def at(self, token: str) -> bool:
        """Return ``True`` if the remaining text starts with ``token``."""
        return self._buffer.startswith(token.encode("utf-8"), self._position)

    def at_byte(self, predicate: BytePredicate) -> bool:
        """Test the next byte against ``predicate``."""
        return not self.done() and predicate(self._buffer[self._position])

    def at_ascii_alnum(self) -> bool:
        return self.at_byte(lambda byte: chr(byte).isalnum() and byte < 0x80)

    def at_newline(self) -> bool:
        return self.at("\n")

    # ------------------------------------------------------------------
    # Consumption
    # ------------------------------------------------------------------

    def eat(self) -> Optional[str]:
        """Consume and return one character, or ``None`` at the end."""
        char = self.peek()
        if char is not None:
            self._advance_char()
        return char

    def eat_if(self, token: str) -> bool:
        """Consume ``token`` if the remaining text starts with it."""
        encoded = token.encode("utf-8")
        if self._buffer.startswith(encoded, self._position):
            self._position += len(encoded)
            return True
        return False

    def eat_while(self, predicate: BytePredicate) -> str:
        """Consume bytes while ``predicate`` holds and return them."""
        start = self._position
        while self.at_byte(predicate):
            self._advance_char()
        return self.slice(start, self._position)

    def eat_until(self, predicate: BytePredicate) -> str:
        """Consume bytes until ``predicate`` holds (or the end)."""
        return self.eat_while(lambda byte: not predicate(byte))

    def eat_whitespace(self) -> str:
        """Consume any whitespace, newlines included."""
        return self.eat_while(lambda byte: byte in WHITESPACE)

    def eat_inline_whitespace(self) -> str:
        """Consume whitespace that does not end the line."""
        return self.eat_while(lambda byte: byte in INLINE_WHITESPACE)

    def eat_continuation(self) -> bool:
        """Consume one backslash-escaped line break."""
        return any(self.eat_if(token.decode("ascii")) for token in _CONTINUATIONS)

    def eat_wrappable_whitespace(self) -> str:
        """Consume inline whitespace and escaped line breaks, repeatedly.

        A backslash directly followed by a newline counts as whitespace,
        so a statement may be wrapped over several lines.
        """
        start = self._position
        self.eat_inline_whitespace()
        while self.eat_continuation():
            self.eat_inline_whitespace()
        return self.slice(start, self._position)

    def _advance_char(self) -> None:
        width = _utf8_width(self._buffer[self._position])
        self._position = min(self._position + width, len(self._buffer))

    def __repr__(self) -> str:
        return f"Cursor(position={self._position}, length={len(self._buffer)})"
