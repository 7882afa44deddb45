"""Display state carried through an SGR scan.

A ``State`` records the style flags and colors in effect at some point of a
string, together with where that point is in the three position spaces:

  pos_byte   offset into the buffer, escape bytes included
  pos_raw    visual offset, recognized escapes counted as zero width
  pos_ansi   offset just past the last fully recognized escape sequence
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass, field

# Offsets leave this layer as signed 32-bit integers.
MAX_OFFSET = 2**31 - 1

NO_COLOR = -1
EXTENDED_COLOR = 8
TRUECOLOR = 2
PALETTE = 5

ColorExtra = tuple[int, int, int, int]
EMPTY_EXTRA: ColorExtra = (0, 0, 0, 0)


class AnsiStateError(Exception):
    """Base class for fatal errors raised while scanning or serializing."""


class NonAsciiError(AnsiStateError, ValueError):
    """The buffer holds a character outside 7-bit ASCII."""

    def __init__(self, char: str, offset: int) -> None:
        super().__init__(
            f"Only ASCII-128 characters are supported, got {char!r} at byte {offset}"
        )
        self.char = char
        self.offset = offset


class OffsetOverflowError(AnsiStateError, OverflowError):
    """Offset arithmetic went past MAX_OFFSET."""


class StateReuseError(AnsiStateError, RuntimeError):
    """A state was reused against another buffer or an earlier position."""


class TagSizeError(AnsiStateError, RuntimeError):
    """Serialized tag length disagrees with the measured length."""


class ScanCancelledError(AnsiStateError):
    """A batch scan was stopped by its cancellation callback."""


class UnhandledSgrWarning(UserWarning):
    """An SGR code is recognized but its effect is not tracked."""


class Style(enum.IntFlag):
    """Style attributes, keyed so that ``Style.from_code(n)`` is SGR code n."""

    BOLD = 1 << 1
    FAINT = 1 << 2
    ITALIC = 1 << 3
    UNDERLINE = 1 << 4
    SLOW_BLINK = 1 << 5
    FAST_BLINK = 1 << 6
    INVERT = 1 << 7
    CONCEAL = 1 << 8
    STRIKETHROUGH = 1 << 9

    @classmethod
    def from_code(cls, code: int) -> "Style":
        if not 1 <= code <= 9:
            raise ValueError(f"SGR style codes are 1-9, got {code}")
        return cls(1 << code)

    def codes(self) -> list[int]:
        """SGR codes of the set flags, ascending."""
        return [code for code in range(1, 10) if self & (1 << code)]


NO_STYLE = Style(0)


def safe_add(a: int, b: int) -> int:
    """Add two offsets, refusing to pass MAX_OFFSET."""
    if a > MAX_OFFSET - b:
        raise OffsetOverflowError(f"Offset overflow adding {b} to {a}")
    return a + b


@dataclass(eq=False)
class State:
    style: Style = NO_STYLE
    color: int = NO_COLOR
    color_extra: ColorExtra = EMPTY_EXTRA
    bg_color: int = NO_COLOR
    bg_color_extra: ColorExtra = EMPTY_EXTRA
    pos_byte: int = 0
    pos_raw: int = 0
    pos_ansi: int = 0
    pos_target: int = 0
    string: str | None = field(default=None, repr=False)
    fail: bool = False
    last: bool = False

    def copy(self) -> "State":
        return dataclasses.replace(self)

    def reset(self) -> None:
        """Clear every display attribute; positions are left alone."""
        self.style = NO_STYLE
        self.color = NO_COLOR
        self.color_extra = EMPTY_EXTRA
        self.bg_color = NO_COLOR
        self.bg_color_extra = EMPTY_EXTRA

    def restore_display(self, other: "State") -> None:
        """Copy the display attributes of *other* onto this state."""
        self.style = other.style
        self.color = other.color
        self.color_extra = other.color_extra
        self.bg_color = other.bg_color
        self.bg_color_extra = other.bg_color_extra


def state_init() -> State:
    """Fresh state for the start of a scan."""
    return State()


def same_display(a: State, b: State) -> bool:
    """True when *a* and *b* render identically.

    Only style, colors and their extras take part; positions and scan
    flags are ignored.
    """
    return (
        a.style == b.style
        and a.color == b.color
        and a.bg_color == b.bg_color
        and a.color_extra == b.color_extra
        and a.bg_color_extra == b.bg_color_extra
    )
